"""Text extraction stage.

Responsibilities:
- Run one extraction job per stored page image as an indexed, fail-fast batch.
- Return results in page order regardless of completion order.
- Delete each page's raw image as soon as that page's text is extracted.

Key types:
- `PageExtractor`: protocol for an OCR collaborator.
- `OpenAIPageExtractor`: vision chat-completions implementation.
- `ExtractionStage`: batch adapter used by the orchestrator.
"""

from __future__ import annotations

import base64
import json
import re
from typing import Protocol, Sequence

from ..errors import ExtractionError, PagevoiceError, ProviderError
from ..io.storage import ArtifactStore, content_type_for
from ..models.datatypes import CONFIDENCE_LEVELS, ExtractedPage, StoredPage
from ..pipeline.batch import DEFAULT_BATCH_CONCURRENCY, BatchFailure, run_indexed
from ..pipeline.cleanup import delete_artifacts
from ..providers.openai_client import OpenAIChatClient
from ..telemetry.logger import RunLogger
from .prompts import PromptLibrary

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class PageExtractor(Protocol):
    """Protocol for page text extraction implementations."""

    def extract(self, page_index: int, image: bytes, name: str) -> ExtractedPage:
        """Extract text from one page image."""


def parse_extraction_answer(page_index: int, answer: str) -> ExtractedPage:
    """Interpret an OCR answer, accepting plain text when it is not JSON.

    Plain-text answers get `medium` confidence; unknown confidence values fall back
    to `medium` and page counts other than 2 are treated as a single page.
    """

    raw = answer.strip()
    fenced = _CODE_FENCE_RE.match(raw)
    if fenced:
        raw = fenced.group(1)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return ExtractedPage(page_index=page_index, text=answer.strip(), confidence="medium")

    if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
        return ExtractedPage(page_index=page_index, text=answer.strip(), confidence="medium")

    confidence = str(payload.get("confidence", "medium")).strip().lower()
    if confidence not in CONFIDENCE_LEVELS:
        confidence = "medium"
    spread_pages = 2 if payload.get("pageCount") == 2 else 1
    return ExtractedPage(
        page_index=page_index,
        text=payload["text"].strip(),
        confidence=confidence,
        spread_pages=spread_pages,
    )


class OpenAIPageExtractor:
    """OCR pages with an OpenAI vision model."""

    def __init__(
        self,
        client: OpenAIChatClient,
        *,
        model: str = "gpt-4o",
        prompts: PromptLibrary | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.prompts = prompts or PromptLibrary()

    def extract(self, page_index: int, image: bytes, name: str) -> ExtractedPage:
        """Send the page as a base64 data URL and parse the JSON answer."""

        content_type = content_type_for(name)
        if not content_type.startswith("image/"):
            content_type = "image/jpeg"
        encoded = base64.b64encode(image).decode("ascii")
        answer = self.client.image_completion_text(
            model=self.model,
            system_prompt=self.prompts.ocr_system_prompt(),
            user_prompt=self.prompts.ocr_user_prompt(),
            image_url=f"data:{content_type};base64,{encoded}",
        )
        return parse_extraction_answer(page_index, answer)


class ExtractionStage:
    """Batch adapter that extracts text for stored pages in page order."""

    def __init__(
        self,
        store: ArtifactStore,
        extractor: PageExtractor,
        *,
        run_logger: RunLogger | None = None,
        max_workers: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.run_logger = run_logger
        self.max_workers = max_workers

    def extract_batch(self, pages: Sequence[StoredPage]) -> list[ExtractedPage]:
        """Extract every page, failing the whole batch on the first page failure.

        Raises:
            ExtractionError: Naming the failing page. No results are returned.
        """

        try:
            results = run_indexed(pages, self._extract_one, max_workers=self.max_workers)
        except BatchFailure as failure:
            if isinstance(failure.error, ExtractionError):
                raise failure.error from None
            page_index = pages[failure.index].page_index
            raise ExtractionError(
                f"Text extraction failed for page {page_index + 1}: {failure.error}",
                item_index=page_index,
            ) from failure.error

        for page, result in zip(pages, results):
            if result.page_index != page.page_index:
                raise ExtractionError(
                    f"Extraction result for page {result.page_index + 1} arrived in the "
                    f"slot of page {page.page_index + 1}.",
                    item_index=page.page_index,
                )
        return results

    def _extract_one(self, _position: int, page: StoredPage) -> ExtractedPage:
        """Extract one page, then drop its raw image."""

        label = f"page {page.page_index + 1}"
        try:
            image = self.store.get(page.ref)
        except PagevoiceError as exc:
            raise ExtractionError(
                f"Could not read the image for {label}: {exc.detail}", item_index=page.page_index
            ) from exc
        try:
            result = self.extractor.extract(page.page_index, image, page.ref.name)
        except ProviderError as exc:
            raise ExtractionError(
                f"Text extraction failed for {label}: {exc}", item_index=page.page_index
            ) from exc
        if not result.text.strip():
            raise ExtractionError(
                f"No text was found on {label}.",
                item_index=page.page_index,
                hint="Retake the photo with the page flat and well lit.",
            )

        delete_artifacts(self.store, [page.ref], run_logger=self.run_logger)
        return result
