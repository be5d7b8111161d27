"""Best-effort book title detection."""

from __future__ import annotations

from typing import Protocol, Sequence

from loguru import logger

from ..errors import PagevoiceError, ProviderError
from ..providers.openai_client import OpenAIChatClient
from .prompts import UNKNOWN_TITLE_ANSWER, PromptLibrary

TITLE_CONTEXT_CHARS = 2000
MAX_TITLE_LENGTH = 200


def fallback_title(book_id: str) -> str:
    """Return the placeholder title used when detection gives no answer."""

    return f"Book {book_id[:8]}"


class TitleDetector(Protocol):
    """Protocol for title detection implementations."""

    def detect(self, pages: Sequence[str], book_id: str) -> str:
        """Return a title for the book; never raises."""


class FallbackTitleDetector:
    """Title detector used when no language model is configured."""

    def detect(self, pages: Sequence[str], book_id: str) -> str:
        return fallback_title(book_id)


class OpenAITitleDetector:
    """Ask a chat model for the title of the book's opening text."""

    def __init__(
        self,
        client: OpenAIChatClient,
        *,
        model: str = "gpt-4o-mini",
        prompts: PromptLibrary | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.prompts = prompts or PromptLibrary()

    def detect(self, pages: Sequence[str], book_id: str) -> str:
        """Return the detected title, or the placeholder on any failure."""

        opening_text = "\n\n".join(pages)[:TITLE_CONTEXT_CHARS].strip()
        if not opening_text:
            return fallback_title(book_id)
        try:
            answer = self.client.chat_completion_text(
                model=self.model,
                system_prompt=self.prompts.title_system_prompt(),
                user_prompt=self.prompts.title_prompt(opening_text),
                temperature=0,
                max_tokens=100,
            )
        except (ProviderError, PagevoiceError) as exc:
            logger.debug("Title detection failed for book {}: {}", book_id, exc)
            return fallback_title(book_id)

        title = answer.strip().strip("\"'").strip()
        if not title or title.lower() == UNKNOWN_TITLE_ANSWER.lower():
            return fallback_title(book_id)
        return title[:MAX_TITLE_LENGTH]
