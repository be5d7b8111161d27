"""Book assembly orchestration.

Responsibilities:
- Drive page images through upload, text extraction, speech synthesis, and audio
  assembly for Create Book, Add Pages, and Change Voice.
- Commit a book record only after every stage succeeded and the record passes the
  ledger invariants; on failure, leave the stored record untouched.
- Release intermediate artifacts: raw images per page, chunk audio and superseded
  renderings after commit, and everything produced by an aborted operation.

Key types:
- `BookAssemblyOrchestrator`: operation facade used by the CLI and library.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Sequence, TypeVar
import uuid

from ..audio.assembler import AudioAssembler
from ..errors import NotFoundError, PagevoiceError, StorageError, ValidationError
from ..extraction.extractor import ExtractionStage
from ..extraction.title import TitleDetector
from ..io.repository import BookRepository, VoiceRepository
from ..io.storage import ArtifactStore, unique_token
from ..ledger import (
    PROGRESS_TOLERANCE_SECONDS,
    activate_voice,
    add_or_replace_version,
    check_invariants,
    current_version,
)
from ..models.datatypes import (
    BOOK_STATUS_COMPLETED,
    BOOK_STATUS_PROCESSING,
    ArtifactRef,
    AssembledAudio,
    AudioSegment,
    Book,
    ExtractedPage,
    PageImage,
    StoredPage,
    SynthesisChunk,
    SynthesizedChunk,
    Voice,
)
from ..telemetry.logger import RunLogger
from ..tts.synthesizer import SynthesisStage
from .batch import DEFAULT_BATCH_CONCURRENCY, BatchFailure, run_indexed
from .cleanup import CleanupReport, delete_artifacts

MAX_PAGES_PER_REQUEST = 10

_StageResult = TypeVar("_StageResult")


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


def new_book_id() -> str:
    """Return a fresh opaque book identifier."""

    return str(uuid.uuid4())


class BookAssemblyOrchestrator:
    """Coordinate all stages for book creation, page addition, and voice change."""

    def __init__(
        self,
        *,
        store: ArtifactStore,
        books: BookRepository,
        voices: VoiceRepository,
        extraction: ExtractionStage,
        synthesis: SynthesisStage,
        assembler: AudioAssembler,
        title_detector: TitleDetector,
        image_bucket: str = "book-images",
        max_pages_per_request: int = MAX_PAGES_PER_REQUEST,
        upload_workers: int = DEFAULT_BATCH_CONCURRENCY,
        tolerance_seconds: float = PROGRESS_TOLERANCE_SECONDS,
        run_logger: RunLogger | None = None,
        clock: Callable[[], str] = utc_timestamp,
        id_factory: Callable[[], str] = new_book_id,
        token_factory: Callable[[], str] = unique_token,
    ) -> None:
        self.store = store
        self.books = books
        self.voices = voices
        self.extraction = extraction
        self.synthesis = synthesis
        self.assembler = assembler
        self.title_detector = title_detector
        self.image_bucket = image_bucket
        self.max_pages_per_request = max_pages_per_request
        self.upload_workers = upload_workers
        self.tolerance_seconds = tolerance_seconds
        self._run_logger = run_logger
        self.clock = clock
        self.id_factory = id_factory
        self.token_factory = token_factory

    def create_book(
        self,
        owner: str,
        images: Sequence[PageImage],
        voice_id: str,
        title: str | None = None,
    ) -> Book:
        """Build a new book from page images narrated by one voice.

        Raises:
            ValidationError: On a bad image count, missing voice, or blank owner.
            NotFoundError: When the voice does not belong to `owner`.
            StorageError, ExtractionError, SynthesisError, AssemblyError: When a stage
                fails; no book record exists afterwards.
        """

        self._validate_owner(owner)
        self._validate_images(images)
        if not voice_id or not voice_id.strip():
            raise ValidationError("A voice id is required to create a book.", stage="create")
        voice = self._resolve_voice(owner, voice_id.strip())
        book_id = self.id_factory()

        produced: list[ArtifactRef] = []
        try:
            stored = self._run_stage(
                "upload",
                lambda: self._upload_pages(owner, book_id, images, first_index=0),
                book=book_id,
                items=len(images),
            )
            produced.extend(page.ref for page in stored)
            extracted = self._run_stage(
                "extract", lambda: self.extraction.extract_batch(stored), book=book_id, items=len(stored)
            )
            synthesized = self._synthesize(owner, book_id, extracted, voice)
            produced.extend(chunk.audio_ref for chunk in synthesized)
            assembled = self._assemble(owner, book_id, voice, synthesized, base=None)
            produced.append(assembled.ref)

            texts = tuple(page.text for page in extracted)
            resolved_title = (title or "").strip() or self._run_stage(
                "title", lambda: self.title_detector.detect(texts, book_id), book=book_id
            )
            now = self.clock()
            book = Book(
                id=book_id,
                owner=owner,
                title=resolved_title,
                pages=texts,
                status=BOOK_STATUS_PROCESSING,
                created_at=now,
                updated_at=now,
            )
            book = add_or_replace_version(
                book, voice.id, assembled.ref, assembled.total_duration, created_at=now
            )
            book = activate_voice(book, voice.id, tolerance_seconds=self.tolerance_seconds)
            book = replace(book, status=BOOK_STATUS_COMPLETED)
            self._commit(book, create=True)
        except PagevoiceError:
            self._discard(produced)
            raise

        self.assembler.release_inputs(assembled)
        return book

    def add_pages(
        self,
        owner: str,
        book_id: str,
        images: Sequence[PageImage],
        voice_id: str | None = None,
    ) -> Book:
        """Append pages to a completed book and extend its active rendering.

        Only the active voice's rendering is extended; other renderings keep their
        audio and become stale until their voice is rendered again.

        Raises:
            ValidationError: On a bad image count, a book that is not completed, or a
                voice other than the active one.
            NotFoundError: When the book or its active voice is missing for `owner`.
            StorageError, ExtractionError, SynthesisError, AssemblyError: When a stage
                fails; the stored book is left unchanged.
        """

        self._validate_owner(owner)
        self._validate_images(images)
        book = self._load_completed_book(owner, book_id)
        active = current_version(book)
        if active is None:
            raise ValidationError(
                f"Book `{book_id}` has no active voice rendering to extend.", stage="add-pages"
            )
        if voice_id and voice_id.strip() and voice_id.strip() != active.voice_id:
            raise ValidationError(
                f"Pages are narrated with the active voice `{active.voice_id}`, not `{voice_id}`.",
                stage="add-pages",
                hint="Switch voices with `change-voice` first, or omit the voice.",
            )
        voice = self._resolve_voice(owner, active.voice_id)

        produced: list[ArtifactRef] = []
        try:
            stored = self._run_stage(
                "upload",
                lambda: self._upload_pages(owner, book.id, images, first_index=book.page_count),
                book=book.id,
                items=len(images),
            )
            produced.extend(page.ref for page in stored)
            extracted = self._run_stage(
                "extract", lambda: self.extraction.extract_batch(stored), book=book.id, items=len(stored)
            )
            synthesized = self._synthesize(owner, book.id, extracted, voice)
            produced.extend(chunk.audio_ref for chunk in synthesized)
            base = AudioSegment(ref=active.audio_ref, duration_seconds=active.total_duration)
            assembled = self._assemble(owner, book.id, voice, synthesized, base=base)
            produced.append(assembled.ref)

            now = self.clock()
            updated = replace(
                book, pages=book.pages + tuple(page.text for page in extracted), updated_at=now
            )
            updated = add_or_replace_version(
                updated,
                voice.id,
                assembled.ref,
                assembled.total_duration,
                page_count=updated.page_count,
                created_at=now,
            )
            self._commit(updated, create=False)
        except PagevoiceError:
            self._discard(produced)
            raise

        self.assembler.release_inputs(assembled)
        return updated

    def change_voice(self, owner: str, book_id: str, voice_id: str) -> Book:
        """Make `voice_id` the narrator, rendering the whole book first if needed.

        Switching to a voice that already has a rendering does no synthesis work.
        A new rendering starts where the previous voice's listener left off.

        Raises:
            ValidationError: On a missing voice id or a book that is not completed.
            NotFoundError: When the book, or a voice without a rendering, is missing.
            StorageError, SynthesisError, AssemblyError: When a stage fails; the
                stored book is left unchanged.
        """

        self._validate_owner(owner)
        if not voice_id or not voice_id.strip():
            raise ValidationError("A voice id is required to change voices.", stage="change-voice")
        voice_id = voice_id.strip()
        book = self._load_completed_book(owner, book_id)

        if book.version_for(voice_id) is not None:
            updated = activate_voice(book, voice_id, tolerance_seconds=self.tolerance_seconds)
            if updated is book:
                return book
            updated = replace(updated, updated_at=self.clock())
            self._commit(updated, create=False)
            return updated

        voice = self._resolve_voice(owner, voice_id)
        pages = [
            ExtractedPage(page_index=index, text=text, confidence="high")
            for index, text in enumerate(book.pages)
        ]
        produced: list[ArtifactRef] = []
        try:
            synthesized = self._synthesize(owner, book.id, pages, voice)
            produced.extend(chunk.audio_ref for chunk in synthesized)
            assembled = self._assemble(owner, book.id, voice, synthesized, base=None)
            produced.append(assembled.ref)

            now = self.clock()
            updated = add_or_replace_version(
                book,
                voice.id,
                assembled.ref,
                assembled.total_duration,
                page_count=book.page_count,
                created_at=now,
            )
            updated = activate_voice(updated, voice.id, tolerance_seconds=self.tolerance_seconds)
            updated = replace(updated, updated_at=now)
            self._commit(updated, create=False)
        except PagevoiceError:
            self._discard(produced)
            raise

        self.assembler.release_inputs(assembled)
        return updated

    def _run_stage(
        self,
        stage_name: str,
        action: Callable[[], _StageResult],
        **context: object,
    ) -> _StageResult:
        """Run one named stage and emit start/complete/failure telemetry events."""

        if self._run_logger is not None:
            self._run_logger.log_stage_start(stage_name, **context)
        try:
            result = action()
        except Exception as exc:
            if self._run_logger is not None:
                failure_context = dict(context)
                item_index = getattr(exc, "item_index", None)
                if item_index is not None:
                    failure_context["item"] = item_index
                self._run_logger.log_stage_failure(stage_name, type(exc).__name__, **failure_context)
            raise
        if self._run_logger is not None:
            self._run_logger.log_stage_complete(stage_name, **context)
        return result

    def _validate_owner(self, owner: str) -> None:
        if not owner or not owner.strip():
            raise ValidationError("An owner id is required.")

    def _validate_images(self, images: Sequence[PageImage]) -> None:
        """Reject empty, oversized, or blank page image batches."""

        if not images:
            raise ValidationError(
                "At least one page image is required.", hint="Pass one or more image files."
            )
        if len(images) > self.max_pages_per_request:
            raise ValidationError(
                f"At most {self.max_pages_per_request} page images are accepted per request, "
                f"got {len(images)}.",
                hint="Split the pages over several `add-pages` calls.",
            )
        for position, image in enumerate(images, start=1):
            if not image.data:
                raise ValidationError(f"Page image {position} (`{image.name}`) is empty.")

    def _resolve_voice(self, owner: str, voice_id: str) -> Voice:
        """Load the owner's voice record that carries the synthesis clone handle."""

        try:
            return self.voices.get(owner, voice_id)
        except NotFoundError:
            raise NotFoundError(
                f"Voice `{voice_id}` not found.",
                hint="List available voices with `pagevoice voices list`.",
            ) from None

    def _load_completed_book(self, owner: str, book_id: str) -> Book:
        book = self.books.get(owner, book_id)
        if book.status != BOOK_STATUS_COMPLETED:
            raise ValidationError(
                f"Book `{book_id}` is `{book.status}`; only completed books can be changed."
            )
        return book

    def _upload_pages(
        self,
        owner: str,
        book_id: str,
        images: Sequence[PageImage],
        *,
        first_index: int,
    ) -> list[StoredPage]:
        """Upload all page images in parallel, keeping each one's page index.

        Raises:
            StorageError: Naming the failing page; images that were uploaded are
                deleted before the error is raised.
        """

        def upload(position: int, image: PageImage) -> StoredPage:
            page_index = first_index + position
            name = f"page-{page_index:03d}-{self.token_factory()}.{image.extension}"
            ref = self.store.put(self.image_bucket, owner, book_id, name, image.data)
            return StoredPage(page_index=page_index, ref=ref)

        try:
            return run_indexed(images, upload, max_workers=self.upload_workers)
        except BatchFailure as failure:
            delete_artifacts(
                self.store,
                [page.ref for page in failure.completed.values()],
                run_logger=self._run_logger,
            )
            page_index = first_index + failure.index
            detail = getattr(failure.error, "detail", str(failure.error))
            raise StorageError(
                f"Failed to upload page {page_index + 1}: {detail}", item_index=page_index
            ) from failure.error

    def _synthesize(
        self,
        owner: str,
        book_id: str,
        pages: Sequence[ExtractedPage],
        voice: Voice,
    ) -> list[SynthesizedChunk]:
        """Render one chunk per page; chunk index equals page index."""

        chunks = [
            SynthesisChunk(chunk_index=page.page_index, text=page.text, voice_ref=voice.external_clone_ref)
            for page in pages
        ]
        return self._run_stage(
            "synthesize",
            lambda: self.synthesis.synthesize_batch(chunks, owner=owner, book_id=book_id),
            book=book_id,
            items=len(chunks),
            voice=voice.id,
        )

    def _assemble(
        self,
        owner: str,
        book_id: str,
        voice: Voice,
        synthesized: Sequence[SynthesizedChunk],
        *,
        base: AudioSegment | None,
    ) -> AssembledAudio:
        ordered = sorted(synthesized, key=lambda chunk: chunk.chunk_index)
        return self._run_stage(
            "assemble",
            lambda: self.assembler.assemble(
                [chunk.segment for chunk in ordered],
                base,
                owner=owner,
                book_id=book_id,
                voice_id=voice.id,
                release_inputs=False,
            ),
            book=book_id,
            items=len(ordered),
            append=base is not None,
        )

    def _commit(self, book: Book, *, create: bool) -> None:
        """Validate invariants, then atomically write the record."""

        def write() -> None:
            check_invariants(book, tolerance_seconds=self.tolerance_seconds)
            if create:
                self.books.create(book)
            else:
                self.books.update(book)

        self._run_stage("persist", write, book=book.id)

    def _discard(self, refs: Sequence[ArtifactRef]) -> CleanupReport:
        """Delete artifacts produced by an aborted operation (best-effort)."""

        return delete_artifacts(self.store, refs, run_logger=self._run_logger)
