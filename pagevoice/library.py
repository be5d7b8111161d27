"""Owner-facing library operations for books and cloned voices.

Responsibilities:
- Look up, page through, and delete an owner's books.
- Record listening progress and serve byte ranges of the active rendering.
- Clone voices and keep exactly one default voice per owner.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Sequence, TypeVar
import uuid

from .errors import NotFoundError, ProviderError, SynthesisError, ValidationError
from .io.repository import BookRepository, VoiceRepository
from .io.storage import ArtifactStore
from .ledger import PROGRESS_TOLERANCE_SECONDS, current_version, record_progress
from .models.datatypes import ArtifactRef, Book, ResultPage, Voice
from .parsing import clamp_page_limit
from .pipeline.cleanup import delete_artifacts
from .pipeline.orchestrator import utc_timestamp
from .telemetry.logger import RunLogger
from .tts.cloning import VoiceCloner

_Record = TypeVar("_Record", Book, Voice)


def paginate(items: Sequence[_Record], cursor: str | None, limit: object) -> ResultPage[_Record]:
    """Slice an ordered record list after the record whose id is `cursor`.

    Raises:
        ValidationError: When `cursor` names no record in `items`.
    """

    page_limit = clamp_page_limit(limit)
    start = 0
    if cursor:
        for position, item in enumerate(items):
            if item.id == cursor:
                start = position + 1
                break
        else:
            raise ValidationError(f"Unknown pagination cursor `{cursor}`.", stage="list")

    selected = tuple(items[start : start + page_limit])
    has_more = start + page_limit < len(items)
    next_cursor = selected[-1].id if has_more and selected else None
    return ResultPage(items=selected, next_cursor=next_cursor, limit=page_limit)


@dataclass(frozen=True, slots=True)
class PlaybackRange:
    """Bytes of the active rendering served for one range request."""

    voice_id: str
    ref: ArtifactRef
    start: int
    data: bytes

    @property
    def end(self) -> int:
        """Return the inclusive offset of the last byte served."""

        return self.start + len(self.data) - 1


class BookLibrary:
    """Read, delete, and track listening progress of an owner's books."""

    def __init__(
        self,
        *,
        books: BookRepository,
        store: ArtifactStore,
        tolerance_seconds: float = PROGRESS_TOLERANCE_SECONDS,
        run_logger: RunLogger | None = None,
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self.books = books
        self.store = store
        self.tolerance_seconds = tolerance_seconds
        self.run_logger = run_logger
        self.clock = clock

    def get_book(self, owner: str, book_id: str) -> Book:
        """Return the owner's book or raise `NotFoundError`."""

        return self.books.get(owner, book_id)

    def list_books(
        self, owner: str, cursor: str | None = None, limit: object = None
    ) -> ResultPage[Book]:
        """Return one newest-first page of the owner's books."""

        return paginate(self.books.list_for_owner(owner), cursor, limit)

    def delete_book(self, owner: str, book_id: str) -> int:
        """Delete every rendering of a book, then its record.

        Returns:
            Number of rendering artifacts that were actually removed.
        """

        book = self.books.get(owner, book_id)
        report = delete_artifacts(
            self.store,
            [version.audio_ref for version in book.voice_versions],
            run_logger=self.run_logger,
        )
        self.books.delete(owner, book_id)
        return len(report.deleted)

    def record_progress(self, owner: str, book_id: str, elapsed_seconds: float) -> Book:
        """Store elapsed listening seconds for the book's active voice."""

        book = self.books.get(owner, book_id)
        updated = record_progress(
            book,
            elapsed_seconds,
            tolerance_seconds=self.tolerance_seconds,
            updated_at=self.clock(),
        )
        self.books.update(updated)
        return updated

    def open_playback(
        self, owner: str, book_id: str, start: int = 0, end: int | None = None
    ) -> PlaybackRange:
        """Return an inclusive byte range of the active rendering for seeking playback."""

        book = self.books.get(owner, book_id)
        version = current_version(book)
        if version is None:
            raise NotFoundError(f"Book `{book_id}` has no audio yet.", stage="playback")
        if start < 0 or (end is not None and end < start):
            raise ValidationError(f"Invalid byte range {start}-{end}.", stage="playback")
        data = self.store.get_range(version.audio_ref, start, end)
        return PlaybackRange(voice_id=version.voice_id, ref=version.audio_ref, start=start, data=data)


class VoiceLibrary:
    """Clone and manage an owner's voices."""

    def __init__(
        self,
        *,
        voices: VoiceRepository,
        cloner: VoiceCloner | None = None,
        clock: Callable[[], str] = utc_timestamp,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.voices = voices
        self.cloner = cloner
        self.clock = clock
        self.id_factory = id_factory

    def clone_voice(
        self,
        owner: str,
        name: str,
        sample: bytes,
        filename: str,
        description: str = "",
    ) -> Voice:
        """Clone a voice from one recording; the owner's first voice becomes default.

        Raises:
            ValidationError: On a blank or duplicate name or an empty sample.
            SynthesisError: When the cloning service rejects the sample.
        """

        display_name = (name or "").strip()
        if not display_name:
            raise ValidationError("A voice name is required.", stage="clone")
        if not sample:
            raise ValidationError("The voice sample is empty.", stage="clone")
        existing = self.voices.list_for_owner(owner)
        if any(voice.display_name == display_name for voice in existing):
            raise ValidationError(
                f"A voice named `{display_name}` already exists.",
                stage="clone",
                hint="Choose a different name.",
            )
        if self.cloner is None:
            raise ValidationError(
                "Voice cloning is not configured.",
                stage="clone",
                hint="Set an ElevenLabs API key with `pagevoice credentials`.",
            )

        try:
            external_ref = self.cloner.clone(display_name, sample, filename, description)
        except ProviderError as exc:
            raise SynthesisError(f"Voice cloning failed: {exc}") from exc

        voice = Voice(
            id=self.id_factory(),
            owner=owner,
            display_name=display_name,
            external_clone_ref=external_ref,
            is_default=not existing,
            created_at=self.clock(),
        )
        self.voices.create(voice)
        return voice

    def list_voices(
        self, owner: str, cursor: str | None = None, limit: object = None
    ) -> ResultPage[Voice]:
        """Return one page of voices, default first, then oldest first."""

        return paginate(self.voices.list_for_owner(owner), cursor, limit)

    def set_default_voice(self, owner: str, voice_id: str) -> Voice:
        """Make one voice the owner's default and clear every other default."""

        target = self.voices.get(owner, voice_id)
        for voice in self.voices.list_for_owner(owner):
            if voice.is_default and voice.id != target.id:
                self.voices.update(replace(voice, is_default=False))
        if target.is_default:
            return target
        updated = replace(target, is_default=True)
        self.voices.update(updated)
        return updated

    def delete_voice(self, owner: str, voice_id: str) -> Voice | None:
        """Delete a voice, promoting the oldest remaining voice if it was the default.

        Returns:
            The newly promoted default voice, or `None` when no promotion happened.

        Raises:
            ValidationError: When it is the owner's only voice.
        """

        voices = self.voices.list_for_owner(owner)
        target = next((voice for voice in voices if voice.id == voice_id), None)
        if target is None:
            raise NotFoundError(f"Voice `{voice_id}` not found.")
        if len(voices) == 1:
            raise ValidationError(
                "Cannot delete your only voice.",
                stage="delete-voice",
                hint="Clone another voice first.",
            )

        self.voices.delete(owner, voice_id)
        if not target.is_default:
            return None
        remaining = sorted(
            (voice for voice in voices if voice.id != voice_id),
            key=lambda voice: (voice.created_at, voice.id),
        )
        promoted = replace(remaining[0], is_default=True)
        self.voices.update(promoted)
        return promoted
