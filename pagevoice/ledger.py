"""Voice-version ledger: per-book renderings, active voice, and listening progress.

Responsibilities:
- Look up the active rendering and its listening progress.
- Apply progress, rendering, and voice-switch changes as pure `Book` transitions.
- Validate the book-level invariants before a record is committed.

Every function here is free of I/O and returns a new `Book`; callers persist it.
"""

from __future__ import annotations

from dataclasses import replace
import math

from .errors import ValidationError
from .models.datatypes import (
    BOOK_STATUS_COMPLETED,
    BOOK_STATUSES,
    ArtifactRef,
    Book,
    VoiceVersion,
)

PROGRESS_TOLERANCE_SECONDS = 5.0


def _round_half_up(value: float) -> int:
    """Round to the nearest whole second, halves rounding up."""

    return int(math.floor(value + 0.5))


def current_version(book: Book) -> VoiceVersion | None:
    """Return the rendering of the active voice, or `None` when unset."""

    if book.active_voice_id is None:
        return None
    return book.version_for(book.active_voice_id)


def current_progress_seconds(book: Book) -> int:
    """Return elapsed seconds for the active voice, `0` when none recorded."""

    if book.active_voice_id is None:
        return 0
    return book.progress.get(book.active_voice_id, 0)


def progress_percentage(book: Book) -> float:
    """Return listening progress of the active rendering as a percentage in [0, 100]."""

    version = current_version(book)
    if version is None or version.total_duration <= 0:
        return 0.0
    percentage = round(current_progress_seconds(book) / version.total_duration * 100, 1)
    return min(100.0, max(0.0, percentage))


def record_progress(
    book: Book,
    elapsed_seconds: float,
    *,
    tolerance_seconds: float = PROGRESS_TOLERANCE_SECONDS,
    updated_at: str = "",
) -> Book:
    """Return a book with progress for the active voice set to `elapsed_seconds`.

    The value is rounded half up to whole seconds and never stored above
    `floor(total_duration + tolerance_seconds)`.

    Raises:
        ValidationError: When no rendering is active, when the value is negative or
            not finite, or when it exceeds the active duration plus tolerance.
    """

    version = current_version(book)
    if version is None:
        raise ValidationError(
            f"Book `{book.id}` has no active voice rendering to record progress against.",
            stage="progress",
        )
    if not math.isfinite(elapsed_seconds) or elapsed_seconds < 0:
        raise ValidationError(
            f"Elapsed seconds must be a non-negative number, got {elapsed_seconds!r}.",
            stage="progress",
        )
    if elapsed_seconds > version.total_duration + tolerance_seconds:
        raise ValidationError(
            f"Elapsed seconds {elapsed_seconds} exceed rendering duration "
            f"{version.total_duration:.1f}s for voice `{version.voice_id}`.",
            stage="progress",
        )

    # Rounding up must not carry a position past the allowed bound.
    ceiling = math.floor(version.total_duration + tolerance_seconds)
    progress = dict(book.progress)
    progress[version.voice_id] = min(_round_half_up(elapsed_seconds), ceiling)
    return replace(book, progress=progress, updated_at=updated_at or book.updated_at)


def add_or_replace_version(
    book: Book,
    voice_id: str,
    audio_ref: ArtifactRef,
    total_duration: float,
    *,
    page_count: int | None = None,
    created_at: str = "",
) -> Book:
    """Insert a rendering for `voice_id`, or replace the existing one in place.

    Other voices' renderings and all progress entries are left untouched.
    """

    if not voice_id:
        raise ValidationError("Voice id is required for a voice rendering.")
    if total_duration < 0:
        raise ValidationError(f"Rendering duration must not be negative for `{voice_id}`.")

    version = VoiceVersion(
        voice_id=voice_id,
        audio_ref=audio_ref,
        total_duration=total_duration,
        page_count=book.page_count if page_count is None else page_count,
        created_at=created_at,
    )
    versions = list(book.voice_versions)
    for position, existing in enumerate(versions):
        if existing.voice_id == voice_id:
            versions[position] = replace(
                version, created_at=existing.created_at or created_at
            )
            break
    else:
        versions.append(version)
    return replace(book, voice_versions=tuple(versions))


def activate_voice(
    book: Book,
    voice_id: str,
    *,
    tolerance_seconds: float = PROGRESS_TOLERANCE_SECONDS,
) -> Book:
    """Make `voice_id` active, carrying the previous voice's position over.

    The target's progress is seeded from the previously active voice only when the
    target has no entry of its own. A seed that would exceed the target rendering's
    duration plus tolerance is clamped to that duration.
    """

    target = book.version_for(voice_id)
    if target is None:
        raise ValidationError(
            f"Voice `{voice_id}` has no rendering for book `{book.id}`.",
            stage="change-voice",
        )

    previous_voice_id = book.active_voice_id
    if previous_voice_id == voice_id:
        return book

    progress = dict(book.progress)
    if voice_id not in progress and previous_voice_id in progress:
        seeded = progress[previous_voice_id]
        if seeded > target.total_duration + tolerance_seconds:
            seeded = int(math.floor(target.total_duration))
        progress[voice_id] = seeded
    return replace(book, active_voice_id=voice_id, progress=progress)


def stale_voice_ids(book: Book) -> tuple[str, ...]:
    """Return voices whose rendering narrates fewer pages than the book holds."""

    return tuple(
        version.voice_id
        for version in book.voice_versions
        if version.page_count < book.page_count
    )


def check_invariants(
    book: Book, *, tolerance_seconds: float = PROGRESS_TOLERANCE_SECONDS
) -> None:
    """Raise `ValidationError` when the book violates a record-level invariant."""

    if book.status not in BOOK_STATUSES:
        raise ValidationError(f"Unknown book status `{book.status}`.", stage="commit")

    voice_ids = [version.voice_id for version in book.voice_versions]
    if len(set(voice_ids)) != len(voice_ids):
        raise ValidationError(
            f"Book `{book.id}` holds more than one rendering for the same voice.",
            stage="commit",
        )

    if book.status == BOOK_STATUS_COMPLETED and not voice_ids:
        raise ValidationError(
            f"Completed book `{book.id}` must hold at least one voice rendering.",
            stage="commit",
        )

    if voice_ids and book.active_voice_id is None:
        raise ValidationError(f"Book `{book.id}` has renderings but no active voice.", stage="commit")
    if book.active_voice_id is not None and book.active_voice_id not in voice_ids:
        raise ValidationError(
            f"Active voice `{book.active_voice_id}` has no rendering in book `{book.id}`.",
            stage="commit",
        )

    for voice_id, elapsed in book.progress.items():
        version = book.version_for(voice_id)
        if version is None:
            raise ValidationError(
                f"Progress recorded for voice `{voice_id}` without a rendering.",
                stage="commit",
            )
        if elapsed < 0 or elapsed > version.total_duration + tolerance_seconds:
            raise ValidationError(
                f"Progress {elapsed}s for voice `{voice_id}` is outside its rendering.",
                stage="commit",
            )
