"""Core datatypes shared across Pagevoice modules.

Responsibilities:
- Represent immutable records exchanged between pipeline stages.
- Represent the persisted `Book` and `Voice` records and their voice renderings.

Key types:
- `ArtifactRef`, `PageImage`, `StoredPage`, `ExtractedPage`, `SynthesisChunk`,
  `SynthesizedChunk`, `AudioSegment`, `AssembledAudio`, `VoiceVersion`, `Book`,
  `Voice`, and `ResultPage`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Generic, TypeVar

BOOK_STATUS_PROCESSING = "processing"
BOOK_STATUS_COMPLETED = "completed"
BOOK_STATUS_FAILED = "failed"
BOOK_STATUSES = frozenset(
    {BOOK_STATUS_PROCESSING, BOOK_STATUS_COMPLETED, BOOK_STATUS_FAILED}
)

CONFIDENCE_LEVELS = frozenset({"high", "medium", "low"})

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """Location of one stored artifact.

    Attributes:
        bucket: Store bucket (`book-images` or `book-audio` by default).
        path: Slash-separated object path, `<owner>/<book>/<name>`.
    """

    bucket: str
    path: str

    @property
    def name(self) -> str:
        """Return the final path component."""

        return PurePosixPath(self.path).name

    @property
    def suffix(self) -> str:
        """Return the lower-cased file extension without the dot."""

        return PurePosixPath(self.path).suffix.lstrip(".").lower()

    def as_string(self) -> str:
        """Serialize as `<bucket>/<path>`."""

        return f"{self.bucket}/{self.path}"

    @classmethod
    def parse(cls, value: str) -> ArtifactRef:
        """Parse a `<bucket>/<path>` string produced by `as_string`."""

        bucket, separator, path = value.strip().partition("/")
        if not bucket or not separator or not path:
            raise ValueError(f"Malformed artifact reference `{value}`.")
        return cls(bucket=bucket, path=path)


@dataclass(frozen=True, slots=True)
class PageImage:
    """One photographed page as received from the caller."""

    name: str
    data: bytes

    @property
    def extension(self) -> str:
        """Return a normalized image extension, defaulting to `jpg`."""

        suffix = PurePosixPath(self.name).suffix.lstrip(".").lower()
        return suffix or "jpg"


@dataclass(frozen=True, slots=True)
class StoredPage:
    """A page image uploaded to the artifact store, tagged with its page index."""

    page_index: int
    ref: ArtifactRef


@dataclass(frozen=True, slots=True)
class ExtractedPage:
    """Text extraction output for one page.

    Attributes:
        page_index: 0-based page position within the whole book.
        text: Extracted page text.
        confidence: `high`, `medium`, or `low`.
        spread_pages: 1 for a single page, 2 for a photographed double-page spread.
    """

    page_index: int
    text: str
    confidence: str
    spread_pages: int = 1


@dataclass(frozen=True, slots=True)
class SynthesisChunk:
    """One unit of synthesis work: one page's text with one voice."""

    chunk_index: int
    text: str
    voice_ref: str


@dataclass(frozen=True, slots=True)
class AudioSegment:
    """An audio artifact and its reported duration in seconds."""

    ref: ArtifactRef
    duration_seconds: float


@dataclass(frozen=True, slots=True)
class SynthesizedChunk:
    """Synthesis output for one chunk."""

    chunk_index: int
    audio_ref: ArtifactRef
    duration_seconds: float

    @property
    def segment(self) -> AudioSegment:
        """Return this chunk as an assembler input segment."""

        return AudioSegment(ref=self.audio_ref, duration_seconds=self.duration_seconds)


@dataclass(frozen=True, slots=True)
class AssembledAudio:
    """Combined audio artifact produced by the assembler.

    Attributes:
        ref: Reference of the newly uploaded combined artifact.
        total_duration: Sum of the reported input durations.
        consumed_refs: Inputs (base included) that are superseded by `ref`.
    """

    ref: ArtifactRef
    total_duration: float
    consumed_refs: tuple[ArtifactRef, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class VoiceVersion:
    """One complete audio rendering of a book with one voice."""

    voice_id: str
    audio_ref: ArtifactRef
    total_duration: float
    page_count: int = 0
    created_at: str = ""


@dataclass(frozen=True, slots=True)
class Book:
    """Persisted book record.

    Attributes:
        id: Opaque book identifier.
        owner: Owning user identifier.
        title: Caller-supplied or detected title.
        pages: Ordered extracted page texts, append-only.
        voice_versions: One rendering per voice, in creation order.
        active_voice_id: Voice currently narrating, or `None`.
        progress: Elapsed whole seconds per voice.
        status: `processing`, `completed`, or `failed`.
        created_at: ISO-8601 creation timestamp.
        updated_at: ISO-8601 timestamp of the last committed change.
    """

    id: str
    owner: str
    title: str
    pages: tuple[str, ...] = field(default_factory=tuple)
    voice_versions: tuple[VoiceVersion, ...] = field(default_factory=tuple)
    active_voice_id: str | None = None
    progress: dict[str, int] = field(default_factory=dict)
    status: str = BOOK_STATUS_PROCESSING
    created_at: str = ""
    updated_at: str = ""

    @property
    def page_count(self) -> int:
        """Return the number of stored pages."""

        return len(self.pages)

    def version_for(self, voice_id: str) -> VoiceVersion | None:
        """Return the rendering for a voice, if one exists."""

        for version in self.voice_versions:
            if version.voice_id == voice_id:
                return version
        return None


@dataclass(frozen=True, slots=True)
class Voice:
    """A cloned voice owned by one user."""

    id: str
    owner: str
    display_name: str
    external_clone_ref: str
    is_default: bool = False
    created_at: str = ""


@dataclass(frozen=True, slots=True)
class ResultPage(Generic[_T]):
    """One cursor-paginated slice of records."""

    items: tuple[_T, ...]
    next_cursor: str | None
    limit: int

    @property
    def has_next_page(self) -> bool:
        """Return whether another page exists after this one."""

        return self.next_cursor is not None
