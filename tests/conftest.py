"""Shared pytest fixtures for the full Pagevoice test suite."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import io
import itertools
import json
from pathlib import Path
import subprocess
import threading
import time
import wave

import pytest

from pagevoice.audio.assembler import AudioAssembler
from pagevoice.errors import ProviderError
from pagevoice.extraction.extractor import ExtractionStage
from pagevoice.extraction.title import FallbackTitleDetector
from pagevoice.io.repository import BookRepository, VoiceRepository
from pagevoice.io.storage import FilesystemArtifactStore
from pagevoice.library import BookLibrary, VoiceLibrary
from pagevoice.models.datatypes import ExtractedPage, PageImage, Voice
from pagevoice.pipeline.orchestrator import BookAssemblyOrchestrator
from pagevoice.provider_factory import PagevoiceServices
from pagevoice.tts.synthesizer import SynthesisStage

WAV_FRAME_RATE = 8000

# MPEG-1 Layer III, 128 kbps, 44.1 kHz, no padding, stereo: 417-byte frames.
MPEG_FRAME_HEADER = b"\xff\xfb\x90\x00"
MPEG_FRAME_LENGTH = 417
MPEG_FRAME_SECONDS = 1152 / 44100


def build_wav(seconds: float, frame_rate: int = WAV_FRAME_RATE, channels: int = 1) -> bytes:
    """Return a silent 16-bit PCM WAV payload of the given duration."""

    frame_count = int(round(seconds * frame_rate))
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(frame_rate)
        wav_file.writeframes(b"\x00\x00" * channels * frame_count)
    return buffer.getvalue()


def build_mp3(frame_count: int, *, fill: int = 0, id3v2: bool = False, id3v1: bool = False) -> bytes:
    """Return an MPEG audio stream of identical CBR frames, optionally tagged."""

    frame = MPEG_FRAME_HEADER + bytes([fill]) * (MPEG_FRAME_LENGTH - 4)
    body = frame * frame_count
    if id3v2:
        tag_body = b"TIT2" + b"\x00" * 16
        size = len(tag_body)
        syncsafe = bytes([(size >> 21) & 0x7F, (size >> 14) & 0x7F, (size >> 7) & 0x7F, size & 0x7F])
        body = b"ID3\x04\x00\x00" + syncsafe + tag_body + body
    if id3v1:
        body = body + b"TAG" + b"\x00" * 125
    return body


@pytest.fixture
def wav_bytes() -> Callable[..., bytes]:
    """Provide the WAV payload builder."""

    return build_wav


@pytest.fixture
def mp3_bytes() -> Callable[..., bytes]:
    """Provide the MPEG payload builder."""

    return build_mp3


def _strip_tags(data: bytes) -> bytes:
    """Drop a leading ID3v2 tag and a trailing ID3v1 tag from MPEG audio."""

    if data[:3] == b"ID3" and len(data) >= 10:
        size = 0
        for byte in data[6:10]:
            size = (size << 7) | (byte & 0x7F)
        data = data[10 + size :]
    if len(data) >= 128 and data[-128:-125] == b"TAG":
        data = data[:-128]
    return data


class FakeMediaTools:
    """`subprocess.run` double for `ffprobe` and the ffmpeg concat demuxer.

    `ffprobe` reports the frame count of `build_mp3` payloads as a duration;
    `ffmpeg` stream-copies the listed inputs, minus their tags, in list order.
    """

    def __init__(self) -> None:
        """Initialize command recording and scripted failures."""

        self.commands: list[list[str]] = []
        self.missing: set[str] = set()
        self.failures: dict[str, str] = {}

    def __call__(
        self, command: list[str], *, check: bool, capture_output: bool, text: bool
    ) -> subprocess.CompletedProcess[str]:
        """Emulate one ffmpeg-family invocation."""

        _ = check, capture_output, text
        self.commands.append(list(command))
        tool = command[0]
        if tool in self.missing:
            raise FileNotFoundError(tool)
        if tool in self.failures:
            raise subprocess.CalledProcessError(1, command, output="", stderr=self.failures[tool])
        if tool == "ffprobe":
            data = Path(command[-1]).read_bytes()
            duration = data.count(MPEG_FRAME_HEADER) * MPEG_FRAME_SECONDS
            payload = json.dumps({"format": {"duration": str(duration)}})
            return subprocess.CompletedProcess(command, 0, stdout=payload, stderr="")

        list_path = Path(command[command.index("-i") + 1])
        parts: list[bytes] = []
        for line in list_path.read_text(encoding="utf-8").splitlines():
            quoted = line[len("file ") :]
            parts.append(_strip_tags(Path(quoted[1:-1].replace("'\\''", "'")).read_bytes()))
        Path(command[-1]).write_bytes(b"".join(parts))
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")


@pytest.fixture
def media_tools(monkeypatch: pytest.MonkeyPatch) -> FakeMediaTools:
    """Route ffmpeg/ffprobe invocations to an in-process double."""

    tools = FakeMediaTools()
    monkeypatch.setattr("pagevoice.audio.ffmpeg.subprocess.run", tools)
    return tools


class ReversedLatencyExtractor:
    """Extractor double that returns image bytes as text, later pages finishing first."""

    def __init__(self, delay_seconds: float = 0.004, fail_marker: str | None = None) -> None:
        """Initialize with the per-page latency step and the text that triggers a failure."""

        self.delay_seconds = delay_seconds
        self.fail_marker = fail_marker
        self.completion_order: list[int] = []
        self._lock = threading.Lock()

    def extract(self, page_index: int, image: bytes, name: str) -> ExtractedPage:
        """Sleep longer for earlier pages, then echo the image text or fail on the marker."""

        _ = name
        time.sleep(max(0, 12 - page_index) * self.delay_seconds)
        text = image.decode("utf-8")
        if self.fail_marker is not None and self.fail_marker in text:
            raise ProviderError(
                "OpenAI request failed (HTTP 500).",
                provider="OpenAI",
                failure_kind="http_error",
                status_code=500,
            )
        with self._lock:
            self.completion_order.append(page_index)
        return ExtractedPage(page_index=page_index, text=text, confidence="high")


class WavSynthesizer:
    """Synthesizer double producing fixed-length WAV audio per chunk."""

    def __init__(self, seconds_per_chunk: float = 10.0, fail_marker: str | None = None) -> None:
        """Initialize chunk duration and the text marker that triggers a failure."""

        self.seconds_per_chunk = seconds_per_chunk
        self.fail_marker = fail_marker
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def synthesize(self, text: str, voice_ref: str) -> bytes:
        """Return silent WAV audio, or raise for texts carrying the failure marker."""

        with self._lock:
            self.calls.append((text, voice_ref))
        if self.fail_marker is not None and self.fail_marker in text:
            raise ProviderError(
                "ElevenLabs request failed (HTTP 500).",
                provider="ElevenLabs",
                failure_kind="http_error",
                status_code=500,
            )
        return build_wav(self.seconds_per_chunk)


class StaticCloner:
    """Voice cloner double returning a predictable external handle."""

    def __init__(self) -> None:
        """Initialize call recording."""

        self.calls: list[tuple[str, str]] = []

    def clone(self, name: str, sample: bytes, filename: str, description: str = "") -> str:
        """Record the call and return `clone-<name>`."""

        _ = sample, description
        self.calls.append((name, filename))
        return f"clone-{name.lower()}"


def _counting_clock() -> Callable[[], str]:
    """Return a clock yielding strictly increasing ISO timestamps."""

    ticks = itertools.count(1)
    return lambda: f"2026-01-01T00:00:00.{next(ticks):06d}+00:00"


@dataclass
class Workspace:
    """Filesystem-backed Pagevoice wiring with deterministic collaborators."""

    root: Path
    store: FilesystemArtifactStore
    books: BookRepository
    voices: VoiceRepository
    extractor: ReversedLatencyExtractor
    synthesizer: WavSynthesizer
    cloner: StaticCloner
    orchestrator: BookAssemblyOrchestrator
    library: BookLibrary
    voice_library: VoiceLibrary

    def add_voice(self, voice_id: str, *, owner: str = "reader-1", is_default: bool = False) -> Voice:
        """Persist a voice record directly."""

        voice = Voice(
            id=voice_id,
            owner=owner,
            display_name=voice_id.upper(),
            external_clone_ref=f"clone-{voice_id.lower()}",
            is_default=is_default,
            created_at="2025-12-31T00:00:00+00:00",
        )
        self.voices.create(voice)
        return voice

    def artifact_files(self) -> list[Path]:
        """Return every artifact file currently stored."""

        artifacts_root = self.root / "artifacts"
        if not artifacts_root.exists():
            return []
        return sorted(
            path
            for path in artifacts_root.rglob("*")
            if path.is_file() and not path.name.startswith(".")
        )

    def services(self) -> PagevoiceServices:
        """Return the operation facades as the CLI receives them."""

        return PagevoiceServices(
            orchestrator=self.orchestrator, books=self.library, voices=self.voice_library
        )


def page_images(*texts: str) -> list[PageImage]:
    """Build JPEG-named page images whose bytes are the page text."""

    return [
        PageImage(name=f"photo-{index}.jpg", data=text.encode("utf-8"))
        for index, text in enumerate(texts, start=1)
    ]


@pytest.fixture
def pages() -> Callable[..., list[PageImage]]:
    """Provide the page image builder."""

    return page_images


def build_workspace(
    root: Path,
    *,
    seconds_per_chunk: float = 10.0,
    fail_marker: str | None = None,
    max_workers: int = 4,
) -> Workspace:
    """Wire orchestrator and libraries over a temporary directory."""

    store = FilesystemArtifactStore(root / "artifacts")
    books = BookRepository(root / "books")
    voices = VoiceRepository(root / "voices")
    extractor = ReversedLatencyExtractor()
    synthesizer = WavSynthesizer(seconds_per_chunk, fail_marker)
    cloner = StaticCloner()
    clock = _counting_clock()
    book_ids = itertools.count(1)

    orchestrator = BookAssemblyOrchestrator(
        store=store,
        books=books,
        voices=voices,
        extraction=ExtractionStage(store, extractor, max_workers=max_workers),
        synthesis=SynthesisStage(store, synthesizer, bucket="book-audio", max_workers=max_workers),
        assembler=AudioAssembler(store, bucket="book-audio"),
        title_detector=FallbackTitleDetector(),
        upload_workers=max_workers,
        clock=clock,
        id_factory=lambda: f"book-{next(book_ids)}",
    )
    voice_ids = itertools.count(1)
    return Workspace(
        root=root,
        store=store,
        books=books,
        voices=voices,
        extractor=extractor,
        synthesizer=synthesizer,
        cloner=cloner,
        orchestrator=orchestrator,
        library=BookLibrary(books=books, store=store, clock=clock),
        voice_library=VoiceLibrary(
            voices=voices,
            cloner=cloner,
            clock=clock,
            id_factory=lambda: f"voice-{next(voice_ids)}",
        ),
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    """Provide a wired workspace whose synthesizer renders 10 seconds per page."""

    return build_workspace(tmp_path)


@pytest.fixture
def workspace_factory(tmp_path: Path) -> Callable[..., Workspace]:
    """Provide a builder for workspaces with custom synthesizer behavior."""

    def _build(**kwargs: object) -> Workspace:
        """Build a workspace under a fresh subdirectory."""

        root = tmp_path / f"ws-{len(list(tmp_path.iterdir()))}"
        return build_workspace(root, **kwargs)  # type: ignore[arg-type]

    return _build
