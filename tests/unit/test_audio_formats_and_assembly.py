"""Unit tests for audio container inspection and lossless segment assembly."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import subprocess
from typing import TYPE_CHECKING

import pytest

from pagevoice.audio.assembler import AudioAssembler
from pagevoice.audio.ffmpeg import AudioToolError, concat_copy, probe_duration
from pagevoice.audio.formats import AudioFormatError, detect_format, measure_duration, wav_payload
from pagevoice.errors import AssemblyError
from pagevoice.io.storage import FilesystemArtifactStore
from pagevoice.models.datatypes import AudioSegment

if TYPE_CHECKING:
    from tests.conftest import FakeMediaTools

MPEG_FRAME_SECONDS = 1152 / 44100


def _assembler(tmp_path: Path) -> tuple[AudioAssembler, FilesystemArtifactStore]:
    """Build an assembler over a filesystem store with a fixed name token."""

    store = FilesystemArtifactStore(tmp_path / "artifacts")
    return AudioAssembler(store, bucket="book-audio", token_factory=lambda: "tok"), store


def _segment(store: FilesystemArtifactStore, name: str, data: bytes, duration: float) -> AudioSegment:
    """Upload one chunk artifact and describe it as a segment."""

    ref = store.put("book-audio", "reader-1", "book-1", name, data)
    return AudioSegment(ref=ref, duration_seconds=duration)


def test_detect_format_and_measure_wav(wav_bytes: Callable[..., bytes]) -> None:
    """WAV payloads should be detected and measured from their frame count."""

    data = wav_bytes(2.5)

    assert detect_format(data) == "wav"
    assert measure_duration(data) == pytest.approx(2.5)
    pcm, params, duration = wav_payload(data)
    assert len(pcm) == 2.5 * 8000 * 2
    assert (params.channels, params.sample_width, params.frame_rate) == (1, 2, 8000)
    assert duration == pytest.approx(2.5)


def test_measure_mp3_duration_uses_ffprobe(
    mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """Tagged MP3 payloads are detected by header and measured by `ffprobe`."""

    data = mp3_bytes(20, id3v2=True, id3v1=True)

    assert detect_format(data) == "mp3"
    assert measure_duration(data) == pytest.approx(20 * MPEG_FRAME_SECONDS)
    command = media_tools.commands[0]
    assert command[:7] == ["ffprobe", "-v", "error", "-show_entries", "format=duration", "-of", "json"]


def test_probe_duration_reports_missing_ffprobe(
    mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """A missing `ffprobe` binary raises a tool error with an install hint."""

    media_tools.missing.add("ffprobe")

    with pytest.raises(AudioToolError, match="`ffprobe` is not available on PATH") as exc_info:
        probe_duration(mp3_bytes(3))

    assert exc_info.value.hint is not None
    assert "Install ffmpeg" in exc_info.value.hint


def test_probe_duration_rejects_output_without_duration(
    monkeypatch: pytest.MonkeyPatch, mp3_bytes: Callable[..., bytes]
) -> None:
    """`ffprobe` JSON lacking a duration is reported, not treated as zero."""

    def _fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        """Answer every command with duration-free JSON."""

        _ = kwargs
        return subprocess.CompletedProcess(command, 0, stdout='{"format": {}}', stderr="")

    monkeypatch.setattr("pagevoice.audio.ffmpeg.subprocess.run", _fake_run)

    with pytest.raises(AudioToolError, match="reported no duration"):
        probe_duration(mp3_bytes(3))


def test_concat_copy_keeps_every_frame_in_order(
    mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """Stream copy keeps all frames of every input, even after stray bytes."""

    first = mp3_bytes(40, fill=1) + b"\x00"
    second = mp3_bytes(40, fill=2)

    combined = concat_copy([first, second])

    assert combined == mp3_bytes(40, fill=1) + b"\x00" + mp3_bytes(40, fill=2)
    assert combined.count(b"\xff\xfb\x90\x00") == 80
    command = media_tools.commands[0]
    assert command[0] == "ffmpeg"
    assert command[command.index("-f") + 1] == "concat"
    assert command[command.index("-c") + 1] == "copy"
    assert command[command.index("-map_metadata") + 1] == "-1"


def test_concat_copy_surfaces_ffmpeg_stderr(
    mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """A non-zero ffmpeg exit carries its stderr into the tool error."""

    media_tools.failures["ffmpeg"] = "parts.txt: Invalid data found when processing input\n"

    with pytest.raises(AudioToolError, match="Invalid data found when processing input"):
        concat_copy([mp3_bytes(2), mp3_bytes(2)])


@pytest.mark.parametrize("payload", [b"", b"not audio at all", b"RIFF\x00\x00\x00\x00WAVEjunk"])
def test_unreadable_payloads_raise_format_errors(payload: bytes) -> None:
    """Payloads that are neither WAV nor MPEG audio should be rejected."""

    with pytest.raises(AudioFormatError):
        measure_duration(payload)


def test_assemble_wav_segments_in_order_and_sums_durations(
    tmp_path: Path, wav_bytes: Callable[..., bytes]
) -> None:
    """WAV segments should be joined frame-by-frame into one new artifact."""

    assembler, store = _assembler(tmp_path)
    segments = [
        _segment(store, f"chunk-{index:03d}.wav", wav_bytes(seconds), seconds)
        for index, seconds in enumerate((1.0, 2.0, 0.5))
    ]

    assembled = assembler.assemble(segments, owner="reader-1", book_id="book-1", voice_id="V1")

    assert assembled.ref.path == "reader-1/book-1/complete-V1-tok.wav"
    assert assembled.total_duration == pytest.approx(3.5)
    assert measure_duration(store.get(assembled.ref)) == pytest.approx(3.5)
    assert all(not store.exists(segment.ref) for segment in segments)


def test_assemble_mpeg_after_base_rendering(
    tmp_path: Path, mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """Appending to a base rendering stream-copies base frames first, then the chunk."""

    assembler, store = _assembler(tmp_path)
    base = _segment(store, "complete-V1-old.mp3", mp3_bytes(10, fill=1, id3v2=True), 10 * MPEG_FRAME_SECONDS)
    new = _segment(store, "chunk-003.mp3", mp3_bytes(4, fill=2, id3v1=True), 4 * MPEG_FRAME_SECONDS)

    assembled = assembler.assemble(
        [new], base, owner="reader-1", book_id="book-1", voice_id="V1", release_inputs=False
    )

    combined = store.get(assembled.ref)
    assert combined == mp3_bytes(10, fill=1) + mp3_bytes(4, fill=2)
    assert [command[0] for command in media_tools.commands] == ["ffmpeg"]
    assert assembled.total_duration == pytest.approx(14 * MPEG_FRAME_SECONDS)
    assert assembled.consumed_refs == (base.ref, new.ref)
    assert store.exists(base.ref) and store.exists(new.ref)

    report = assembler.release_inputs(assembled)

    assert report.deleted == [base.ref, new.ref]
    assert store.exists(assembled.ref)


def test_assemble_mpeg_reports_missing_ffmpeg_and_leaves_inputs(
    tmp_path: Path, mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """Without ffmpeg on PATH, MP3 assembly fails with a hint and writes nothing."""

    assembler, store = _assembler(tmp_path)
    first = _segment(store, "chunk-000.mp3", mp3_bytes(3), 3 * MPEG_FRAME_SECONDS)
    second = _segment(store, "chunk-001.mp3", mp3_bytes(3), 3 * MPEG_FRAME_SECONDS)
    media_tools.missing.add("ffmpeg")

    with pytest.raises(AssemblyError, match="`ffmpeg` is not available on PATH") as exc_info:
        assembler.assemble([first, second], owner="reader-1", book_id="book-1", voice_id="V1")

    assert exc_info.value.stage == "assemble"
    assert exc_info.value.hint is not None
    assert "Install ffmpeg" in exc_info.value.hint
    assert store.exists(first.ref) and store.exists(second.ref)
    assert sorted(path.name for path in (tmp_path / "artifacts").rglob("complete-*")) == []


def test_assemble_mpeg_reports_ffmpeg_failure(
    tmp_path: Path, mp3_bytes: Callable[..., bytes], media_tools: FakeMediaTools
) -> None:
    """An ffmpeg error exit becomes an assembly error carrying its stderr."""

    assembler, store = _assembler(tmp_path)
    segment = _segment(store, "chunk-000.mp3", mp3_bytes(3), 3 * MPEG_FRAME_SECONDS)
    media_tools.failures["ffmpeg"] = "Header missing"

    with pytest.raises(AssemblyError, match="Failed to join MP3 audio: `ffmpeg` rejected the MP3 audio: Header missing"):
        assembler.assemble([segment], owner="reader-1", book_id="book-1", voice_id="V1")

    assert store.exists(segment.ref)


def test_assemble_rejects_mixed_formats_and_leaves_inputs(
    tmp_path: Path, wav_bytes: Callable[..., bytes], mp3_bytes: Callable[..., bytes]
) -> None:
    """Mixing WAV and MPEG segments should fail naming the offending segment."""

    assembler, store = _assembler(tmp_path)
    first = _segment(store, "chunk-000.wav", wav_bytes(1.0), 1.0)
    second = _segment(store, "chunk-001.mp3", mp3_bytes(3), 3 * MPEG_FRAME_SECONDS)

    with pytest.raises(AssemblyError, match="segment 1") as exc_info:
        assembler.assemble([first, second], owner="reader-1", book_id="book-1", voice_id="V1")

    assert exc_info.value.item_index == 1
    assert store.exists(first.ref) and store.exists(second.ref)
    assert sorted(path.name for path in (tmp_path / "artifacts").rglob("complete-*")) == []


def test_assemble_rejects_incompatible_wav_parameters(
    tmp_path: Path, wav_bytes: Callable[..., bytes]
) -> None:
    """WAV segments with different sample rates cannot be joined losslessly."""

    assembler, store = _assembler(tmp_path)
    first = _segment(store, "chunk-000.wav", wav_bytes(1.0), 1.0)
    second = _segment(store, "chunk-001.wav", wav_bytes(1.0, frame_rate=16000), 1.0)

    with pytest.raises(AssemblyError, match="Incompatible WAV parameters"):
        assembler.assemble([first, second], owner="reader-1", book_id="book-1", voice_id="V1")


def test_assemble_reports_missing_base_rendering(
    tmp_path: Path, wav_bytes: Callable[..., bytes]
) -> None:
    """An unreadable base rendering should fail without an item index."""

    assembler, store = _assembler(tmp_path)
    base = _segment(store, "complete-V1-old.wav", wav_bytes(1.0), 1.0)
    store.delete(base.ref)
    new = _segment(store, "chunk-001.wav", wav_bytes(1.0), 1.0)

    with pytest.raises(AssemblyError, match="base rendering") as exc_info:
        assembler.assemble([new], base, owner="reader-1", book_id="book-1", voice_id="V1")

    assert exc_info.value.item_index is None


def test_assemble_requires_segments(tmp_path: Path) -> None:
    """Assembling nothing is an error."""

    assembler, _ = _assembler(tmp_path)

    with pytest.raises(AssemblyError, match="No audio segments"):
        assembler.assemble([], owner="reader-1", book_id="book-1", voice_id="V1")


def test_assemble_sanitizes_voice_id_in_artifact_name(
    tmp_path: Path, wav_bytes: Callable[..., bytes]
) -> None:
    """Voice ids with path characters should not leak into artifact names."""

    assembler, store = _assembler(tmp_path)
    segment = _segment(store, "chunk-000.wav", wav_bytes(1.0), 1.0)

    assembled = assembler.assemble([segment], owner="reader-1", book_id="book-1", voice_id="a/b c")

    assert assembled.ref.name == "complete-a_b_c-tok.wav"
