"""ffmpeg/ffprobe helpers for MPEG audio (MP3) artifacts.

Responsibilities:
- Measure MP3 playback duration with `ffprobe`.
- Join MP3 payloads in the given order with ffmpeg's concat demuxer and stream
  copy, so frames are neither re-encoded nor dropped.
- Map a missing tool or a non-zero exit to `AudioToolError`.
"""

from __future__ import annotations

import json
from pathlib import Path
import subprocess
import tempfile
from typing import Sequence

from ..parsing import normalize_optional_string

_MISSING_TOOL_HINT = (
    "Install ffmpeg (it ships `ffprobe`) and rerun, or configure a `wav_*` "
    "`tts_output_format`."
)


class AudioToolError(RuntimeError):
    """Raised when ffmpeg/ffprobe is unavailable or rejects an audio payload."""

    def __init__(self, detail: str, *, hint: str | None = None) -> None:
        """Initialize tool failure diagnostics."""

        super().__init__(detail)
        self.detail = detail
        self.hint = hint


def _run_tool(command: list[str]) -> subprocess.CompletedProcess[str]:
    """Run one ffmpeg-family command and return its completed process."""

    tool = command[0]
    try:
        return subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise AudioToolError(
            f"Audio tool `{tool}` is not available on PATH.", hint=_MISSING_TOOL_HINT
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = normalize_optional_string(exc.stderr) or "no stderr output"
        raise AudioToolError(f"`{tool}` rejected the MP3 audio: {stderr}") from exc


def _escape_concat_path(path: Path) -> str:
    """Escape one file path for the ffmpeg concat list format."""

    return str(path).replace("'", "'\\''")


def probe_duration(data: bytes) -> float:
    """Return the playback duration in seconds of an MP3 payload via `ffprobe`."""

    with tempfile.TemporaryDirectory(prefix="pagevoice-probe-") as workdir:
        audio_path = Path(workdir) / "audio.mp3"
        audio_path.write_bytes(data)
        completed = _run_tool(
            [
                "ffprobe",
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "json",
                str(audio_path),
            ]
        )

    try:
        payload = json.loads(completed.stdout or "{}")
        duration = float(payload["format"]["duration"])
    except (ValueError, KeyError, TypeError) as exc:
        raise AudioToolError("`ffprobe` reported no duration for the MP3 audio.") from exc
    if duration <= 0.0:
        raise AudioToolError(f"`ffprobe` reported a non-positive duration ({duration}).")
    return duration


def concat_copy(payloads: Sequence[bytes]) -> bytes:
    """Return one MP3 stream holding every payload in order, stream-copied.

    Tags of the inputs are dropped (`-map_metadata -1`); audio frames are copied
    as they are.
    """

    if not payloads:
        raise AudioToolError("No MP3 audio was supplied for concatenation.")

    with tempfile.TemporaryDirectory(prefix="pagevoice-concat-") as workdir:
        root = Path(workdir)
        lines: list[str] = []
        for position, data in enumerate(payloads):
            part_path = root / f"part-{position:04d}.mp3"
            part_path.write_bytes(data)
            lines.append(f"file '{_escape_concat_path(part_path)}'")
        concat_path = root / "parts.txt"
        concat_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        output_path = root / "combined.mp3"

        _run_tool(
            [
                "ffmpeg",
                "-y",
                "-hide_banner",
                "-loglevel",
                "error",
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                str(concat_path),
                "-map",
                "0:a",
                "-map_metadata",
                "-1",
                "-c",
                "copy",
                str(output_path),
            ]
        )
        try:
            combined = output_path.read_bytes()
        except OSError as exc:
            raise AudioToolError("`ffmpeg` finished without writing the combined MP3.") from exc

    if not combined:
        raise AudioToolError("`ffmpeg` wrote an empty combined MP3.")
    return combined
