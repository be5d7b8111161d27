"""Audio container inspection for WAV and MPEG audio (MP3) artifacts.

Responsibilities:
- Detect the container of a synthesized artifact from its leading bytes.
- Measure playback duration: WAV from its frame count, MP3 via `ffprobe`.
- Expose the PCM frames of a WAV payload for lossless concatenation.
"""

from __future__ import annotations

from dataclasses import dataclass
import io
import wave

from .ffmpeg import probe_duration


class AudioFormatError(ValueError):
    """Raised when audio bytes are not a readable WAV or MPEG audio stream."""


@dataclass(frozen=True, slots=True)
class WavParams:
    """PCM parameters that must match for WAV concatenation."""

    channels: int
    sample_width: int
    frame_rate: int


def detect_format(data: bytes) -> str:
    """Return `wav` or `mp3` for a synthesized artifact payload."""

    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    body = data[_id3v2_length(data):]
    if len(body) >= 2 and body[0] == 0xFF and (body[1] & 0xE0) == 0xE0:
        return "mp3"
    raise AudioFormatError("Audio payload is neither WAV nor MPEG audio.")


def _id3v2_length(data: bytes) -> int:
    """Return the byte length of a leading ID3v2 tag, `0` when absent."""

    if len(data) < 10 or data[:3] != b"ID3":
        return 0
    size = 0
    for byte in data[6:10]:
        size = (size << 7) | (byte & 0x7F)
    footer = 10 if data[5] & 0x10 else 0
    return 10 + size + footer


def wav_payload(data: bytes) -> tuple[bytes, WavParams, float]:
    """Return `(PCM frames, parameters, duration seconds)` for a WAV payload."""

    try:
        with wave.open(io.BytesIO(data), "rb") as wav_file:
            params = WavParams(
                channels=wav_file.getnchannels(),
                sample_width=wav_file.getsampwidth(),
                frame_rate=wav_file.getframerate(),
            )
            frame_count = wav_file.getnframes()
            frames = wav_file.readframes(frame_count)
    except (wave.Error, EOFError) as exc:
        raise AudioFormatError(f"WAV payload is not readable: {exc}") from exc
    if params.frame_rate <= 0:
        raise AudioFormatError("WAV payload has an invalid sample rate.")
    return frames, params, frame_count / float(params.frame_rate)


def measure_duration(data: bytes) -> float:
    """Return playback duration in seconds for a WAV or MPEG audio payload.

    Raises:
        AudioFormatError: When the payload is neither WAV nor MPEG audio.
        AudioToolError: When `ffprobe` is missing or cannot read an MP3 payload.
    """

    if detect_format(data) == "wav":
        return wav_payload(data)[2]
    return probe_duration(data)
