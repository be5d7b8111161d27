"""Audio assembly stage.

Responsibilities:
- Concatenate ordered audio segments, optionally after a base rendering, into one
  new artifact without re-encoding.
- Report the combined duration as the sum of the segments' reported durations.
- Release superseded inputs only after the caller has committed the result.
"""

from __future__ import annotations

import io
from typing import Callable, Sequence
import wave

from loguru import logger

from ..errors import AssemblyError, StorageError
from ..io.storage import ArtifactStore, unique_token
from ..models.datatypes import AssembledAudio, AudioSegment
from ..pipeline.cleanup import CleanupReport, delete_artifacts
from ..telemetry.logger import RunLogger
from .ffmpeg import AudioToolError, concat_copy
from .formats import AudioFormatError, WavParams, detect_format, wav_payload


def _safe_name_token(value: str) -> str:
    """Reduce an identifier to characters that are safe inside an artifact name."""

    token = "".join(ch if ch.isalnum() or ch in {"-", "_"} else "_" for ch in value)
    return token or "voice"


def _describe(position: int, has_base: bool) -> tuple[str, int | None]:
    """Return a human label and the segment index for a combined-order position."""

    if has_base and position == 0:
        return "base rendering", None
    index = position - 1 if has_base else position
    return f"segment {index}", index


class AudioAssembler:
    """Join WAV or MPEG audio segments into one artifact in the given order."""

    def __init__(
        self,
        store: ArtifactStore,
        *,
        bucket: str,
        run_logger: RunLogger | None = None,
        token_factory: Callable[[], str] = unique_token,
    ) -> None:
        self.store = store
        self.bucket = bucket
        self.run_logger = run_logger
        self.token_factory = token_factory

    def assemble(
        self,
        segments: Sequence[AudioSegment],
        base: AudioSegment | None = None,
        *,
        owner: str,
        book_id: str,
        voice_id: str,
        release_inputs: bool = True,
    ) -> AssembledAudio:
        """Upload `base` followed by `segments` as one combined artifact.

        With `release_inputs=False` the inputs stay in storage until
        `release_inputs(result)` is called, so a caller can commit first.

        Raises:
            AssemblyError: When an input cannot be read, the inputs do not share one
                format, or the combined artifact cannot be uploaded. Inputs are left
                untouched and no output artifact remains.
        """

        ordered = ([base] if base is not None else []) + list(segments)
        if not ordered:
            raise AssemblyError("No audio segments were supplied for assembly.")

        payloads = [self._download(segment, position, base is not None) for position, segment in enumerate(ordered)]
        audio_format, combined = self._concatenate(payloads, base is not None)

        name = f"complete-{_safe_name_token(voice_id)}-{self.token_factory()}.{audio_format}"
        try:
            ref = self.store.put(self.bucket, owner, book_id, name, combined)
        except StorageError as exc:
            raise AssemblyError(f"Failed to upload combined audio `{name}`: {exc.detail}") from exc

        total_duration = sum(segment.duration_seconds for segment in ordered)
        logger.debug(
            "Assembled {} segment(s) into {} ({:.2f}s).", len(ordered), ref.as_string(), total_duration
        )
        assembled = AssembledAudio(
            ref=ref,
            total_duration=total_duration,
            consumed_refs=tuple(segment.ref for segment in ordered),
        )
        if release_inputs:
            self.release_inputs(assembled)
        return assembled

    def release_inputs(self, assembled: AssembledAudio) -> CleanupReport:
        """Delete every input that the combined artifact supersedes (best-effort)."""

        return delete_artifacts(
            self.store,
            (ref for ref in assembled.consumed_refs if ref != assembled.ref),
            run_logger=self.run_logger,
        )

    def _download(self, segment: AudioSegment, position: int, has_base: bool) -> bytes:
        label, index = _describe(position, has_base)
        try:
            data = self.store.get(segment.ref)
        except StorageError as exc:
            raise AssemblyError(
                f"Failed to download {label} `{segment.ref.as_string()}`: {exc.detail}",
                item_index=index,
            ) from exc
        if not data:
            raise AssemblyError(
                f"Audio for {label} `{segment.ref.as_string()}` is empty.", item_index=index
            )
        return data

    def _concatenate(self, payloads: list[bytes], has_base: bool) -> tuple[str, bytes]:
        """Return the shared format and the combined artifact bytes."""

        formats: list[str] = []
        for position, data in enumerate(payloads):
            label, index = _describe(position, has_base)
            try:
                formats.append(detect_format(data))
            except AudioFormatError as exc:
                raise AssemblyError(f"Unreadable audio in {label}: {exc}", item_index=index) from exc
            if formats[-1] != formats[0]:
                raise AssemblyError(
                    f"Cannot join {formats[-1]} audio in {label} after {formats[0]} audio.",
                    item_index=index,
                )

        if formats[0] == "wav":
            return "wav", self._concatenate_wav(payloads, has_base)
        return "mp3", self._concatenate_mpeg(payloads)

    @staticmethod
    def _concatenate_wav(payloads: list[bytes], has_base: bool) -> bytes:
        expected: WavParams | None = None
        frames: list[bytes] = []
        for position, data in enumerate(payloads):
            label, index = _describe(position, has_base)
            try:
                pcm, params, _ = wav_payload(data)
            except AudioFormatError as exc:
                raise AssemblyError(f"Unreadable audio in {label}: {exc}", item_index=index) from exc
            if expected is None:
                expected = params
            elif params != expected:
                raise AssemblyError(f"Incompatible WAV parameters in {label}.", item_index=index)
            frames.append(pcm)

        if expected is None:
            raise AssemblyError("No WAV audio was supplied for assembly.")
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as merged:
            merged.setnchannels(expected.channels)
            merged.setsampwidth(expected.sample_width)
            merged.setframerate(expected.frame_rate)
            for pcm in frames:
                merged.writeframes(pcm)
        return buffer.getvalue()

    @staticmethod
    def _concatenate_mpeg(payloads: list[bytes]) -> bytes:
        try:
            return concat_copy(payloads)
        except AudioToolError as exc:
            raise AssemblyError(f"Failed to join MP3 audio: {exc.detail}", hint=exc.hint) from exc
