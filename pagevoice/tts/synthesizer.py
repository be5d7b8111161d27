"""Speech synthesis stage.

Responsibilities:
- Define the protocol for chunk-level speech synthesis with a cloned voice.
- Provide the ElevenLabs-backed implementation.
- Run one synthesis job per chunk as an indexed, fail-fast batch, upload each
  chunk's audio, and measure its duration from the returned audio.
"""

from __future__ import annotations

from typing import Callable, Protocol, Sequence

from ..audio.ffmpeg import AudioToolError
from ..audio.formats import AudioFormatError, detect_format, measure_duration
from ..errors import PagevoiceError, ProviderError, SynthesisError
from ..io.storage import ArtifactStore, unique_token
from ..models.datatypes import SynthesisChunk, SynthesizedChunk
from ..pipeline.batch import DEFAULT_BATCH_CONCURRENCY, BatchFailure, run_indexed
from ..pipeline.cleanup import delete_artifacts
from ..providers.elevenlabs_client import DEFAULT_VOICE_SETTINGS, ElevenLabsClient
from ..telemetry.logger import RunLogger


class SpeechSynthesizer(Protocol):
    """Protocol for TTS provider implementations."""

    def synthesize(self, text: str, voice_ref: str) -> bytes:
        """Return encoded audio for `text` spoken by the cloned voice `voice_ref`."""


class ElevenLabsSynthesizer:
    """ElevenLabs-backed synthesizer returning MP3 bytes."""

    def __init__(
        self,
        client: ElevenLabsClient,
        *,
        model_id: str = "eleven_multilingual_v2",
        output_format: str = "mp3_44100_128",
        voice_settings: dict[str, object] | None = None,
    ) -> None:
        self.client = client
        self.model_id = model_id
        self.output_format = output_format
        self.voice_settings = dict(voice_settings or DEFAULT_VOICE_SETTINGS)

    def synthesize(self, text: str, voice_ref: str) -> bytes:
        """Call text-to-speech for one chunk."""

        return self.client.text_to_speech(
            voice_id=voice_ref,
            text=text,
            model_id=self.model_id,
            output_format=self.output_format,
            voice_settings=self.voice_settings,
        )


class SynthesisStage:
    """Batch adapter that renders chunks and uploads their audio in chunk order."""

    def __init__(
        self,
        store: ArtifactStore,
        synthesizer: SpeechSynthesizer,
        *,
        bucket: str,
        run_logger: RunLogger | None = None,
        max_workers: int = DEFAULT_BATCH_CONCURRENCY,
        token_factory: Callable[[], str] = unique_token,
    ) -> None:
        self.store = store
        self.synthesizer = synthesizer
        self.bucket = bucket
        self.run_logger = run_logger
        self.max_workers = max_workers
        self.token_factory = token_factory

    def synthesize_batch(
        self, chunks: Sequence[SynthesisChunk], *, owner: str, book_id: str
    ) -> list[SynthesizedChunk]:
        """Render every chunk, failing the whole batch on the first chunk failure.

        Chunk audio uploaded by jobs that did succeed is deleted before the error
        is raised.

        Raises:
            SynthesisError: Naming the failing chunk.
        """

        def worker(_position: int, chunk: SynthesisChunk) -> SynthesizedChunk:
            return self._synthesize_one(chunk, owner=owner, book_id=book_id)

        try:
            results = run_indexed(chunks, worker, max_workers=self.max_workers)
        except BatchFailure as failure:
            delete_artifacts(
                self.store,
                [result.audio_ref for result in failure.completed.values()],
                run_logger=self.run_logger,
            )
            if isinstance(failure.error, SynthesisError):
                raise failure.error from None
            chunk_index = chunks[failure.index].chunk_index
            raise SynthesisError(
                f"Speech synthesis failed for chunk {chunk_index}: {failure.error}",
                item_index=chunk_index,
            ) from failure.error

        for chunk, result in zip(chunks, results):
            if result.chunk_index != chunk.chunk_index:
                delete_artifacts(
                    self.store, [item.audio_ref for item in results], run_logger=self.run_logger
                )
                raise SynthesisError(
                    f"Synthesis result for chunk {result.chunk_index} arrived in the slot of "
                    f"chunk {chunk.chunk_index}.",
                    item_index=chunk.chunk_index,
                )
        return results

    def _synthesize_one(
        self, chunk: SynthesisChunk, *, owner: str, book_id: str
    ) -> SynthesizedChunk:
        """Synthesize, measure, and upload one chunk."""

        label = f"chunk {chunk.chunk_index}"
        if not chunk.text.strip():
            raise SynthesisError(f"No text to synthesize for {label}.", item_index=chunk.chunk_index)
        if not chunk.voice_ref.strip():
            raise SynthesisError(f"No voice given for {label}.", item_index=chunk.chunk_index)

        try:
            audio = self.synthesizer.synthesize(chunk.text, chunk.voice_ref)
        except ProviderError as exc:
            raise SynthesisError(
                f"Speech synthesis failed for {label}: {exc}", item_index=chunk.chunk_index
            ) from exc
        if not audio:
            raise SynthesisError(f"Empty audio returned for {label}.", item_index=chunk.chunk_index)

        try:
            extension = detect_format(audio)
            duration = measure_duration(audio)
        except AudioFormatError as exc:
            raise SynthesisError(
                f"Unreadable audio returned for {label}: {exc}", item_index=chunk.chunk_index
            ) from exc
        except AudioToolError as exc:
            raise SynthesisError(
                f"Could not measure audio for {label}: {exc.detail}",
                item_index=chunk.chunk_index,
                hint=exc.hint,
            ) from exc

        name = f"chunk-{chunk.chunk_index:03d}-{self.token_factory()}.{extension}"
        try:
            ref = self.store.put(self.bucket, owner, book_id, name, audio)
        except PagevoiceError as exc:
            raise SynthesisError(
                f"Could not store audio for {label}: {exc.detail}", item_index=chunk.chunk_index
            ) from exc
        return SynthesizedChunk(
            chunk_index=chunk.chunk_index, audio_ref=ref, duration_seconds=duration
        )
