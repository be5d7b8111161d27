"""Provider factory helpers for storage, extraction, synthesis, and cloning.

Responsibilities:
- Resolve configuration into concrete collaborator implementations.
- Wire the orchestrator and library facades from one config object.

Notes:
- Missing API keys do not fail wiring; the affected provider call fails with an
  `invalid_api_key` provider error when it is first used.
"""

from __future__ import annotations

from dataclasses import dataclass

from .audio.assembler import AudioAssembler
from .config import PagevoiceConfig, ProviderSecrets
from .errors import ValidationError
from .extraction.extractor import ExtractionStage, OpenAIPageExtractor, PageExtractor
from .extraction.title import FallbackTitleDetector, OpenAITitleDetector, TitleDetector
from .io.repository import BookRepository, VoiceRepository
from .io.storage import ArtifactStore, FilesystemArtifactStore
from .io.supabase_storage import SupabaseArtifactStore
from .library import BookLibrary, VoiceLibrary
from .pipeline.orchestrator import BookAssemblyOrchestrator
from .providers.elevenlabs_client import ElevenLabsClient
from .providers.openai_client import OpenAIChatClient
from .providers.rate_limiter import RateLimiter
from .telemetry.logger import RunLogger
from .tts.cloning import ElevenLabsVoiceCloner, VoiceCloner
from .tts.synthesizer import ElevenLabsSynthesizer, SpeechSynthesizer, SynthesisStage


@dataclass(frozen=True, slots=True)
class PagevoiceServices:
    """Operation facades wired for one config."""

    orchestrator: BookAssemblyOrchestrator
    books: BookLibrary
    voices: VoiceLibrary


class ProviderFactory:
    """Factory for provider-backed collaborators used by the pipeline."""

    @staticmethod
    def create_artifact_store(config: PagevoiceConfig, secrets: ProviderSecrets) -> ArtifactStore:
        """Create the artifact store for the configured backend."""

        if config.storage_backend == "filesystem":
            return FilesystemArtifactStore(config.data_dir / "artifacts")
        if config.storage_backend == "supabase":
            if not config.supabase_url:
                raise ValidationError(
                    "`supabase_url` is required for the `supabase` storage backend.",
                    stage="config",
                    hint="Set `supabase_url` in the config file or `SUPABASE_URL`.",
                )
            return SupabaseArtifactStore(
                project_url=config.supabase_url,
                service_key=secrets.supabase_key,
                timeout_seconds=config.request_timeout_seconds,
                max_retries=config.max_retries,
            )
        raise ValueError(f"Unsupported storage backend `{config.storage_backend}`.")

    @staticmethod
    def create_openai_client(config: PagevoiceConfig, secrets: ProviderSecrets) -> OpenAIChatClient:
        """Create the OpenAI client shared by OCR and title detection."""

        return OpenAIChatClient(
            api_key=secrets.openai_api_key,
            timeout_seconds=config.request_timeout_seconds,
            max_retries=config.max_retries,
            rate_limiter=RateLimiter(),
        )

    @staticmethod
    def create_page_extractor(config: PagevoiceConfig, client: OpenAIChatClient) -> PageExtractor:
        """Create the OCR collaborator."""

        return OpenAIPageExtractor(client, model=config.extraction_model)

    @staticmethod
    def create_title_detector(
        config: PagevoiceConfig, client: OpenAIChatClient | None
    ) -> TitleDetector:
        """Create a title detector, falling back to placeholders without a client."""

        if client is None or not client.api_key:
            return FallbackTitleDetector()
        return OpenAITitleDetector(client, model=config.title_model)

    @staticmethod
    def create_elevenlabs_client(
        config: PagevoiceConfig, secrets: ProviderSecrets
    ) -> ElevenLabsClient:
        """Create the ElevenLabs client shared by synthesis and cloning."""

        return ElevenLabsClient(
            api_key=secrets.elevenlabs_api_key,
            max_retries=config.max_retries,
            rate_limiter=RateLimiter(),
        )

    @staticmethod
    def create_synthesizer(config: PagevoiceConfig, client: ElevenLabsClient) -> SpeechSynthesizer:
        """Create the TTS collaborator."""

        return ElevenLabsSynthesizer(
            client, model_id=config.tts_model, output_format=config.tts_output_format
        )

    @staticmethod
    def create_voice_cloner(client: ElevenLabsClient) -> VoiceCloner:
        """Create the voice cloning collaborator."""

        return ElevenLabsVoiceCloner(client)


def build_services(
    config: PagevoiceConfig,
    *,
    secrets: ProviderSecrets | None = None,
    run_logger: RunLogger | None = None,
) -> PagevoiceServices:
    """Wire the orchestrator and libraries for a validated config."""

    config.validate()
    resolved_secrets = secrets if secrets is not None else config.resolved_secrets()
    store = ProviderFactory.create_artifact_store(config, resolved_secrets)
    books = BookRepository(config.data_dir / "books")
    voices = VoiceRepository(config.data_dir / "voices")
    openai_client = ProviderFactory.create_openai_client(config, resolved_secrets)
    elevenlabs_client = ProviderFactory.create_elevenlabs_client(config, resolved_secrets)

    orchestrator = BookAssemblyOrchestrator(
        store=store,
        books=books,
        voices=voices,
        extraction=ExtractionStage(
            store,
            ProviderFactory.create_page_extractor(config, openai_client),
            run_logger=run_logger,
            max_workers=config.batch_concurrency,
        ),
        synthesis=SynthesisStage(
            store,
            ProviderFactory.create_synthesizer(config, elevenlabs_client),
            bucket=config.audio_bucket,
            run_logger=run_logger,
            max_workers=config.batch_concurrency,
        ),
        assembler=AudioAssembler(store, bucket=config.audio_bucket, run_logger=run_logger),
        title_detector=ProviderFactory.create_title_detector(config, openai_client),
        image_bucket=config.image_bucket,
        max_pages_per_request=config.max_pages_per_request,
        upload_workers=config.batch_concurrency,
        tolerance_seconds=config.progress_tolerance_seconds,
        run_logger=run_logger,
    )
    return PagevoiceServices(
        orchestrator=orchestrator,
        books=BookLibrary(
            books=books,
            store=store,
            tolerance_seconds=config.progress_tolerance_seconds,
            run_logger=run_logger,
        ),
        voices=VoiceLibrary(
            voices=voices, cloner=ProviderFactory.create_voice_cloner(elevenlabs_client)
        ),
    )
