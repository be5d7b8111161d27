"""Configuration model and loaders for Pagevoice.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Provide deterministic precedence resolution for provider secrets.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `PagevoiceConfig`: normalized runtime settings.
- `ProviderSecrets`: resolved API keys for one process.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `PagevoiceConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .ledger import PROGRESS_TOLERANCE_SECONDS
from .parsing import normalize_optional_string, parse_positive_number

_DEFAULT_DATA_DIR = Path(".pagevoice")
_DEFAULT_EXTRACTION_MODEL = "gpt-4o"
_DEFAULT_TITLE_MODEL = "gpt-4o-mini"
_DEFAULT_TTS_MODEL = "eleven_multilingual_v2"
_DEFAULT_TTS_OUTPUT_FORMAT = "mp3_44100_128"
_SUPPORTED_STORAGE_BACKENDS = frozenset({"filesystem", "supabase"})
_SUPPORTED_OUTPUT_FORMAT_PREFIXES = ("mp3_", "wav_")
MAX_PAGES_PER_REQUEST_LIMIT = 10

_SECRET_ENV_KEYS = {
    "openai_api_key": "OPENAI_API_KEY",
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
    "supabase_key": "SUPABASE_SERVICE_KEY",
}


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic secret precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderSecrets:
    """Resolved API keys; never written to records or logs."""

    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None
    supabase_key: str | None = None


@dataclass(slots=True)
class PagevoiceConfig:
    """Runtime configuration for the book assembly service.

    Attributes:
        data_dir: Root directory for book/voice records and local artifacts.
        storage_backend: `filesystem` or `supabase`.
        supabase_url: Supabase project URL, required for the `supabase` backend.
        supabase_key: Supabase service key.
        image_bucket: Bucket holding uploaded page images.
        audio_bucket: Bucket holding chunk audio and renderings.
        openai_api_key: API key for OCR and title detection.
        elevenlabs_api_key: API key for synthesis and voice cloning.
        extraction_model: Vision model used for page OCR.
        title_model: Chat model used for title detection.
        tts_model: ElevenLabs model identifier.
        tts_output_format: ElevenLabs output format (`mp3_*` or `wav_*`).
        max_pages_per_request: Largest accepted page image batch.
        batch_concurrency: Worker limit of the batch executor.
        progress_tolerance_seconds: Allowed progress overshoot past a rendering's end.
        request_timeout_seconds: HTTP timeout for provider calls.
        max_retries: Retries for transient provider failures.
        runtime_sources: Secret sources injected by the CLI.
        extra: Additional metadata for future extensions.
    """

    data_dir: Path = _DEFAULT_DATA_DIR
    storage_backend: str = "filesystem"
    supabase_url: str | None = None
    supabase_key: str | None = None
    image_bucket: str = "book-images"
    audio_bucket: str = "book-audio"
    openai_api_key: str | None = None
    elevenlabs_api_key: str | None = None
    extraction_model: str = _DEFAULT_EXTRACTION_MODEL
    title_model: str = _DEFAULT_TITLE_MODEL
    tts_model: str = _DEFAULT_TTS_MODEL
    tts_output_format: str = _DEFAULT_TTS_OUTPUT_FORMAT
    max_pages_per_request: int = MAX_PAGES_PER_REQUEST_LIMIT
    batch_concurrency: int = 10
    progress_tolerance_seconds: float = PROGRESS_TOLERANCE_SECONDS
    request_timeout_seconds: float = 60.0
    max_retries: int = 2
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)
    extra: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate configuration values before wiring providers."""

        if self.storage_backend not in _SUPPORTED_STORAGE_BACKENDS:
            supported = ", ".join(sorted(_SUPPORTED_STORAGE_BACKENDS))
            raise ValueError(
                f"Unsupported `storage_backend` value `{self.storage_backend}`; "
                f"supported: {supported}."
            )
        for field_name in (
            "image_bucket",
            "audio_bucket",
            "extraction_model",
            "title_model",
            "tts_model",
            "tts_output_format",
        ):
            self._require_non_empty(getattr(self, field_name), field_name)
        if "/" in self.image_bucket or "/" in self.audio_bucket:
            raise ValueError("Bucket names must not contain `/`.")
        if not self.tts_output_format.startswith(_SUPPORTED_OUTPUT_FORMAT_PREFIXES):
            raise ValueError(
                f"`tts_output_format` must be an MP3 or WAV format, got `{self.tts_output_format}`."
            )
        if not 1 <= self.max_pages_per_request <= MAX_PAGES_PER_REQUEST_LIMIT:
            raise ValueError(
                f"`max_pages_per_request` must be between 1 and {MAX_PAGES_PER_REQUEST_LIMIT}."
            )
        if self.batch_concurrency <= 0:
            raise ValueError("`batch_concurrency` must be a positive integer.")
        if not math.isfinite(self.progress_tolerance_seconds) or self.progress_tolerance_seconds < 0:
            raise ValueError("`progress_tolerance_seconds` must be a non-negative number.")
        if self.request_timeout_seconds <= 0:
            raise ValueError("`request_timeout_seconds` must be a positive number.")
        if self.max_retries < 0:
            raise ValueError("`max_retries` must be zero or a positive integer.")

    def resolved_secrets(self, sources: RuntimeConfigSources | None = None) -> ProviderSecrets:
        """Resolve API keys with deterministic source precedence.

        Precedence for each key is: `cli` > config field > `secure` > `env`.
        """

        resolved_sources = sources if sources is not None else self.runtime_sources
        values = {
            key: self._resolve_secret(key, env_key, resolved_sources)
            for key, env_key in _SECRET_ENV_KEYS.items()
        }
        return ProviderSecrets(**values)

    def _resolve_secret(self, key: str, env_key: str, sources: RuntimeConfigSources) -> str | None:
        """Resolve one secret value from the ordered sources."""

        for candidate in (
            self._normalized_lookup(sources.cli, key),
            normalize_optional_string(getattr(self, key)),
            self._normalized_lookup(sources.secure, key),
            self._normalized_lookup(sources.env, env_key),
        ):
            if candidate is not None:
                return candidate
        return None

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigLoader:
    """Factory methods for creating `PagevoiceConfig` from external sources."""

    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "data_dir",
            "storage_backend",
            "supabase_url",
            "supabase_key",
            "image_bucket",
            "audio_bucket",
            "openai_api_key",
            "elevenlabs_api_key",
            "extraction_model",
            "title_model",
            "tts_model",
            "tts_output_format",
            "max_pages_per_request",
            "batch_concurrency",
            "progress_tolerance_seconds",
            "request_timeout_seconds",
            "max_retries",
            "extra",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> PagevoiceConfig:
        """Create a validated config from a YAML file."""

        path_text = path.read_text(encoding="utf-8")
        payload = ConfigLoader._parse_yaml_payload(path_text, path)
        return ConfigLoader._build_config_from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> PagevoiceConfig:
        """Create a validated config from environment variables.

        API keys found in the environment are kept as the lowest-precedence secret
        source instead of config fields, so stored credentials win over them.
        """

        env_map: Mapping[str, str] = os.environ if env is None else env
        label = "Environment"
        optional = ConfigLoader._optional_env_string

        config = PagevoiceConfig(
            data_dir=Path(optional(env_map, "PAGEVOICE_DATA_DIR") or _DEFAULT_DATA_DIR),
            storage_backend=optional(env_map, "PAGEVOICE_STORAGE_BACKEND") or "filesystem",
            supabase_url=optional(env_map, "SUPABASE_URL"),
            image_bucket=optional(env_map, "PAGEVOICE_IMAGE_BUCKET") or "book-images",
            audio_bucket=optional(env_map, "PAGEVOICE_AUDIO_BUCKET") or "book-audio",
            extraction_model=optional(env_map, "PAGEVOICE_EXTRACTION_MODEL")
            or _DEFAULT_EXTRACTION_MODEL,
            title_model=optional(env_map, "PAGEVOICE_TITLE_MODEL") or _DEFAULT_TITLE_MODEL,
            tts_model=optional(env_map, "PAGEVOICE_TTS_MODEL") or _DEFAULT_TTS_MODEL,
            tts_output_format=optional(env_map, "PAGEVOICE_TTS_OUTPUT_FORMAT")
            or _DEFAULT_TTS_OUTPUT_FORMAT,
            max_pages_per_request=ConfigLoader._int_value(
                optional(env_map, "PAGEVOICE_MAX_PAGES_PER_REQUEST"),
                "PAGEVOICE_MAX_PAGES_PER_REQUEST",
                label,
                default=MAX_PAGES_PER_REQUEST_LIMIT,
            ),
            batch_concurrency=ConfigLoader._int_value(
                optional(env_map, "PAGEVOICE_BATCH_CONCURRENCY"),
                "PAGEVOICE_BATCH_CONCURRENCY",
                label,
                default=10,
            ),
            progress_tolerance_seconds=ConfigLoader._float_value(
                optional(env_map, "PAGEVOICE_PROGRESS_TOLERANCE_SECONDS"),
                "PAGEVOICE_PROGRESS_TOLERANCE_SECONDS",
                label,
                default=PROGRESS_TOLERANCE_SECONDS,
                allow_zero=True,
            ),
            request_timeout_seconds=ConfigLoader._float_value(
                optional(env_map, "PAGEVOICE_REQUEST_TIMEOUT_SECONDS"),
                "PAGEVOICE_REQUEST_TIMEOUT_SECONDS",
                label,
                default=60.0,
            ),
            max_retries=ConfigLoader._int_value(
                optional(env_map, "PAGEVOICE_MAX_RETRIES"),
                "PAGEVOICE_MAX_RETRIES",
                label,
                default=2,
                allow_zero=True,
            ),
            runtime_sources=RuntimeConfigSources(env=ConfigLoader.secret_env(env_map)),
        )
        config.validate()
        return config

    @staticmethod
    def secret_env(env: Mapping[str, str] | None = None) -> dict[str, str]:
        """Return the non-blank provider secret variables from an environment mapping."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        return {
            env_key: env_map[env_key]
            for env_key in _SECRET_ENV_KEYS.values()
            if env_key in env_map and normalize_optional_string(env_map[env_key]) is not None
        }

    @staticmethod
    def _parse_yaml_payload(raw_text: str, path: Path) -> Mapping[str, Any]:
        """Parse YAML text and enforce a mapping root payload."""

        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` could not be parsed: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return payload

    @staticmethod
    def _build_config_from_mapping(
        payload: Mapping[str, Any], source_label: str
    ) -> PagevoiceConfig:
        """Build a validated config from a normalized mapping payload."""

        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

        def text(key: str) -> str | None:
            return normalize_optional_string(payload.get(key))

        config = PagevoiceConfig(
            data_dir=Path(text("data_dir") or _DEFAULT_DATA_DIR),
            storage_backend=text("storage_backend") or "filesystem",
            supabase_url=text("supabase_url"),
            supabase_key=text("supabase_key"),
            image_bucket=text("image_bucket") or "book-images",
            audio_bucket=text("audio_bucket") or "book-audio",
            openai_api_key=text("openai_api_key"),
            elevenlabs_api_key=text("elevenlabs_api_key"),
            extraction_model=text("extraction_model") or _DEFAULT_EXTRACTION_MODEL,
            title_model=text("title_model") or _DEFAULT_TITLE_MODEL,
            tts_model=text("tts_model") or _DEFAULT_TTS_MODEL,
            tts_output_format=text("tts_output_format") or _DEFAULT_TTS_OUTPUT_FORMAT,
            max_pages_per_request=ConfigLoader._int_value(
                payload.get("max_pages_per_request"),
                "max_pages_per_request",
                source_label,
                default=MAX_PAGES_PER_REQUEST_LIMIT,
            ),
            batch_concurrency=ConfigLoader._int_value(
                payload.get("batch_concurrency"), "batch_concurrency", source_label, default=10
            ),
            progress_tolerance_seconds=ConfigLoader._float_value(
                payload.get("progress_tolerance_seconds"),
                "progress_tolerance_seconds",
                source_label,
                default=PROGRESS_TOLERANCE_SECONDS,
                allow_zero=True,
            ),
            request_timeout_seconds=ConfigLoader._float_value(
                payload.get("request_timeout_seconds"),
                "request_timeout_seconds",
                source_label,
                default=60.0,
            ),
            max_retries=ConfigLoader._int_value(
                payload.get("max_retries"), "max_retries", source_label, default=2, allow_zero=True
            ),
            extra=ConfigLoader._optional_string_map(payload, "extra", source_label),
        )
        config.validate()
        return config

    @staticmethod
    def _int_value(
        raw_value: object,
        key: str,
        source_label: str,
        *,
        default: int,
        allow_zero: bool = False,
    ) -> int:
        """Read a positive (or non-negative) integer, using `default` when blank."""

        expectation = "a non-negative integer" if allow_zero else "a positive integer"
        if raw_value is None:
            return default
        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be {expectation}.")
        if isinstance(raw_value, int):
            parsed = raw_value
        else:
            normalized = normalize_optional_string(raw_value)
            if normalized is None:
                return default
            try:
                parsed = int(normalized)
            except ValueError as exc:
                raise ValueError(f"{source_label} field `{key}` must be {expectation}.") from exc

        if parsed < 0 or (parsed == 0 and not allow_zero):
            raise ValueError(f"{source_label} field `{key}` must be {expectation}.")
        return parsed

    @staticmethod
    def _float_value(
        raw_value: object,
        key: str,
        source_label: str,
        *,
        default: float,
        allow_zero: bool = False,
    ) -> float:
        """Read a positive (or non-negative) number, using `default` when blank."""

        if raw_value is None or normalize_optional_string(raw_value) is None:
            return default
        if allow_zero and normalize_optional_string(raw_value) in {"0", "0.0"}:
            return 0.0
        try:
            return parse_positive_number(raw_value, key)
        except ValueError as exc:
            raise ValueError(f"{source_label} field `{key}` must be a positive number.") from exc

    @staticmethod
    def _optional_string_map(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> dict[str, str]:
        """Read an optional mapping with non-empty string keys and values."""

        raw = payload.get(key)
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")

        normalized: dict[str, str] = {}
        for raw_key, raw_value in raw.items():
            key_value = normalize_optional_string(raw_key)
            value_value = normalize_optional_string(raw_value)
            if key_value is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank key.")
            if value_value is None:
                raise ValueError(
                    f"{source_label} field `{key}` contains blank value for `{key_value}`."
                )
            normalized[key_value] = value_value
        return normalized

    @staticmethod
    def _optional_env_string(env: Mapping[str, str], key: str) -> str | None:
        """Read and normalize optional string environment variable values."""

        if key not in env:
            return None
        return normalize_optional_string(env.get(key))
