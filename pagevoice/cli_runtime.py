"""CLI runtime resolution helpers.

This module isolates config loading, secret source assembly, and secure API-key
persistence from the command wiring layer.
"""

from __future__ import annotations

from dataclasses import replace
import os
from pathlib import Path
from typing import Callable, Protocol

import typer

from .config import ConfigLoader, PagevoiceConfig, RuntimeConfigSources
from .credentials import create_credential_store
from .errors import PagevoiceError, ValidationError
from .parsing import normalize_optional_string


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def secure_sources(self) -> dict[str, str]:
        """Return stored API keys by secret name."""

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist API key value in secure storage."""


def load_command_config(config_file: Path | None, data_dir: Path | None = None) -> PagevoiceConfig:
    """Load YAML or environment config and map failures to stage errors."""

    try:
        config = ConfigLoader.from_yaml(config_file) if config_file else ConfigLoader.from_env()
    except FileNotFoundError as exc:
        raise ValidationError(
            f"Config file not found: `{config_file}`.",
            stage="config",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        source = f"config file `{config_file}`" if config_file else "environment config"
        raise ValidationError(
            f"Invalid {source}: {exc}",
            stage="config",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except OSError as exc:
        raise ValidationError(
            f"Failed to load config file `{config_file}`: {exc}",
            stage="config",
            hint="Verify file permissions.",
        ) from exc

    if data_dir is not None:
        config = replace(config, data_dir=data_dir)
    return config


def resolve_runtime_sources(
    openai_api_key: str | None = None,
    elevenlabs_api_key: str | None = None,
    store_api_keys: bool = False,
    credential_store_factory: Callable[[], CredentialStoreProtocol] = create_credential_store,
    env: dict[str, str] | None = None,
) -> RuntimeConfigSources:
    """Resolve CLI, secure, and environment secret sources for one command."""

    runtime_cli_values: dict[str, str] = {}
    for key, value in (
        ("openai_api_key", openai_api_key),
        ("elevenlabs_api_key", elevenlabs_api_key),
    ):
        normalized = normalize_optional_string(value)
        if normalized is not None:
            runtime_cli_values[key] = normalized

    credential_store = credential_store_factory()
    runtime_secure_values = credential_store.secure_sources()

    if store_api_keys:
        for key, provider in (("openai_api_key", "openai"), ("elevenlabs_api_key", "elevenlabs")):
            if key not in runtime_cli_values:
                continue
            try:
                credential_store.set_api_key(provider, runtime_cli_values[key])
            except (RuntimeError, ValueError) as exc:
                raise PagevoiceError(
                    stage="credentials",
                    detail=f"Failed to store {provider} API key securely: {exc}",
                    hint=(
                        "Install and configure a keyring backend, or rerun without "
                        "`--store-api-keys` for one-off usage."
                    ),
                ) from exc
            typer.echo(f"Stored {provider} API key in secure credential storage.")

    return RuntimeConfigSources(
        cli=runtime_cli_values,
        secure=runtime_secure_values,
        env=ConfigLoader.secret_env(os.environ if env is None else env),
    )
