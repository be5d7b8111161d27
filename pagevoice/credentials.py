"""Secure credential storage helpers for the Pagevoice CLI.

Responsibilities:
- Persist provider API keys in an OS-backed secure credential store.
- Provide deterministic read/write/delete operations, one account per provider.
- Avoid logging or exposing secret values in diagnostics.

Key types:
- `CredentialStore`: interface for provider credential persistence.
- `KeyringCredentialStore`: keyring-backed secure credential storage.
"""

from __future__ import annotations

from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

_DEFAULT_SERVICE_NAME = "pagevoice"

PROVIDER_ACCOUNTS = {
    "openai": "openai_api_key",
    "elevenlabs": "elevenlabs_api_key",
    "supabase": "supabase_key",
}


def account_for(provider: str) -> str:
    """Return the keyring account name for a provider id."""

    try:
        return PROVIDER_ACCOUNTS[provider]
    except KeyError:
        supported = ", ".join(sorted(PROVIDER_ACCOUNTS))
        raise ValueError(f"Unsupported provider `{provider}`; supported: {supported}.") from None


class CredentialStore:
    """Interface for secure provider credential operations."""

    def is_available(self) -> bool:
        """Return whether secure credential operations are available."""

        raise NotImplementedError

    def get_api_key(self, provider: str) -> str | None:
        """Load the stored API key for a provider, when available."""

        raise NotImplementedError

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist an API key for a provider."""

        raise NotImplementedError

    def clear_api_key(self, provider: str) -> bool:
        """Delete a stored API key and return whether one existed."""

        raise NotImplementedError

    def secure_sources(self) -> dict[str, str]:
        """Return stored keys by secret name for config precedence resolution."""

        if not self.is_available():
            return {}
        values: dict[str, str] = {}
        for provider, account in PROVIDER_ACCOUNTS.items():
            value = self.get_api_key(provider)
            if value is not None:
                values[account] = value
        return values


@dataclass(slots=True)
class KeyringCredentialStore(CredentialStore):
    """Secure credential store backed by the `keyring` package."""

    service_name: str = _DEFAULT_SERVICE_NAME

    def is_available(self) -> bool:
        """Return `False` when keyring resolved to its failing fallback backend."""

        backend = keyring.get_keyring()
        return type(backend).__module__ != "keyring.backends.fail"

    def get_api_key(self, provider: str) -> str | None:
        """Get a normalized API key from keyring, returning `None` when missing."""

        try:
            value = keyring.get_password(self.service_name, account_for(provider))
        except KeyringError:
            return None
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        return normalized

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist a normalized API key in keyring or raise when unavailable."""

        account = account_for(provider)
        if not self.is_available():
            raise RuntimeError(
                "Secure credential storage is unavailable because no keyring backend is "
                "configured for this system."
            )

        normalized = api_key.strip()
        if not normalized:
            raise ValueError("API key must be a non-empty string.")
        keyring.set_password(self.service_name, account, normalized)

    def clear_api_key(self, provider: str) -> bool:
        """Remove the stored API key from keyring and report if one was present."""

        account = account_for(provider)
        if self.get_api_key(provider) is None:
            return False
        try:
            keyring.delete_password(self.service_name, account)
        except PasswordDeleteError:
            return False
        return True


def create_credential_store() -> CredentialStore:
    """Create the default secure credential store implementation."""

    return KeyringCredentialStore()
