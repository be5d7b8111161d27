"""Integration-test fixtures for CLI runs over a deterministic workspace."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from pagevoice.credentials import PROVIDER_ACCOUNTS, CredentialStore

if TYPE_CHECKING:
    from tests.conftest import Workspace


class InMemoryCredentialStore(CredentialStore):
    """Simple in-memory credential store used for CLI tests."""

    def __init__(self, initial: dict[str, str] | None = None, *, available: bool = True) -> None:
        """Initialize the store with optional pre-seeded provider keys."""

        self.keys = dict(initial or {})
        self.available = available

    def is_available(self) -> bool:
        """Return the configured availability flag."""

        return self.available

    def get_api_key(self, provider: str) -> str | None:
        """Return the stored key for a provider."""

        return self.keys.get(provider)

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist a normalized key, failing like keyring when unavailable."""

        if not self.available:
            raise RuntimeError("no keyring backend")
        if provider not in PROVIDER_ACCOUNTS:
            raise ValueError(f"Unsupported provider `{provider}`.")
        self.keys[provider] = api_key.strip()

    def clear_api_key(self, provider: str) -> bool:
        """Clear a key and return whether one existed."""

        return self.keys.pop(provider, None) is not None


@pytest.fixture
def credential_store(monkeypatch: pytest.MonkeyPatch) -> InMemoryCredentialStore:
    """Route CLI credential access to an in-memory store."""

    store = InMemoryCredentialStore()
    monkeypatch.setattr("pagevoice.cli.create_credential_store", lambda: store)
    return store


@pytest.fixture
def cli_workspace(
    monkeypatch: pytest.MonkeyPatch,
    workspace: Workspace,
    credential_store: InMemoryCredentialStore,
) -> Workspace:
    """Wire CLI commands to the deterministic workspace instead of real providers."""

    _ = credential_store
    for name in ("OPENAI_API_KEY", "ELEVENLABS_API_KEY", "SUPABASE_SERVICE_KEY", "PAGEVOICE_OWNER"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "pagevoice.cli.build_services", lambda config, **kwargs: workspace.services()
    )
    return workspace


@pytest.fixture
def image_files(tmp_path: Path) -> Callable[..., list[str]]:
    """Write page image files whose bytes are the page text and return their paths."""

    def _write(*texts: str) -> list[str]:
        """Write one image file per text under a fresh directory."""

        folder = tmp_path / f"photos-{len(list(tmp_path.glob('photos-*')))}"
        folder.mkdir()
        paths: list[str] = []
        for index, text in enumerate(texts, start=1):
            path = folder / f"IMG_{index:04d}.jpg"
            path.write_bytes(text.encode("utf-8"))
            paths.append(str(path))
        return paths

    return _write
