"""Instant voice cloning adapters."""

from __future__ import annotations

from typing import Protocol

from ..providers.elevenlabs_client import ElevenLabsClient


class VoiceCloner(Protocol):
    """Protocol for voice cloning implementations."""

    def clone(self, name: str, sample: bytes, filename: str, description: str = "") -> str:
        """Create a clone from one recorded sample and return its external handle."""


class ElevenLabsVoiceCloner:
    """Create ElevenLabs instant voice clones."""

    def __init__(self, client: ElevenLabsClient) -> None:
        self.client = client

    def clone(self, name: str, sample: bytes, filename: str, description: str = "") -> str:
        return self.client.add_voice(
            name=name,
            sample=sample,
            sample_filename=filename,
            description=description or f"Voice clone for {name}",
        )
