"""ElevenLabs HTTP client for speech synthesis and instant voice cloning.

Responsibilities:
- Convert text to speech with a cloned voice and return the raw audio bytes.
- Create an instant voice clone from one recorded sample.
"""

from __future__ import annotations

import json

from .http import ProviderHTTPClient
from .rate_limiter import RateLimiter

DEFAULT_VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.8,
    "style": 0.2,
    "use_speaker_boost": True,
}


class ElevenLabsClient(ProviderHTTPClient):
    """Minimal requests-based ElevenLabs client."""

    provider_name = "ElevenLabs"

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.elevenlabs.io/v1",
        timeout_seconds: float = 120.0,
        max_retries: int = 2,
        retry_backoff_base_seconds: float = 0.5,
        retry_backoff_max_seconds: float = 8.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            retry_backoff_base_seconds=retry_backoff_base_seconds,
            retry_backoff_max_seconds=retry_backoff_max_seconds,
            rate_limiter=rate_limiter,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"xi-api-key": self.api_key}

    def text_to_speech(
        self,
        *,
        voice_id: str,
        text: str,
        model_id: str = "eleven_multilingual_v2",
        output_format: str = "mp3_44100_128",
        voice_settings: dict[str, object] | None = None,
    ) -> bytes:
        """Return synthesized audio bytes from `/text-to-speech/{voice_id}`."""

        return self._request(
            "POST",
            f"/text-to-speech/{voice_id}",
            rate_key=f"elevenlabs:tts:{model_id}",
            json_payload={
                "text": text,
                "model_id": model_id,
                "voice_settings": dict(voice_settings or DEFAULT_VOICE_SETTINGS),
            },
            params={"output_format": output_format},
            headers={"Accept": "audio/mpeg"},
            require_non_empty_response=True,
            empty_response_message="Received empty audio buffer from ElevenLabs.",
        )

    def add_voice(
        self,
        *,
        name: str,
        sample: bytes,
        sample_filename: str,
        description: str = "",
    ) -> str:
        """Create an instant voice clone and return the ElevenLabs voice id."""

        raw_payload = self._request(
            "POST",
            "/voices/add",
            rate_key="elevenlabs:voices",
            data={"name": name, "description": description},
            files=[("files", (sample_filename, sample))],
        ).decode("utf-8")
        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise self._malformed("ElevenLabs returned invalid JSON payload.") from exc
        voice_id = payload.get("voice_id") if isinstance(payload, dict) else None
        if not isinstance(voice_id, str) or not voice_id.strip():
            raise self._malformed("ElevenLabs response missing `voice_id`.")
        return voice_id.strip()
