"""OpenAI HTTP client for page OCR and title detection.

Responsibilities:
- Send minimal chat-completions requests, with or without an attached page image.
- Normalize response extraction to the first assistant message text.
"""

from __future__ import annotations

import json
from typing import Any

from .http import ProviderHTTPClient
from .rate_limiter import RateLimiter


class OpenAIChatClient(ProviderHTTPClient):
    """Minimal requests-based OpenAI chat-completions client."""

    provider_name = "OpenAI"

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
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
        return {"Authorization": f"Bearer {self.api_key}"}

    def chat_completion_text(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> str:
        """Return the first assistant text response for a text-only prompt."""

        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return self._complete(model, payload)

    def image_completion_text(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        image_url: str,
        temperature: float = 0.1,
        max_tokens: int | None = 4000,
    ) -> str:
        """Return the first assistant text response for a prompt with one image."""

        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return self._complete(model, payload)

    def _complete(self, model: str, payload: dict[str, Any]) -> str:
        """POST a chat-completions payload and extract the assistant text."""

        raw_payload = self._request(
            "POST",
            "/chat/completions",
            rate_key=f"openai:chat:{model}",
            json_payload=payload,
        ).decode("utf-8")
        return self._extract_message_text(raw_payload)

    def _extract_message_text(self, raw_payload: str) -> str:
        """Extract first assistant message text from a chat-completions JSON payload."""

        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise self._malformed("OpenAI returned invalid JSON payload.") from exc

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise self._malformed("OpenAI response missing non-empty `choices` list.")

        first_choice = choices[0]
        if not isinstance(first_choice, dict):
            raise self._malformed("OpenAI response `choices[0]` is malformed.")

        message = first_choice.get("message")
        if not isinstance(message, dict):
            raise self._malformed("OpenAI response missing `choices[0].message` object.")

        text = self._message_content_to_text(message.get("content")).strip()
        if not text:
            raise self._malformed("OpenAI response message content is empty.")
        return text

    @staticmethod
    def _message_content_to_text(content: Any) -> str:
        """Convert OpenAI message content variants into a plain text string."""

        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if not isinstance(item, dict):
                    continue
                if item.get("type") == "text" and isinstance(item.get("text"), str):
                    parts.append(item["text"])
            return "".join(parts)
        return ""
