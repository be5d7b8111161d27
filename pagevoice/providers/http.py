"""Shared HTTP plumbing for provider clients.

Responsibilities:
- Send requests with `requests`, bounded retries, and per-key rate limiting.
- Map transport and HTTP failures into `ProviderError` with a stable failure kind.
- Redact secrets and cap provider messages before they reach diagnostics.
"""

from __future__ import annotations

import json
import re
import socket
import time
from typing import Any

import requests
from loguru import logger

from ..errors import ProviderError
from .rate_limiter import RateLimiter


class ProviderHTTPClient:
    """Base client holding HTTP settings, retry policy, and error mapping."""

    provider_name = "provider"
    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        retry_backoff_base_seconds: float = 0.5,
        retry_backoff_max_seconds: float = 8.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize HTTP client settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self.retry_backoff_base_seconds = retry_backoff_base_seconds
        self.retry_backoff_max_seconds = retry_backoff_max_seconds
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.retry_attempt_count = 0

    def _auth_headers(self) -> dict[str, str]:
        """Return provider-specific authentication headers."""

        raise NotImplementedError

    def _require_api_key(self) -> None:
        """Require API key presence before issuing requests."""

        if not self.api_key:
            raise ProviderError(
                f"Missing {self.provider_name} API key.",
                provider=self.provider_name,
                failure_kind="invalid_api_key",
            )

    def _request(
        self,
        method: str,
        endpoint_path: str,
        *,
        rate_key: str,
        json_payload: dict[str, Any] | None = None,
        data: Any = None,
        files: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        require_non_empty_response: bool = False,
        empty_response_message: str = "Provider response is empty.",
    ) -> bytes:
        """Execute a request with bounded retries for transient failures."""

        self._require_api_key()
        attempt = 0
        while True:
            self.rate_limiter.acquire(rate_key)
            try:
                return self._execute(
                    method,
                    endpoint_path,
                    json_payload=json_payload,
                    data=data,
                    files=files,
                    params=params,
                    headers=headers,
                    require_non_empty_response=require_non_empty_response,
                    empty_response_message=empty_response_message,
                )
            except ProviderError as exc:
                if not exc.transient or attempt >= self.max_retries:
                    raise
                delay = min(
                    self.retry_backoff_base_seconds * (2**attempt),
                    self.retry_backoff_max_seconds,
                )
                logger.debug(
                    "{} request retry {}/{} after {}",
                    self.provider_name,
                    attempt + 1,
                    self.max_retries,
                    exc.failure_kind,
                )
                attempt += 1
                self.retry_attempt_count += 1
                time.sleep(delay)

    def _execute(
        self,
        method: str,
        endpoint_path: str,
        *,
        json_payload: dict[str, Any] | None,
        data: Any,
        files: Any,
        params: dict[str, str] | None,
        headers: dict[str, str] | None,
        require_non_empty_response: bool,
        empty_response_message: str,
    ) -> bytes:
        """Execute one HTTP request and map failures consistently."""

        endpoint = f"{self.base_url}{endpoint_path}"
        merged_headers = {**self._auth_headers(), **(headers or {})}
        try:
            response = requests.request(
                method,
                endpoint,
                headers=merged_headers,
                json=json_payload,
                data=data,
                files=files,
                params=params,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            response_bytes = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = f"{self.provider_name} request timed out."
            else:
                detail = (
                    f"{self.provider_name} request transport error: "
                    f"{self._short_message(str(exc))}"
                )
            raise ProviderError(
                detail, provider=self.provider_name, failure_kind=failure_kind
            ) from exc
        except TimeoutError as exc:
            raise ProviderError(
                f"{self.provider_name} request timed out.",
                provider=self.provider_name,
                failure_kind="timeout",
            ) from exc

        if require_non_empty_response and not response_bytes:
            raise ProviderError(
                empty_response_message,
                provider=self.provider_name,
                failure_kind="malformed_response",
            )
        return response_bytes

    def _malformed(self, message: str) -> ProviderError:
        """Build a provider error for responses that do not match the expected shape."""

        return ProviderError(
            message, provider=self.provider_name, failure_kind="malformed_response"
        )

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        """Decode an HTTP error body into a best-effort UTF-8 payload string."""

        response = exc.response
        if response is None:
            return ""
        content = getattr(response, "content", b"") or b""
        return bytes(content).decode("utf-8", errors="replace").strip()

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk[-_][A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise message and optional error code from an error body.

        Understands `{"error": {"message", "code"}}`, `{"detail": {"message",
        "status"}}`, and flat `{"message", "error"}` payload shapes.
        """

        if not body:
            return "", None

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        message: str | None = None
        provider_code: str | None = None
        if isinstance(payload, dict):
            error_value = payload.get("error")
            detail_value = payload.get("detail")
            nested = error_value if isinstance(error_value, dict) else detail_value
            if isinstance(nested, dict):
                code_value = nested.get("code") or nested.get("status")
                if isinstance(code_value, str) and code_value.strip():
                    provider_code = code_value.strip()
                message_value = nested.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()
            elif isinstance(payload.get("message"), str):
                message = payload["message"].strip()
                if isinstance(error_value, str) and error_value.strip():
                    provider_code = error_value.strip()
            elif isinstance(error_value, str) and error_value.strip():
                message = error_value.strip()

        if message is None:
            message = body
        return cls._short_message(cls._redact_sensitive_tokens(message)), provider_code

    @staticmethod
    def _classify_http_failure(
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        """Classify HTTP errors into deterministic diagnostic kinds."""

        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code in {401, 403} or "api key" in message_lower:
            return "invalid_api_key"
        if "quota" in normalized_code or "quota" in message_lower:
            return "insufficient_quota"
        if status_code == 429 or "rate limit" in message_lower:
            return "rate_limited"
        if status_code in {408, 504} or "timed out" in message_lower:
            return "timeout"
        if status_code == 404:
            return "not_found"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        """Classify network-layer failures into deterministic diagnostic kinds."""

        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    def _http_error_to_provider_error(self, exc: requests.HTTPError) -> ProviderError:
        """Convert HTTP errors into normalized provider exceptions with metadata."""

        status_code = exc.response.status_code if exc.response is not None else 0
        body = self._decode_error_body(exc)
        provider_message, provider_code = self._extract_provider_message(body)
        failure_kind = self._classify_http_failure(status_code, provider_message, provider_code)

        headline = {
            "invalid_api_key": f"{self.provider_name} authentication failed",
            "insufficient_quota": f"{self.provider_name} quota exceeded",
            "rate_limited": f"{self.provider_name} rate limit exceeded",
            "timeout": f"{self.provider_name} request timed out",
            "not_found": f"{self.provider_name} resource not found",
        }.get(failure_kind, f"{self.provider_name} request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."

        return ProviderError(
            detail,
            provider=self.provider_name,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
