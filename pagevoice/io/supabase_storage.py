"""Supabase Storage backed artifact store.

Responsibilities:
- Upload, download, range-download, and delete objects through the Storage REST API.
- Map provider failures onto `StorageError` for the orchestrator.
"""

from __future__ import annotations

import json
from urllib.parse import quote

from ..errors import ProviderError, StorageError
from ..models.datatypes import ArtifactRef
from ..providers.http import ProviderHTTPClient
from ..providers.rate_limiter import RateLimiter
from .storage import content_type_for, object_path


class SupabaseArtifactStore(ProviderHTTPClient):
    """Artifact store speaking the Supabase Storage REST API."""

    provider_name = "Supabase Storage"

    def __init__(
        self,
        *,
        project_url: str,
        service_key: str | None,
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(
            api_key=service_key,
            base_url=f"{project_url.rstrip('/')}/storage/v1",
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            rate_limiter=rate_limiter if rate_limiter is not None else RateLimiter(0.0),
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key}

    @staticmethod
    def _object_endpoint(ref: ArtifactRef) -> str:
        """Return the object endpoint path for a reference."""

        return f"/object/{quote(ref.bucket)}/{quote(ref.path)}"

    def put(self, bucket: str, owner: str, book_id: str, name: str, data: bytes) -> ArtifactRef:
        """Upload bytes without overwriting an existing object."""

        ref = ArtifactRef(bucket=bucket, path=object_path(owner, book_id, name))
        try:
            self._request(
                "POST",
                self._object_endpoint(ref),
                rate_key=f"supabase:upload:{bucket}",
                data=data,
                headers={"Content-Type": content_type_for(name), "x-upsert": "false"},
            )
        except ProviderError as exc:
            raise StorageError(f"Failed to upload `{ref.as_string()}`: {exc}") from exc
        return ref

    def get(self, ref: ArtifactRef) -> bytes:
        """Download the full object."""

        try:
            return self._request(
                "GET", self._object_endpoint(ref), rate_key=f"supabase:download:{ref.bucket}"
            )
        except ProviderError as exc:
            raise StorageError(f"Failed to download `{ref.as_string()}`: {exc}") from exc

    def get_range(self, ref: ArtifactRef, start: int, end: int | None = None) -> bytes:
        """Download an inclusive byte range using an HTTP `Range` header."""

        if start < 0 or (end is not None and end < start):
            raise StorageError(f"Invalid byte range {start}-{end} for `{ref.as_string()}`.")
        range_header = f"bytes={start}-" if end is None else f"bytes={start}-{end}"
        try:
            return self._request(
                "GET",
                self._object_endpoint(ref),
                rate_key=f"supabase:download:{ref.bucket}",
                headers={"Range": range_header},
            )
        except ProviderError as exc:
            raise StorageError(f"Failed to download `{ref.as_string()}`: {exc}") from exc

    def delete(self, ref: ArtifactRef) -> bool:
        """Delete one object and return whether the service reported it removed."""

        try:
            raw_payload = self._request(
                "DELETE",
                f"/object/{quote(ref.bucket)}",
                rate_key=f"supabase:delete:{ref.bucket}",
                json_payload={"prefixes": [ref.path]},
            )
        except ProviderError as exc:
            raise StorageError(f"Failed to delete `{ref.as_string()}`: {exc}") from exc
        try:
            removed = json.loads(raw_payload.decode("utf-8") or "[]")
        except (UnicodeDecodeError, json.JSONDecodeError):
            return True
        return bool(removed)
