"""Artifact storage abstraction.

Responsibilities:
- Define the upload/download/delete contract for page images and audio artifacts.
- Provide a filesystem-backed store with the same semantics as the remote store,
  including byte-range reads for seekable playback.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from typing import Protocol
import uuid

from ..errors import StorageError
from ..models.datatypes import ArtifactRef

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "heic": "image/heic",
    "webp": "image/webp",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}


def content_type_for(name: str) -> str:
    """Return a MIME type for an artifact name, `application/octet-stream` if unknown."""

    suffix = PurePosixPath(name).suffix.lstrip(".").lower()
    return _CONTENT_TYPES.get(suffix, "application/octet-stream")


def object_path(owner: str, book_id: str, name: str) -> str:
    """Build the `<owner>/<book>/<name>` object path, rejecting traversal segments."""

    parts = [owner, book_id, name]
    for part in parts:
        if not part or "/" in part or part in {".", ".."}:
            raise StorageError(f"Invalid artifact path component `{part}`.")
    return "/".join(parts)


def unique_token() -> str:
    """Return a short random token used to keep artifact names unique."""

    return uuid.uuid4().hex[:12]


class ArtifactStore(Protocol):
    """Protocol for artifact store implementations."""

    def put(self, bucket: str, owner: str, book_id: str, name: str, data: bytes) -> ArtifactRef:
        """Upload bytes under `<owner>/<book>/<name>` and return the reference."""

    def get(self, ref: ArtifactRef) -> bytes:
        """Download the full artifact."""

    def get_range(self, ref: ArtifactRef, start: int, end: int | None = None) -> bytes:
        """Download bytes `start..end` (inclusive); `end=None` reads to the end."""

    def delete(self, ref: ArtifactRef) -> bool:
        """Delete an artifact and return whether it existed."""


class FilesystemArtifactStore:
    """Local-disk artifact store laid out as `<root>/<bucket>/<owner>/<book>/<name>`."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def _resolve(self, ref: ArtifactRef) -> Path:
        """Map a reference onto a local path inside the root."""

        relative = PurePosixPath(ref.bucket) / PurePosixPath(ref.path)
        if ".." in relative.parts:
            raise StorageError(f"Invalid artifact reference `{ref.as_string()}`.")
        return self.root.joinpath(*relative.parts)

    def put(self, bucket: str, owner: str, book_id: str, name: str, data: bytes) -> ArtifactRef:
        """Write bytes without overwriting an existing artifact."""

        ref = ArtifactRef(bucket=bucket, path=object_path(owner, book_id, name))
        path = self._resolve(ref)
        if path.exists():
            raise StorageError(f"Artifact already exists: `{ref.as_string()}`.")
        temp_path = path.with_name(f".{path.name}.{unique_token()}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(data)
            os.replace(temp_path, path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write artifact `{ref.as_string()}`: {exc}") from exc
        return ref

    def get(self, ref: ArtifactRef) -> bytes:
        """Read the full artifact."""

        try:
            return self._resolve(ref).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read artifact `{ref.as_string()}`: {exc}") from exc

    def get_range(self, ref: ArtifactRef, start: int, end: int | None = None) -> bytes:
        """Read an inclusive byte range of the artifact."""

        if start < 0 or (end is not None and end < start):
            raise StorageError(f"Invalid byte range {start}-{end} for `{ref.as_string()}`.")
        try:
            with self._resolve(ref).open("rb") as handle:
                handle.seek(start)
                if end is None:
                    return handle.read()
                return handle.read(end - start + 1)
        except OSError as exc:
            raise StorageError(f"Failed to read artifact `{ref.as_string()}`: {exc}") from exc

    def delete(self, ref: ArtifactRef) -> bool:
        """Delete the artifact file, returning `False` when it was already gone."""

        path = self._resolve(ref)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete artifact `{ref.as_string()}`: {exc}") from exc
        return True

    def exists(self, ref: ArtifactRef) -> bool:
        """Return whether the given artifact exists."""

        return self._resolve(ref).exists()
