"""JSON-file persistence for book and voice records.

Responsibilities:
- Read, create, update, and delete owner-scoped records by id.
- Make every single-record write atomic (write to a temp file, then replace).
- Serialize records into deterministic, human-readable JSON payloads.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from ..errors import NotFoundError, StorageError
from ..models.datatypes import ArtifactRef, Book, Voice, VoiceVersion
from .storage import unique_token


def book_to_payload(book: Book) -> dict[str, Any]:
    """Build a JSON-serializable payload for a book record."""

    return {
        "id": book.id,
        "owner": book.owner,
        "title": book.title,
        "pages": list(book.pages),
        "page_count": book.page_count,
        "voice_versions": [
            {
                "voice_id": version.voice_id,
                "audio_ref": version.audio_ref.as_string(),
                "total_duration": version.total_duration,
                "page_count": version.page_count,
                "created_at": version.created_at,
            }
            for version in book.voice_versions
        ],
        "active_voice_id": book.active_voice_id,
        "progress": dict(book.progress),
        "status": book.status,
        "created_at": book.created_at,
        "updated_at": book.updated_at,
    }


def book_from_payload(payload: dict[str, Any]) -> Book:
    """Rebuild a book record from its stored payload."""

    versions = tuple(
        VoiceVersion(
            voice_id=str(item["voice_id"]),
            audio_ref=ArtifactRef.parse(str(item["audio_ref"])),
            total_duration=float(item["total_duration"]),
            page_count=int(item.get("page_count", 0)),
            created_at=str(item.get("created_at", "")),
        )
        for item in payload.get("voice_versions", [])
    )
    return Book(
        id=str(payload["id"]),
        owner=str(payload["owner"]),
        title=str(payload["title"]),
        pages=tuple(str(page) for page in payload.get("pages", [])),
        voice_versions=versions,
        active_voice_id=payload.get("active_voice_id"),
        progress={str(key): int(value) for key, value in payload.get("progress", {}).items()},
        status=str(payload["status"]),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
    )


def voice_to_payload(voice: Voice) -> dict[str, Any]:
    """Build a JSON-serializable payload for a voice record."""

    return {
        "id": voice.id,
        "owner": voice.owner,
        "display_name": voice.display_name,
        "external_clone_ref": voice.external_clone_ref,
        "is_default": voice.is_default,
        "created_at": voice.created_at,
    }


def voice_from_payload(payload: dict[str, Any]) -> Voice:
    """Rebuild a voice record from its stored payload."""

    return Voice(
        id=str(payload["id"]),
        owner=str(payload["owner"]),
        display_name=str(payload["display_name"]),
        external_clone_ref=str(payload["external_clone_ref"]),
        is_default=bool(payload.get("is_default", False)),
        created_at=str(payload.get("created_at", "")),
    )


class _JsonRecordStore:
    """Owner-partitioned directory of JSON records: `<root>/<owner>/<id>.json`."""

    record_kind = "record"

    def __init__(self, root: Path) -> None:
        self.root = root

    def _record_path(self, owner: str, record_id: str) -> Path:
        """Map an owner/id pair onto a record path, rejecting unsafe identifiers."""

        for value in (owner, record_id):
            if not value or "/" in value or "\\" in value or value in {".", ".."}:
                raise NotFoundError(f"{self.record_kind.capitalize()} `{record_id}` not found.")
        return self.root / owner / f"{record_id}.json"

    def _read(self, owner: str, record_id: str) -> dict[str, Any]:
        path = self._record_path(owner, record_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"{self.record_kind.capitalize()} `{record_id}` not found.") from exc
        except OSError as exc:
            raise StorageError(
                f"Failed to read {self.record_kind} `{record_id}`: {exc}", stage="persist"
            ) from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(
                f"Stored {self.record_kind} `{record_id}` is not valid JSON.", stage="persist"
            ) from exc

    def _write(self, owner: str, record_id: str, payload: dict[str, Any], *, create: bool) -> None:
        path = self._record_path(owner, record_id)
        if create and path.exists():
            raise StorageError(
                f"{self.record_kind.capitalize()} `{record_id}` already exists.", stage="persist"
            )
        if not create and not path.exists():
            raise NotFoundError(f"{self.record_kind.capitalize()} `{record_id}` not found.")
        temp_path = path.with_name(f".{path.name}.{unique_token()}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
                encoding="utf-8",
            )
            os.replace(temp_path, path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise StorageError(
                f"Failed to write {self.record_kind} `{record_id}`: {exc}", stage="persist"
            ) from exc

    def _remove(self, owner: str, record_id: str) -> None:
        path = self._record_path(owner, record_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"{self.record_kind.capitalize()} `{record_id}` not found.") from exc
        except OSError as exc:
            raise StorageError(
                f"Failed to delete {self.record_kind} `{record_id}`: {exc}", stage="persist"
            ) from exc

    def _read_all(self, owner: str) -> list[dict[str, Any]]:
        owner_dir = self.root / owner
        if not owner or "/" in owner or not owner_dir.is_dir():
            return []
        return [
            self._read(owner, path.stem)
            for path in sorted(owner_dir.glob("*.json"))
        ]


class BookRepository(_JsonRecordStore):
    """Book records keyed by owner and book id."""

    record_kind = "book"

    def get(self, owner: str, book_id: str) -> Book:
        """Load a book owned by `owner`, raising `NotFoundError` otherwise."""

        return book_from_payload(self._read(owner, book_id))

    def create(self, book: Book) -> None:
        """Persist a new book record."""

        self._write(book.owner, book.id, book_to_payload(book), create=True)

    def update(self, book: Book) -> None:
        """Atomically replace an existing book record."""

        self._write(book.owner, book.id, book_to_payload(book), create=False)

    def delete(self, owner: str, book_id: str) -> None:
        """Delete a book record."""

        self._remove(owner, book_id)

    def exists(self, owner: str, book_id: str) -> bool:
        """Return whether the owner holds a book with this id."""

        try:
            return self._record_path(owner, book_id).exists()
        except NotFoundError:
            return False

    def list_for_owner(self, owner: str) -> list[Book]:
        """Return the owner's books, newest first."""

        books = [book_from_payload(payload) for payload in self._read_all(owner)]
        return sorted(books, key=lambda book: (book.created_at, book.id), reverse=True)


class VoiceRepository(_JsonRecordStore):
    """Voice records keyed by owner and voice id."""

    record_kind = "voice"

    def get(self, owner: str, voice_id: str) -> Voice:
        """Load a voice owned by `owner`, raising `NotFoundError` otherwise."""

        return voice_from_payload(self._read(owner, voice_id))

    def create(self, voice: Voice) -> None:
        """Persist a new voice record."""

        self._write(voice.owner, voice.id, voice_to_payload(voice), create=True)

    def update(self, voice: Voice) -> None:
        """Atomically replace an existing voice record."""

        self._write(voice.owner, voice.id, voice_to_payload(voice), create=False)

    def delete(self, owner: str, voice_id: str) -> None:
        """Delete a voice record."""

        self._remove(owner, voice_id)

    def list_for_owner(self, owner: str) -> list[Voice]:
        """Return the owner's voices, default first, then oldest first."""

        voices = [voice_from_payload(payload) for payload in self._read_all(owner)]
        return sorted(
            voices, key=lambda voice: (not voice.is_default, voice.created_at, voice.id)
        )
