"""Input/output adapters for artifacts and persisted records."""

from .repository import BookRepository, VoiceRepository
from .storage import ArtifactStore, FilesystemArtifactStore
from .supabase_storage import SupabaseArtifactStore

__all__ = [
    "ArtifactStore",
    "BookRepository",
    "FilesystemArtifactStore",
    "SupabaseArtifactStore",
    "VoiceRepository",
]
