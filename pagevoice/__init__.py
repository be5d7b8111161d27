"""Top-level package for Pagevoice.

This package turns photographed book pages into a voice-cloned audiobook and
keeps a multi-voice playback ledger per book. The main orchestration entry point
is `BookAssemblyOrchestrator`.
"""

from .pipeline import BookAssemblyOrchestrator

__all__ = ["BookAssemblyOrchestrator", "__version__"]

__version__ = "0.1.0"
