"""Model exports for Pagevoice."""

from .datatypes import (
    ArtifactRef,
    AssembledAudio,
    AudioSegment,
    Book,
    ExtractedPage,
    PageImage,
    ResultPage,
    StoredPage,
    SynthesisChunk,
    SynthesizedChunk,
    Voice,
    VoiceVersion,
)

__all__ = [
    "ArtifactRef",
    "AssembledAudio",
    "AudioSegment",
    "Book",
    "ExtractedPage",
    "PageImage",
    "ResultPage",
    "StoredPage",
    "SynthesisChunk",
    "SynthesizedChunk",
    "Voice",
    "VoiceVersion",
]
