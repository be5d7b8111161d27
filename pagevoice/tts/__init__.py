"""Text-to-speech provider abstractions.

This package contains the synthesizer and voice cloning protocols and the batch
stage used by the book assembly pipeline.
"""

from .cloning import ElevenLabsVoiceCloner, VoiceCloner
from .synthesizer import ElevenLabsSynthesizer, SpeechSynthesizer, SynthesisStage

__all__ = [
    "ElevenLabsSynthesizer",
    "ElevenLabsVoiceCloner",
    "SpeechSynthesizer",
    "SynthesisStage",
    "VoiceCloner",
]
