"""Audio inspection and lossless assembly components.

This package measures synthesized artifacts and joins them into renderings.
"""

from .assembler import AudioAssembler
from .ffmpeg import AudioToolError
from .formats import AudioFormatError, detect_format, measure_duration

__all__ = [
    "AudioAssembler",
    "AudioFormatError",
    "AudioToolError",
    "detect_format",
    "measure_duration",
]
