"""Page text extraction and title detection.

This package wraps the OCR collaborator as an ordered batch stage.
"""

from .extractor import ExtractionStage, OpenAIPageExtractor, PageExtractor
from .title import FallbackTitleDetector, OpenAITitleDetector, TitleDetector, fallback_title

__all__ = [
    "ExtractionStage",
    "FallbackTitleDetector",
    "OpenAIPageExtractor",
    "OpenAITitleDetector",
    "PageExtractor",
    "TitleDetector",
    "fallback_title",
]
