"""HTTP clients for the external OCR, speech, and storage collaborators."""

from .elevenlabs_client import ElevenLabsClient
from .openai_client import OpenAIChatClient
from .rate_limiter import RateLimiter

__all__ = ["ElevenLabsClient", "OpenAIChatClient", "RateLimiter"]
