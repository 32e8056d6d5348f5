"""Vendor adapters behind the common ``TTSProvider`` interface."""

from .base import TTSConfigurationError, TTSProvider, TTSProviderError
from .elevenlabs_tts import ElevenLabsTTSProvider
from .groq_tts import GroqTTSProvider
from .inworld_tts import InworldTTSProvider
from .openai_tts import OpenAITTSProvider

__all__ = [
    "ElevenLabsTTSProvider",
    "GroqTTSProvider",
    "InworldTTSProvider",
    "OpenAITTSProvider",
    "TTSConfigurationError",
    "TTSProvider",
    "TTSProviderError",
]
