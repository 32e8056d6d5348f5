"""Groq Orpheus speech through Groq's OpenAI-compatible endpoint.

Orpheus honours vocal directions such as ``[cheerful]`` or ``[whisper]``;
those markers are not spoken, so they are left out of the timing estimate.
Audio is requested as WAV so the estimate can be rescaled against the real
duration read from the header.
"""

from __future__ import annotations

from .openai_tts import OpenAICompatibleTTSProvider
from ..timing import spoken_words


class GroqTTSProvider(OpenAICompatibleTTSProvider):
    name = "groq"
    model = "canopylabs/orpheus-v1-english"
    base_url = "https://api.groq.com/openai/v1"
    response_format = "wav"
    content_type = "audio/wav"
    max_text_length = 4096
    voices = ("troy", "hannah", "austin")
    fallback_voice = "troy"

    def words_for_timing(self, text: str) -> list[str]:
        return spoken_words(text)


__all__ = ["GroqTTSProvider"]
