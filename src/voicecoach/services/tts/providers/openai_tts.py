"""OpenAI speech endpoint with estimated word timings."""

from __future__ import annotations

import logging
from typing import ClassVar, Optional

import httpx
import openai
from fastapi import status

from ..timing import estimate_word_timings, estimated_duration_ms, split_words
from ..types import TTSResult
from .base import TTSProvider, TTSProviderError

logger = logging.getLogger(__name__)


class OpenAICompatibleTTSProvider(TTSProvider):
    """Shared request path for vendors exposing ``/audio/speech``.

    The audio carries no alignment data, so timings are estimated from the
    speaking rate.
    """

    model: ClassVar[str] = "tts-1"
    base_url: ClassVar[Optional[str]] = None
    response_format: ClassVar[str] = "mp3"
    content_type: ClassVar[str] = "audio/mpeg"
    voices: ClassVar[tuple[str, ...]] = ()
    fallback_voice: ClassVar[str] = ""

    def __init__(
        self,
        api_key: str,
        default_voice: Optional[str] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_retries: int = 1,
    ):
        super().__init__(http_client=http_client)
        voice = default_voice or self.fallback_voice
        self._default_voice = voice if voice in self.voices else self.fallback_voice
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=timeout,
            max_retries=max_retries,
            http_client=http_client,
        )

    @property
    def default_voice(self) -> str:
        return self._default_voice

    def resolve_voice(self, voice: Optional[str]) -> str:
        if voice and voice in self.voices:
            return voice
        if voice:
            logger.debug(
                "%s: unknown voice %r, using %s", self.name, voice, self._default_voice
            )
        return self._default_voice

    def words_for_timing(self, text: str) -> list[str]:
        return split_words(text)

    async def fetch_audio(self, text: str, voice: str) -> bytes:
        try:
            async with self._client.audio.speech.with_streaming_response.create(
                model=self.model,
                voice=voice,
                input=text,
                response_format=self.response_format,
            ) as response:
                return await response.read()
        except openai.APIStatusError as exc:
            logger.error("%s TTS API error: %s %s", self.name, exc.status_code, exc.message)
            raise TTSProviderError(
                exc.status_code, "Text-to-speech synthesis failed"
            ) from exc
        except openai.APIError as exc:
            logger.error("%s TTS transport error: %s", self.name, exc)
            raise TTSProviderError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def synthesize(self, text: str, voice: Optional[str] = None) -> TTSResult:
        self.validate_text(text)
        voice_to_use = self.resolve_voice(voice)

        logger.info(
            "%s TTS: synthesizing %d chars with voice=%s",
            self.name,
            len(text),
            voice_to_use,
        )
        audio = await self.fetch_audio(text, voice_to_use)

        words = self.words_for_timing(text)
        return TTSResult(
            audio=audio,
            content_type=self.content_type,
            word_timings=estimate_word_timings(words),
            estimated_duration_ms=estimated_duration_ms(len(words)),
            provider=self.name,
            timing_source="estimated",
            voice=voice_to_use,
        )


class OpenAITTSProvider(OpenAICompatibleTTSProvider):
    name = "openai"
    model = "tts-1"
    max_text_length = 4096
    voices = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
    fallback_voice = "nova"


__all__ = ["OpenAICompatibleTTSProvider", "OpenAITTSProvider"]
