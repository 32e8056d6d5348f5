"""ElevenLabs synthesis with character-level alignment."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Optional

import httpx
from fastapi import status

from ..timing import words_from_character_alignment
from ..types import TTSResult
from .base import TTSProvider, TTSProviderError

logger = logging.getLogger(__name__)

_ERROR_MESSAGES = {
    401: "Invalid ElevenLabs API key",
    422: "Invalid request to ElevenLabs API",
}


class ElevenLabsTTSProvider(TTSProvider):
    """
    Calls the ``/with-timestamps`` endpoint, which returns base64 audio plus
    per-character start/end times. Characters are folded into words at
    whitespace boundaries, giving actual rather than estimated timings.
    """

    name = "elevenlabs"
    max_text_length = 5000
    base_url = "https://api.elevenlabs.io/v1/text-to-speech"
    output_format = "mp3_44100_128"

    def __init__(
        self,
        api_key: str,
        default_voice: Optional[str] = None,
        model: Optional[str] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        super().__init__(http_client=http_client)
        self._api_key = api_key
        self._default_voice = default_voice or "EXAVITQu4vr4xnSDxMaL"
        self.model = model or "eleven_flash_v2_5"
        self._timeout = timeout

    @property
    def default_voice(self) -> str:
        return self._default_voice

    async def synthesize(self, text: str, voice: Optional[str] = None) -> TTSResult:
        self.validate_text(text)
        voice_id = voice or self._default_voice

        logger.info(
            "ElevenLabs TTS: synthesizing %d chars with voice=%s model=%s",
            len(text),
            voice_id,
            self.model,
        )
        try:
            response = await self.http_client.post(
                f"{self.base_url}/{voice_id}/with-timestamps",
                headers={
                    "xi-api-key": self._api_key,
                    "Content-Type": "application/json",
                },
                json={
                    "text": text,
                    "model_id": self.model,
                    "output_format": self.output_format,
                },
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TTSProviderError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            logger.error(
                "ElevenLabs TTS API error: %s %s",
                response.status_code,
                response.text[:200],
            )
            raise TTSProviderError(
                response.status_code,
                _ERROR_MESSAGES.get(
                    response.status_code, "Text-to-speech synthesis failed"
                ),
            )

        payload: dict[str, Any] = response.json()
        try:
            audio = base64.b64decode(payload["audio_base64"])
        except (KeyError, TypeError, binascii.Error) as exc:
            raise TTSProviderError(
                status.HTTP_502_BAD_GATEWAY, "No audio data received from ElevenLabs"
            ) from exc

        alignment = payload.get("alignment") or {}
        characters = alignment.get("characters") or []
        starts = alignment.get("character_start_times_seconds") or []
        ends = alignment.get("character_end_times_seconds") or []
        if not characters:
            logger.warning("ElevenLabs returned no alignment data")

        word_timings = words_from_character_alignment(characters, starts, ends)
        duration_ms = round(ends[-1] * 1000) if ends else 0

        return TTSResult(
            audio=audio,
            content_type="audio/mpeg",
            word_timings=word_timings,
            estimated_duration_ms=duration_ms,
            provider=self.name,
            timing_source="actual",
            voice=voice_id,
        )


__all__ = ["ElevenLabsTTSProvider"]
