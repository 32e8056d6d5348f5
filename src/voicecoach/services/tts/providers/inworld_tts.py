"""
InWorld synthesis with word-level alignment.

Two endpoints are used:

- ``/tts/v1/voice`` returns the whole sentence in one JSON body.
- ``/tts/v1/voice:stream`` returns newline-delimited JSON, one object per
  audio slice, each wrapped as ``{"result": {"audioContent": ...}}``.

Word times in the streaming variant are absolute from the start of the
sentence, so a slice's duration is its last word end minus the previous
slice's last word end, and its timings are rebased onto that boundary.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
from fastapi import status

from ..timing import words_from_word_alignment
from ..types import TTSResult, TTSStreamChunk, WordTiming
from .base import TTSProvider, TTSProviderError

logger = logging.getLogger(__name__)

INWORLD_API_BASE = "https://api.inworld.ai"

_ERROR_MESSAGES = {
    401: "Invalid InWorld API key",
    400: "Invalid request to InWorld API",
    422: "Invalid request to InWorld API",
    429: "InWorld API rate limit exceeded",
}


def extract_word_timings(result: dict[str, Any]) -> list[WordTiming]:
    alignment = (result.get("timestampInfo") or {}).get("wordAlignment") or {}
    words = alignment.get("words") or []
    if not words:
        return []
    return words_from_word_alignment(
        words,
        alignment.get("wordStartTimeSeconds") or [],
        alignment.get("wordEndTimeSeconds") or [],
    )


class InworldTTSProvider(TTSProvider):
    name = "inworld"
    max_text_length = 2000
    supports_streaming = True

    def __init__(
        self,
        api_key: str,
        default_voice: Optional[str] = None,
        model: Optional[str] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        speaking_rate: float = 0.8,
    ):
        super().__init__(http_client=http_client)
        self._api_key = api_key
        self._default_voice = default_voice or "Dennis"
        self.model = model or "inworld-tts-1"
        self.speaking_rate = speaking_rate
        self._timeout = timeout

    @property
    def default_voice(self) -> str:
        return self._default_voice

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Basic {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, text: str, voice: str) -> dict[str, Any]:
        return {
            "text": text,
            "voiceId": voice,
            "modelId": self.model,
            "timestampType": "WORD",
            "audioConfig": {
                "audioEncoding": "MP3",
                "sampleRateHertz": 44100,
                "bitRate": 128000,
                "speakingRate": self.speaking_rate,
            },
        }

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> None:
        logger.error("InWorld TTS API error: %s %s", status_code, body[:200])
        raise TTSProviderError(
            status_code,
            _ERROR_MESSAGES.get(status_code, "Text-to-speech synthesis failed"),
        )

    async def synthesize(self, text: str, voice: Optional[str] = None) -> TTSResult:
        self.validate_text(text)
        voice_id = voice or self._default_voice

        logger.info("InWorld TTS: synthesizing %d chars (non-streaming)", len(text))
        try:
            response = await self.http_client.post(
                f"{INWORLD_API_BASE}/tts/v1/voice",
                headers=self._headers,
                json=self._build_payload(text, voice_id),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TTSProviderError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            self._raise_for_status(response.status_code, response.text)

        data = response.json()
        audio_content = data.get("audioContent")
        if not audio_content:
            raise TTSProviderError(
                status.HTTP_502_BAD_GATEWAY, "No audio data received from InWorld"
            )

        word_timings = extract_word_timings(data)
        logger.debug(
            "InWorld word timings: %s", " ".join(t.word for t in word_timings)
        )

        return TTSResult(
            audio=base64.b64decode(audio_content),
            content_type="audio/mpeg",
            word_timings=word_timings,
            estimated_duration_ms=word_timings[-1].end_ms if word_timings else 0,
            provider=self.name,
            timing_source="actual",
            voice=voice_id,
        )

    async def synthesize_stream(
        self, text: str, voice: Optional[str] = None
    ) -> AsyncIterator[TTSStreamChunk]:
        self.validate_text(text)
        voice_id = voice or self._default_voice

        logger.info("InWorld TTS: synthesizing %d chars (streaming)", len(text))
        prev_end_ms = 0

        try:
            async with self.http_client.stream(
                "POST",
                f"{INWORLD_API_BASE}/tts/v1/voice:stream",
                headers=self._headers,
                json=self._build_payload(text, voice_id),
                timeout=self._timeout,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    self._raise_for_status(
                        response.status_code, body.decode("utf-8", errors="ignore")
                    )

                async for line in response.aiter_lines():
                    chunk, prev_end_ms = self._parse_line(line, prev_end_ms)
                    if chunk is not None:
                        yield chunk
        except httpx.HTTPError as exc:
            raise TTSProviderError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    @staticmethod
    def _parse_line(
        line: str, prev_end_ms: int
    ) -> tuple[Optional[TTSStreamChunk], int]:
        if not line.strip():
            return None, prev_end_ms
        try:
            result = json.loads(line).get("result") or {}
        except (json.JSONDecodeError, AttributeError):
            logger.warning("Failed to parse InWorld streaming line: %s", line[:100])
            return None, prev_end_ms

        audio_content = result.get("audioContent")
        if not audio_content:
            return None, prev_end_ms

        word_timings = extract_word_timings(result)
        absolute_end_ms = word_timings[-1].end_ms if word_timings else prev_end_ms
        # Rebase onto the slice so timings stay relative to their own chunk
        relative = [
            WordTiming(
                word=t.word,
                start_ms=max(0, t.start_ms - prev_end_ms),
                end_ms=max(0, t.end_ms - prev_end_ms),
            )
            for t in word_timings
        ]
        chunk = TTSStreamChunk(
            audio=base64.b64decode(audio_content),
            content_type="audio/mpeg",
            word_timings=relative,
            duration_ms=max(0, absolute_end_ms - prev_end_ms),
        )
        return chunk, absolute_end_ms


__all__ = ["InworldTTSProvider", "extract_word_timings"]
