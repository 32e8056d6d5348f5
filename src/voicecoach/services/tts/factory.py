"""Construct the configured TTS provider."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from ...config import Settings, TTSProviderName, secret_value
from .providers import (
    ElevenLabsTTSProvider,
    GroqTTSProvider,
    InworldTTSProvider,
    OpenAITTSProvider,
    TTSConfigurationError,
    TTSProvider,
)

logger = logging.getLogger(__name__)


def _build_openai(
    settings: Settings, http_client: Optional[httpx.AsyncClient]
) -> TTSProvider:
    api_key = secret_value(settings.openai_api_key)
    if not api_key:
        raise TTSConfigurationError("No TTS provider API key configured")
    return OpenAITTSProvider(
        api_key,
        settings.openai_tts_voice,
        http_client=http_client,
        timeout=settings.tts_timeout,
    )


def _build_groq(
    settings: Settings, http_client: Optional[httpx.AsyncClient]
) -> Optional[TTSProvider]:
    api_key = secret_value(settings.groq_api_key)
    if not api_key:
        return None
    return GroqTTSProvider(
        api_key,
        settings.groq_tts_voice,
        http_client=http_client,
        timeout=settings.tts_timeout,
    )


def _build_elevenlabs(
    settings: Settings, http_client: Optional[httpx.AsyncClient]
) -> Optional[TTSProvider]:
    api_key = secret_value(settings.elevenlabs_api_key)
    if not api_key:
        return None
    return ElevenLabsTTSProvider(
        api_key,
        settings.elevenlabs_voice_id,
        settings.elevenlabs_model,
        http_client=http_client,
        timeout=settings.tts_timeout,
    )


def _build_inworld(
    settings: Settings, http_client: Optional[httpx.AsyncClient]
) -> Optional[TTSProvider]:
    api_key = secret_value(settings.inworld_api_key)
    if not api_key:
        return None
    return InworldTTSProvider(
        api_key,
        settings.inworld_voice_id,
        settings.inworld_model,
        http_client=http_client,
        timeout=settings.tts_timeout,
    )


_BUILDERS: dict[
    TTSProviderName,
    Callable[[Settings, Optional[httpx.AsyncClient]], Optional[TTSProvider]],
] = {
    "groq": _build_groq,
    "elevenlabs": _build_elevenlabs,
    "inworld": _build_inworld,
}


def create_tts_provider(
    settings: Settings, *, http_client: Optional[httpx.AsyncClient] = None
) -> TTSProvider:
    """Return the provider named by ``settings.tts_provider``.

    A vendor without an API key falls back to OpenAI. Raises
    ``TTSConfigurationError`` when OpenAI is not configured either.
    """

    requested = settings.tts_provider
    builder = _BUILDERS.get(requested)
    if builder is not None:
        provider = builder(settings, http_client)
        if provider is not None:
            logger.info("TTS provider: %r", provider)
            return provider
        logger.warning(
            "%s TTS requested but no API key configured, falling back to OpenAI",
            requested,
        )

    provider = _build_openai(settings, http_client)
    logger.info("TTS provider: %r", provider)
    return provider


__all__ = ["create_tts_provider"]
