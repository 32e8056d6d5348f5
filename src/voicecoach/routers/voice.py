"""Full-text synthesis endpoint used when streaming TTS produced no audio."""

from __future__ import annotations

import base64
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..schemas.voice import SynthesizeRequest, SynthesizeResponse
from ..services.tts.providers.base import TTSProvider, TTSProviderError
from ..services.tts.sanitize import sanitize_for_tts
from ..services.tts.wav_utils import normalize_wav_timing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/voice", tags=["voice"])


def get_tts_provider(request: Request) -> TTSProvider:
    provider: TTSProvider | None = getattr(request.app.state, "tts_provider", None)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Text-to-speech is not configured",
        )
    return provider


@router.post("/synthesize", status_code=200)
async def synthesize(
    payload: SynthesizeRequest,
    provider: TTSProvider = Depends(get_tts_provider),
) -> dict[str, Any]:
    text = sanitize_for_tts(payload.text)
    if not text:
        raise HTTPException(status_code=400, detail="Text is required")

    try:
        result = await provider.synthesize(text, payload.voice)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TTSProviderError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    result = normalize_wav_timing(result)
    logger.info(
        "Batch synthesis: %d chars, %dms via %s",
        len(text),
        result.estimated_duration_ms,
        result.provider,
    )
    response = SynthesizeResponse(
        audio=base64.b64encode(result.audio).decode("ascii"),
        content_type=result.content_type,
        word_timings=result.word_timings,
        estimated_duration_ms=result.estimated_duration_ms,
        timing_source=result.timing_source,
        voice=result.voice,
        provider=result.provider,
    )
    return response.model_dump(by_alias=True)
