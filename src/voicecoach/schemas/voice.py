"""Pydantic models for the batch synthesis endpoint."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..services.tts.types import WordTiming


class SynthesizeRequest(BaseModel):
    text: str = Field(min_length=1)
    voice: Optional[str] = None


class SynthesizeResponse(BaseModel):
    """Full-text synthesis result, used when streaming TTS did not run."""

    audio: str
    content_type: str
    word_timings: List[WordTiming]
    estimated_duration_ms: int
    timing_source: Literal["actual", "estimated"]
    voice: str
    provider: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
