"""Data types shared by the streaming TTS pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

TimingSource = Literal["actual", "estimated"]


class WordTiming(BaseModel):
    """A single word's position inside the audio chunk that contains it."""

    word: str
    start_ms: int = Field(ge=0)
    end_ms: int = Field(ge=0)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="after")
    def _check_order(self) -> "WordTiming":
        if self.end_ms < self.start_ms:
            raise ValueError("end_ms must not precede start_ms")
        return self

    def shifted(self, offset_ms: int) -> "WordTiming":
        return WordTiming(
            word=self.word,
            start_ms=self.start_ms + offset_ms,
            end_ms=self.end_ms + offset_ms,
        )


@dataclass
class TTSResult:
    """Complete synthesis output for one piece of text."""

    audio: bytes
    content_type: str
    word_timings: List[WordTiming]
    estimated_duration_ms: int
    provider: str
    timing_source: TimingSource
    voice: str


@dataclass
class TTSStreamChunk:
    """One progressively delivered slice of a sentence's audio."""

    audio: bytes
    content_type: str
    word_timings: List[WordTiming] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class SynthesisUnit:
    """A sentence waiting in the synthesis chain."""

    sequence: int
    text: str
    sanitized_text: str
    is_last: bool


class AudioChunk(BaseModel):
    """Unit of audio delivered to clients over the event stream.

    Serialized with camelCase keys (``chunkIndex``, ``audioBase64`` ...) via
    ``model_dump(by_alias=True)``.
    """

    chunk_index: int = Field(ge=0)
    audio_base64: str
    content_type: str
    word_timings: List[WordTiming] = Field(default_factory=list)
    cumulative_offset_ms: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    is_last: bool = False
    text: str = ""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @property
    def is_completion_marker(self) -> bool:
        return self.is_last and not self.audio_base64

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


__all__ = [
    "AudioChunk",
    "SynthesisUnit",
    "TTSResult",
    "TTSStreamChunk",
    "TimingSource",
    "WordTiming",
]
