"""
WAV header parsing and timing normalization.

Estimated word timings (computed from a words-per-minute rate) drift from the
real audio. When a provider returns a RIFF/WAVE container the true duration is
recoverable from the header, and the timings are stretched to match it.
"""

from __future__ import annotations

import logging
import struct
from typing import Optional, Sequence

from .types import TTSResult, WordTiming

logger = logging.getLogger(__name__)

# Streaming encoders write this when the final size is not known up front
_UNKNOWN_DATA_SIZE = 0xFFFFFFFF


def get_wav_duration_ms(data: bytes) -> Optional[int]:
    """
    Return the duration of a WAV buffer in milliseconds.

    Walks the RIFF chunk list rather than assuming the canonical 44-byte
    header, so files carrying LIST/fact chunks before ``data`` still parse.

    Args:
        data: Complete WAV file contents

    Returns:
        Rounded duration in milliseconds, or None when the buffer is not a
        parseable WAV file
    """
    if len(data) < 12:
        logger.warning("Invalid WAV: buffer too short (%d bytes)", len(data))
        return None
    if data[0:4] != b"RIFF":
        logger.warning("Invalid WAV: missing RIFF header")
        return None
    if data[8:12] != b"WAVE":
        logger.warning("Invalid WAV: missing WAVE format")
        return None

    offset = 12
    byte_rate = 0
    data_size = 0

    try:
        while offset < len(data) - 8:
            chunk_id = data[offset : offset + 4]
            (chunk_size,) = struct.unpack_from("<I", data, offset + 4)

            if chunk_id == b"fmt ":
                # Byte rate sits 8 bytes into the fmt payload
                (byte_rate,) = struct.unpack_from("<I", data, offset + 16)
            elif chunk_id == b"data":
                data_size = chunk_size
                if data_size in (_UNKNOWN_DATA_SIZE, 0):
                    data_size = len(data) - (offset + 8)
                break

            # Chunks are word aligned; odd sizes carry one pad byte
            offset += 8 + chunk_size + (chunk_size & 1)
    except struct.error as exc:
        logger.error("Failed to parse WAV header: %s", exc)
        return None

    if byte_rate == 0 or data_size <= 0:
        logger.warning("Could not find fmt or data chunk")
        return None

    return round(data_size / byte_rate * 1000)


def scale_word_timings(
    word_timings: Sequence[WordTiming], actual_duration_ms: int
) -> list[WordTiming]:
    """Stretch timings so the last word ends at ``actual_duration_ms``."""

    if not word_timings:
        return list(word_timings)

    last_end_ms = word_timings[-1].end_ms
    if last_end_ms == 0:
        return list(word_timings)

    factor = actual_duration_ms / last_end_ms
    return [
        WordTiming(
            word=timing.word,
            start_ms=round(timing.start_ms * factor),
            end_ms=round(timing.end_ms * factor),
        )
        for timing in word_timings
    ]


def is_wav(content_type: str, data: bytes) -> bool:
    if content_type.lower() in {"audio/wav", "audio/x-wav", "audio/wave"}:
        return True
    return data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def normalize_wav_timing(result: TTSResult) -> TTSResult:
    """Replace an estimated duration with the WAV header's, rescaling timings."""

    if result.timing_source != "estimated" or not is_wav(
        result.content_type, result.audio
    ):
        return result

    actual_ms = get_wav_duration_ms(result.audio)
    if actual_ms is None:
        return result

    logger.debug(
        "Rescaling %d word timings: estimated %dms -> actual %dms",
        len(result.word_timings),
        result.estimated_duration_ms,
        actual_ms,
    )
    result.word_timings = scale_word_timings(result.word_timings, actual_ms)
    result.estimated_duration_ms = actual_ms
    return result


__all__ = [
    "get_wav_duration_ms",
    "is_wav",
    "normalize_wav_timing",
    "scale_word_timings",
]
