"""Word timing helpers for providers with and without vendor alignment."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from .types import WordTiming

WORDS_PER_MINUTE = 150
MS_PER_WORD = 60 * 1000 / WORDS_PER_MINUTE

SENTENCE_PAUSE_MS = 300
CLAUSE_PAUSE_MS = 150

_VOCAL_DIRECTION = re.compile(r"\[[^\]]+\]")
_SENTENCE_END = re.compile(r"[.!?]$")
_CLAUSE_END = re.compile(r"[,;:]$")


def split_words(text: str) -> list[str]:
    return text.split()


def spoken_words(text: str) -> list[str]:
    """Words that will actually be voiced, ignoring ``[direction]`` markers."""

    return split_words(_VOCAL_DIRECTION.sub("", text))


def estimate_word_timings(words: Sequence[str]) -> list[WordTiming]:
    """Build timings from a fixed speaking rate.

    Long words (>8 chars) take 20% longer, short words (<3 chars) 20% less,
    and a pause follows sentence or clause punctuation.
    """

    timings: list[WordTiming] = []
    current = 0.0

    for word in words:
        duration = MS_PER_WORD
        if len(word) > 8:
            duration *= 1.2
        elif len(word) < 3:
            duration *= 0.8

        timings.append(
            WordTiming(
                word=word,
                start_ms=round(current),
                end_ms=round(current + duration),
            )
        )
        current += duration

        if _SENTENCE_END.search(word):
            current += SENTENCE_PAUSE_MS
        elif _CLAUSE_END.search(word):
            current += CLAUSE_PAUSE_MS

    return timings


def estimated_duration_ms(word_count: int) -> int:
    return round(word_count / WORDS_PER_MINUTE * 60 * 1000)


def words_from_character_alignment(
    characters: Sequence[str],
    start_times: Sequence[float],
    end_times: Sequence[float],
) -> list[WordTiming]:
    """Aggregate character-level timestamps (seconds) into word timings.

    A word begins at the first non-whitespace character after whitespace and
    ends at the last character before the next whitespace.
    """

    timings: list[WordTiming] = []
    current = ""
    word_start = 0.0
    word_end = 0.0

    for char, start, end in zip(characters, start_times, end_times):
        if char.isspace():
            if current:
                timings.append(_seconds_timing(current, word_start, word_end))
                current = ""
            continue
        if not current:
            word_start = start
        current += char
        word_end = end

    if current:
        timings.append(_seconds_timing(current, word_start, word_end))

    return timings


def words_from_word_alignment(
    words: Iterable[str],
    start_times: Sequence[float],
    end_times: Sequence[float],
) -> list[WordTiming]:
    """Convert vendor word alignment (seconds) into millisecond timings."""

    timings: list[WordTiming] = []
    for index, word in enumerate(words):
        if not word or not word.strip():
            continue
        start = start_times[index] if index < len(start_times) else 0.0
        end = end_times[index] if index < len(end_times) else 0.0
        timings.append(_seconds_timing(word, start or 0.0, end or 0.0))
    return timings


def _seconds_timing(word: str, start_s: float, end_s: float) -> WordTiming:
    start_ms = round(start_s * 1000)
    end_ms = max(start_ms, round(end_s * 1000))
    return WordTiming(word=word, start_ms=start_ms, end_ms=end_ms)


__all__ = [
    "MS_PER_WORD",
    "WORDS_PER_MINUTE",
    "estimate_word_timings",
    "estimated_duration_ms",
    "spoken_words",
    "split_words",
    "words_from_character_alignment",
    "words_from_word_alignment",
]
