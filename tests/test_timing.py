from __future__ import annotations

import pytest

from voicecoach.services.tts.timing import (
    CLAUSE_PAUSE_MS,
    MS_PER_WORD,
    SENTENCE_PAUSE_MS,
    estimate_word_timings,
    estimated_duration_ms,
    spoken_words,
    words_from_character_alignment,
    words_from_word_alignment,
)


def test_estimate_word_timings_adds_pauses() -> None:
    timings = estimate_word_timings(["Okay,", "breathe.", "Now"])

    assert timings[0].start_ms == 0
    assert timings[0].end_ms == round(MS_PER_WORD)
    assert timings[1].start_ms == round(MS_PER_WORD + CLAUSE_PAUSE_MS)
    assert timings[2].start_ms == round(
        MS_PER_WORD * 2 + CLAUSE_PAUSE_MS + SENTENCE_PAUSE_MS
    )


def test_estimate_word_timings_length_adjustments() -> None:
    short, long_ = estimate_word_timings(["hi", "unbelievable"])

    assert short.end_ms - short.start_ms == round(MS_PER_WORD * 0.8)
    assert long_.end_ms - long_.start_ms == pytest.approx(MS_PER_WORD * 1.2, abs=1)


def test_estimated_timings_are_monotonic() -> None:
    timings = estimate_word_timings("You are doing great, keep it up. Really!".split())

    for previous, current in zip(timings, timings[1:]):
        assert previous.end_ms <= current.start_ms


def test_estimated_duration() -> None:
    assert estimated_duration_ms(150) == 60000
    assert estimated_duration_ms(0) == 0


def test_spoken_words_drop_directions() -> None:
    assert spoken_words("[cheerful] Nice work [laughs] today") == [
        "Nice",
        "work",
        "today",
    ]


def test_words_from_character_alignment() -> None:
    chars = list("Hi you")
    starts = [0.0, 0.1, 0.2, 0.3, 0.4, 0.5]
    ends = [0.1, 0.2, 0.3, 0.4, 0.5, 0.6]

    timings = words_from_character_alignment(chars, starts, ends)

    assert [(t.word, t.start_ms, t.end_ms) for t in timings] == [
        ("Hi", 0, 200),
        ("you", 300, 600),
    ]


def test_words_from_word_alignment_skips_blanks() -> None:
    timings = words_from_word_alignment(
        ["Well", " ", "done"], [0.0, 0.25, 0.3], [0.25, 0.3, 0.7]
    )

    assert [(t.word, t.start_ms, t.end_ms) for t in timings] == [
        ("Well", 0, 250),
        ("done", 300, 700),
    ]
