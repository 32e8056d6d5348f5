"""Text clean-up applied before every synthesis call."""

from __future__ import annotations

import re

# Control tokens the coach may append to a reply
SYSTEM_TOKENS = ("[SESSION_COMPLETE]", "[END]", "[DONE]")

_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    # Markdown links keep their text
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    # System tokens and vocal directions: [SESSION_COMPLETE], [cheerful]
    (re.compile(r"\[[^\]]*\]"), ""),
    (re.compile(r"(\*\*|__)(.*?)\1"), r"\2"),
    (re.compile(r"(\*|_)(.*?)\1"), r"\2"),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^[-*_]{3,}\s*$", re.MULTILINE), ""),
    (re.compile(r"^>\s+", re.MULTILINE), ""),
    (re.compile(r"^[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r" {2,}"), " "),
    (re.compile(r" +$", re.MULTILINE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
)


def sanitize_for_tts(text: str) -> str:
    """Strip markup and bracketed tokens so only speakable text remains.

    >>> sanitize_for_tts("Good job! [SESSION_COMPLETE]")
    'Good job!'
    """

    if not text:
        return ""
    cleaned = text
    for pattern, replacement in _PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


def find_system_tokens(text: str) -> list[str]:
    """Return the known system tokens present in ``text``, in declaration order."""

    return [token for token in SYSTEM_TOKENS if token in text]


def is_session_complete(text: str) -> bool:
    return "[SESSION_COMPLETE]" in text


__all__ = [
    "SYSTEM_TOKENS",
    "find_system_tokens",
    "is_session_complete",
    "sanitize_for_tts",
]
