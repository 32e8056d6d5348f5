"""Per-conversation rate limiting for moment detection."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

MIN_WORD_COUNT = 20
MAX_DETECTIONS_PER_SESSION = 20

# (conversation_id, user_message) -> None
MomentDetector = Callable[[str, str], Awaitable[None]]


def should_attempt_detection(message: str, min_words: int = MIN_WORD_COUNT) -> bool:
    """Only messages with enough words are worth a detection call."""

    return len(message.split()) >= min_words


class SessionDetectionTracker:
    """Count detection calls per conversation.

    One instance lives on ``app.state`` for the process lifetime; tests build
    their own.
    """

    def __init__(self, max_per_session: int = MAX_DETECTIONS_PER_SESSION):
        self.max_per_session = max_per_session
        self._counts: dict[str, int] = {}

    def can_detect(self, conversation_id: str) -> bool:
        return self._counts.get(conversation_id, 0) < self.max_per_session

    def increment_count(self, conversation_id: str) -> None:
        self._counts[conversation_id] = self._counts.get(conversation_id, 0) + 1

    def get_count(self, conversation_id: str) -> int:
        return self._counts.get(conversation_id, 0)

    def reset_count(self, conversation_id: str) -> None:
        """Forget a conversation, typically once its session has ended."""
        self._counts.pop(conversation_id, None)

    def try_acquire(self, conversation_id: str, message: str) -> bool:
        """Check both gates and count the attempt when it is allowed."""

        if not should_attempt_detection(message):
            return False
        if not self.can_detect(conversation_id):
            logger.debug(
                "Detection limit reached for conversation %s (%d)",
                conversation_id,
                self.max_per_session,
            )
            return False
        self.increment_count(conversation_id)
        return True


__all__ = [
    "MAX_DETECTIONS_PER_SESSION",
    "MIN_WORD_COUNT",
    "MomentDetector",
    "SessionDetectionTracker",
    "should_attempt_detection",
]
