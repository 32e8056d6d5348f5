"""Chat streaming package."""

from .events import (
    ChatEvent,
    audio_chunk_event,
    done_event,
    error_event,
    to_sse,
    token_event,
)
from .stream_handler import ChatStreamHandler, TokenSource

__all__ = [
    "ChatEvent",
    "ChatStreamHandler",
    "TokenSource",
    "audio_chunk_event",
    "done_event",
    "error_event",
    "to_sse",
    "token_event",
]
