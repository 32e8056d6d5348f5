"""Builders for the events multiplexed on the chat stream.

Every event is a JSON object with a ``type`` discriminant::

    {"type": "token", "token": "...", "conversationId": "..."}
    {"type": "audio_chunk", "chunk": {...AudioChunk...}}
    {"type": "done", "done": true, "conversationId": "...",
     "sessionComplete": false, "streamingTTS": true}
    {"type": "error", "error": "...", "status": 502, "statusText": "...",
     "conversationId": "..."}
"""

from __future__ import annotations

import json
from typing import Any, Optional

from ..services.tts.types import AudioChunk

ChatEvent = dict[str, Any]


def token_event(token: str, conversation_id: str) -> ChatEvent:
    return {"type": "token", "token": token, "conversationId": conversation_id}


def audio_chunk_event(chunk: AudioChunk) -> ChatEvent:
    return {"type": "audio_chunk", "chunk": chunk.to_payload()}


def done_event(
    conversation_id: str, *, session_complete: bool, streaming_tts: bool
) -> ChatEvent:
    return {
        "type": "done",
        "done": True,
        "conversationId": conversation_id,
        "sessionComplete": session_complete,
        "streamingTTS": streaming_tts,
    }


def error_event(
    message: str,
    conversation_id: str,
    *,
    status: Optional[int] = None,
    status_text: Optional[str] = None,
) -> ChatEvent:
    event: ChatEvent = {"type": "error", "error": message}
    if status is not None:
        event["status"] = status
    if status_text is not None:
        event["statusText"] = status_text
    event["conversationId"] = conversation_id
    return event


def to_sse(event: ChatEvent) -> dict[str, str]:
    """Wrap an event for ``EventSourceResponse`` (emitted as ``data: {...}``)."""

    return {"data": json.dumps(event, ensure_ascii=False)}


__all__ = [
    "ChatEvent",
    "audio_chunk_event",
    "done_event",
    "error_event",
    "to_sse",
    "token_event",
]
