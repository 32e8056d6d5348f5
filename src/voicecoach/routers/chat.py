"""Chat endpoints streaming tokens and sentence audio over SSE."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ..chat import ChatStreamHandler, error_event, to_sse
from ..llm import LLMError
from ..schemas.chat import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_chat_handler(request: Request) -> ChatStreamHandler:
    return request.app.state.chat_handler


@router.post("/chat", response_model=None, status_code=200)
async def chat(
    payload: ChatRequest,
    handler: ChatStreamHandler = Depends(get_chat_handler),
) -> EventSourceResponse | dict[str, Any]:
    """Stream a coaching reply, or return it whole when ``stream`` is false."""

    if not payload.stream:
        try:
            response = await handler.complete(payload)
        except LLMError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
        return response.model_dump(by_alias=True)

    async def event_publisher():
        try:
            async for event in handler.stream_conversation(payload):
                yield to_sse(event)
        except Exception as exc:  # pragma: no cover
            logger.exception("Chat stream failed")
            yield to_sse(
                error_event(
                    str(exc),
                    payload.conversation_id or "",
                    status=500,
                    status_text="Internal Server Error",
                )
            )

    return EventSourceResponse(event_publisher(), sep="\n")
