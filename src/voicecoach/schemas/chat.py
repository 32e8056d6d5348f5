"""Pydantic models for chat requests and responses."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChatRequest(BaseModel):
    """Incoming chat request payload."""

    messages: List[ChatMessage] = Field(min_length=1)
    conversation_id: Optional[str] = Field(
        default=None,
        validation_alias="conversationId",
        serialization_alias="conversationId",
    )
    model: Optional[str] = None
    stream: bool = True
    tts: Optional[bool] = Field(
        default=None,
        description="Override the server's streaming TTS setting for this request.",
    )
    voice: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def llm_messages(self) -> List[Dict[str, Any]]:
        return [message.model_dump() for message in self.messages]

    def latest_user_message(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return None


class ChatResponse(BaseModel):
    """Non-streaming chat response."""

    content: str
    model: str
    conversation_id: str = Field(serialization_alias="conversationId")
    session_complete: bool = Field(
        default=False, serialization_alias="sessionComplete"
    )

    model_config = ConfigDict(populate_by_name=True)
