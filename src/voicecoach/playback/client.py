"""Consume the chat event stream and drive the playback queue."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, Callable, Optional

import httpx
from pydantic import ValidationError

from ..services.tts.types import AudioChunk, WordTiming
from ..sse import iter_events
from .queue import StreamingAudioQueue

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]
CompleteCallback = Callable[[str, bool, bool], None]
ErrorCallback = Callable[[str], None]


class StreamingTTSClient:
    """Streams one chat turn at a time, feeding audio chunks to ``queue``.

    ``on_complete`` receives ``(full_text, session_complete, used_streaming_tts)``.
    When ``used_streaming_tts`` is false the caller can fall back to
    ``POST /api/voice/synthesize`` with the full text.
    """

    def __init__(
        self,
        queue: StreamingAudioQueue,
        *,
        server_url: str = "http://localhost:8000",
        http_client: Optional[httpx.AsyncClient] = None,
        on_text_update: Optional[TextCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.queue = queue
        self.server_url = server_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = http_client is None
        self.on_text_update = on_text_update
        self.on_complete = on_complete
        self.on_error = on_error

        self.full_text = ""
        self.conversation_id: Optional[str] = None
        self.error: Optional[str] = None
        self.is_streaming = False

    # -- queue passthroughs --

    @property
    def all_word_timings(self) -> list[WordTiming]:
        return self.queue.all_word_timings

    @property
    def tts_text(self) -> str:
        return self.queue.tts_text

    def current_word_index(self) -> int:
        return self.queue.current_word_index()

    async def pause(self) -> None:
        await self.queue.pause()

    async def resume(self) -> None:
        await self.queue.resume()

    async def stop(self, trigger_complete: bool = False) -> None:
        self.is_streaming = False
        await self.queue.stop(trigger_complete)
        self.full_text = ""
        self.conversation_id = None
        self.error = None

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # -- streaming --

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=None)
        return self._http_client

    async def send(
        self,
        messages: list[dict[str, str]],
        *,
        model: Optional[str] = None,
        voice: Optional[str] = None,
    ) -> None:
        """POST ``messages`` to ``/api/chat`` and process the streamed reply."""

        payload: dict[str, Any] = {"messages": messages, "stream": True}
        if self.conversation_id:
            payload["conversationId"] = self.conversation_id
        if model:
            payload["model"] = model
        if voice:
            payload["voice"] = voice

        client = self._get_client()
        try:
            async with client.stream(
                "POST",
                f"{self.server_url}/api/chat",
                json=payload,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    self._report_error(
                        f"Error {response.status_code}: {body.decode(errors='replace')}"
                    )
                    return
                await self.process_stream(response.aiter_lines())
        except httpx.HTTPError as exc:
            self._report_error(f"Connection failed: {exc}")

    async def process_stream(self, lines: AsyncIterable[str]) -> None:
        """Handle one turn's worth of event-stream lines."""

        # Timings from the previous turn must not leak into this one.
        self.queue.reset_playback_state()
        self.is_streaming = True
        self.full_text = ""
        self.error = None

        await self.queue.initialize()

        try:
            async for event in iter_events(lines):
                if not event.data:
                    continue
                try:
                    data = json.loads(event.data)
                except json.JSONDecodeError:
                    logger.error("Failed to parse stream event: %s", event.data)
                    continue
                if isinstance(data, dict):
                    await self.handle_event(data)
        except httpx.HTTPError as exc:
            self._report_error(f"Stream processing failed: {exc}")
        finally:
            self.is_streaming = False

    async def handle_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")

        if event_type == "token":
            self._append_token(event.get("token"))
            if event.get("conversationId"):
                self.conversation_id = event["conversationId"]
        elif event_type == "audio_chunk":
            raw_chunk = event.get("chunk")
            if raw_chunk:
                try:
                    chunk = AudioChunk.model_validate(raw_chunk)
                except ValidationError as exc:
                    logger.warning("Ignoring malformed audio chunk: %s", exc)
                    return
                await self.queue.enqueue_chunk(chunk)
        elif event_type == "done":
            if event.get("conversationId"):
                self.conversation_id = event["conversationId"]
            self._finish(event)
        elif event_type == "error":
            self._report_error(event.get("error") or "Unknown error")
        else:
            # Untyped payloads from older servers
            if event.get("token"):
                self._append_token(event["token"])
            if event.get("done"):
                self._finish(event)
            if event.get("error"):
                self._report_error(event["error"])

    def _append_token(self, token: Optional[str]) -> None:
        if not token:
            return
        self.full_text += token
        if self.on_text_update is not None:
            self.on_text_update(self.full_text)

    def _finish(self, event: dict[str, Any]) -> None:
        if self.on_complete is not None:
            self.on_complete(
                self.full_text,
                bool(event.get("sessionComplete", False)),
                bool(event.get("streamingTTS", False)),
            )

    def _report_error(self, message: str) -> None:
        self.error = message
        logger.warning("Stream error: %s", message)
        if self.on_error is not None:
            self.on_error(message)


__all__ = ["StreamingTTSClient"]
