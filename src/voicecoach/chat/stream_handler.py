"""Conversation streaming with sentence-level speech."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, AsyncGenerator, AsyncIterator, Optional, Protocol, Sequence

from ..llm import LLMError
from ..repository import ConversationRepository
from ..schemas.chat import ChatRequest, ChatResponse
from ..services.detection_tracker import MomentDetector, SessionDetectionTracker
from ..services.tts.providers.base import TTSProvider
from ..services.tts.sanitize import is_session_complete
from ..services.tts.sentence_detector import SentenceDetector
from ..services.tts.sequential_processor import SequentialTTSProcessor
from ..services.tts.types import AudioChunk
from .events import (
    ChatEvent,
    audio_chunk_event,
    done_event,
    error_event,
    token_event,
)

logger = logging.getLogger(__name__)


class TokenSource(Protocol):
    """Anything that can stream assistant text for a message list."""

    def stream_tokens(
        self, messages: Sequence[dict[str, Any]], *, model: Optional[str] = None
    ) -> AsyncIterator[str]: ...

    async def complete(
        self, messages: Sequence[dict[str, Any]], *, model: Optional[str] = None
    ) -> dict[str, Any]: ...


class ChatStreamHandler:
    """
    Multiplex LLM tokens and TTS audio chunks into one event stream.

    Tokens are forwarded as soon as they arrive. In parallel, completed
    sentences are fed to a ``SequentialTTSProcessor`` whose chunks join the
    same stream. Text delivery never waits on speech: a failing TTS vendor
    only costs audio.
    """

    def __init__(
        self,
        client: TokenSource,
        repository: Optional[ConversationRepository] = None,
        *,
        tts_provider: Optional[TTSProvider] = None,
        streaming_tts_enabled: bool = True,
        detection_tracker: Optional[SessionDetectionTracker] = None,
        moment_detector: Optional[MomentDetector] = None,
    ) -> None:
        self._client = client
        self._repo = repository
        self._tts_provider = tts_provider
        self._streaming_tts_enabled = streaming_tts_enabled
        self._tracker = detection_tracker
        self._moment_detector = moment_detector
        self._background: set[asyncio.Task[None]] = set()

    def uses_streaming_tts(self, request: ChatRequest) -> bool:
        if self._tts_provider is None:
            return False
        if request.tts is not None:
            return request.tts
        return self._streaming_tts_enabled

    async def stream_conversation(
        self, request: ChatRequest
    ) -> AsyncGenerator[ChatEvent, None]:
        """Yield chat events until the ``done`` or ``error`` event."""

        conversation_id = await self._prepare_conversation(request)
        queue: asyncio.Queue[Optional[ChatEvent]] = asyncio.Queue()
        producer = asyncio.create_task(
            self._produce(request, conversation_id, queue),
            name=f"chat-stream-{conversation_id}",
        )

        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            await producer
        finally:
            if not producer.done():
                logger.info("Client went away; cancelling stream %s", conversation_id)
                producer.cancel()
                with suppress(asyncio.CancelledError):
                    await producer

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Run a non-streaming turn and persist it."""

        conversation_id = await self._prepare_conversation(request)
        result = await self._client.complete(
            request.llm_messages(), model=request.model
        )
        content = result["content"]
        session_complete = is_session_complete(content)
        await self._finish_turn(conversation_id, content, session_complete)
        return ChatResponse(
            content=content,
            model=result["model"],
            conversation_id=conversation_id,
            session_complete=session_complete,
        )

    async def _prepare_conversation(self, request: ChatRequest) -> str:
        conversation_id = request.conversation_id
        if self._repo is not None:
            if conversation_id:
                await self._repo.ensure_conversation(conversation_id)
            else:
                conversation_id = await self._repo.create_conversation()
        elif not conversation_id:
            raise ValueError("conversation_id is required without a repository")

        user_message = request.latest_user_message()
        if user_message is not None:
            if self._repo is not None:
                await self._repo.add_message(conversation_id, "user", user_message)
            self._maybe_detect_moment(conversation_id, user_message)
        return conversation_id

    async def _produce(
        self,
        request: ChatRequest,
        conversation_id: str,
        queue: asyncio.Queue[Optional[ChatEvent]],
    ) -> None:
        processor: Optional[SequentialTTSProcessor] = None
        if self.uses_streaming_tts(request):
            assert self._tts_provider is not None

            def _on_chunk(chunk: AudioChunk) -> None:
                queue.put_nowait(audio_chunk_event(chunk))

            processor = SequentialTTSProcessor(
                self._tts_provider, _on_chunk, voice=request.voice
            )

        detector = SentenceDetector()
        parts: list[str] = []

        try:
            try:
                async for token in self._client.stream_tokens(
                    request.llm_messages(), model=request.model
                ):
                    parts.append(token)
                    await queue.put(token_event(token, conversation_id))
                    if processor is not None:
                        for sentence in detector.add_token(token):
                            processor.enqueue_sentence(sentence, is_last=False)
            except LLMError as exc:
                logger.error(
                    "LLM stream failed for %s: %s %s",
                    conversation_id,
                    exc.status_code,
                    exc.detail,
                )
                detail = exc.detail if isinstance(exc.detail, str) else str(exc)
                await queue.put(
                    error_event(
                        detail,
                        conversation_id,
                        status=exc.status_code,
                        status_text=exc.status_text,
                    )
                )
                if processor is not None:
                    processor.abort()
                    await processor.flush()
                return

            full_text = "".join(parts)
            session_complete = is_session_complete(full_text)

            if processor is not None:
                final = detector.flush()
                if final:
                    processor.enqueue_sentence(final, is_last=True)
                elif processor.get_enqueued_count() > 0:
                    await processor.send_completion_marker()
                await processor.flush()

            streaming_tts = processor is not None and processor.get_sent_count() > 0
            if processor is not None and not streaming_tts:
                logger.warning(
                    "No audio sent for %s (%d sentences enqueued)",
                    conversation_id,
                    processor.get_enqueued_count(),
                )

            await self._finish_turn(conversation_id, full_text, session_complete)
            await queue.put(
                done_event(
                    conversation_id,
                    session_complete=session_complete,
                    streaming_tts=streaming_tts,
                )
            )
        except asyncio.CancelledError:
            if processor is not None:
                processor.abort()
            raise
        finally:
            queue.put_nowait(None)

    async def _finish_turn(
        self, conversation_id: str, content: str, session_complete: bool
    ) -> None:
        if self._repo is not None and content:
            await self._repo.add_message(
                conversation_id,
                "assistant",
                content,
                metadata={"session_complete": True} if session_complete else None,
            )
        if session_complete:
            logger.info("Session complete for conversation %s", conversation_id)
            if self._repo is not None:
                await self._repo.mark_completed(conversation_id)
            if self._tracker is not None:
                self._tracker.reset_count(conversation_id)

    def _maybe_detect_moment(self, conversation_id: str, message: str) -> None:
        if self._moment_detector is None or self._tracker is None:
            return
        if not self._tracker.try_acquire(conversation_id, message):
            return

        task = asyncio.create_task(
            self._run_detection(self._moment_detector, conversation_id, message)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _run_detection(
        detector: MomentDetector, conversation_id: str, message: str
    ) -> None:
        try:
            await detector(conversation_id, message)
        except Exception as exc:
            # Detection failures never reach the chat turn
            logger.warning("Moment detection failed for %s: %s", conversation_id, exc)


__all__ = ["ChatStreamHandler", "TokenSource"]
