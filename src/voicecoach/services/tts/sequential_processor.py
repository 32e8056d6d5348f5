"""
Sequential TTS Processor for Ordered Audio Streaming.

Synthesis latency varies per sentence, yet audio must reach the client in
the same order as the text. Each enqueued sentence becomes a task that first
waits for the task before it, so chunk N is always emitted before chunk N+1
regardless of which vendor call would have finished first.

Architecture:
    SentenceDetector → enqueue_sentence() → [task 0] → [task 1] → ... → on_chunk

Usage:
    processor = SequentialTTSProcessor(provider, on_chunk=queue.put_nowait)

    for sentence in detector.add_token(token):
        processor.enqueue_sentence(sentence, is_last=False)

    final = detector.flush()
    if final:
        processor.enqueue_sentence(final, is_last=True)
    elif processor.get_enqueued_count():
        await processor.send_completion_marker()

    await processor.flush()
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, Union

from .providers.base import TTSProvider
from .sanitize import sanitize_for_tts
from .types import AudioChunk, SynthesisUnit, TTSStreamChunk
from .wav_utils import normalize_wav_timing

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[AudioChunk], Union[None, Awaitable[None]]]


class SequentialTTSProcessor:
    """
    Serializes synthesis and emission of sentence audio.

    One instance serves one streaming response. Per-chunk failures are logged
    and skipped; later sentences still play.

    Attributes:
        provider: TTS provider used for every sentence
    """

    def __init__(
        self,
        provider: TTSProvider,
        on_chunk: ChunkCallback,
        *,
        voice: Optional[str] = None,
    ):
        """
        Initialize the processor.

        Args:
            provider: Provider performing the synthesis
            on_chunk: Called once per emitted chunk, in order. May be a plain
                      function or a coroutine function.
            voice: Optional voice override passed to the provider
        """
        self.provider = provider
        self._on_chunk = on_chunk
        self._voice = voice

        self._tail: Optional[asyncio.Task[None]] = None
        self._next_chunk_index = 0
        self._enqueued = 0
        self._sent = 0
        self._cumulative_offset_ms = 0
        self._completion_sent = False
        self._aborted = False
        self._started_at = time.monotonic()
        self._first_chunk_logged = False

    def enqueue_sentence(self, text: str, is_last: bool = False) -> None:
        """
        Append a sentence to the synthesis chain.

        Must be called from inside a running event loop. A sentence that
        sanitizes to nothing is dropped, unless it is the last one, in which
        case it still travels the chain so the completion marker goes out.

        Args:
            text: Sentence as shown to the user
            is_last: Whether no further sentences will follow
        """
        if self._aborted:
            logger.warning("Skipping sentence after abort: %s", text[:50])
            return

        sanitized = sanitize_for_tts(text)
        if not sanitized and not is_last:
            logger.debug("Skipping sentence with no speakable text: %r", text[:50])
            return

        unit = SynthesisUnit(
            sequence=self._enqueued,
            text=text.strip(),
            sanitized_text=sanitized,
            is_last=is_last,
        )
        self._enqueued += 1

        # Whole-sentence chunks take their index now, in enqueue order
        index: Optional[int] = None
        if sanitized and not self.provider.supports_streaming:
            index = self._next_chunk_index
            self._next_chunk_index += 1

        previous = self._tail
        self._tail = asyncio.ensure_future(self._run_after(previous, unit, index))

    async def flush(self) -> None:
        """Wait until every enqueued sentence has been emitted or dropped."""
        while self._tail is not None:
            tail = self._tail
            await asyncio.wait({tail})
            if tail is self._tail:
                break

    async def send_completion_marker(self) -> None:
        """Emit the terminal marker once the chain drains.

        Used when every sentence went in with ``is_last=False``. Does nothing
        if a chunk flagged ``isLast`` was already emitted.
        """
        await self.flush()
        if not self._completion_sent:
            await self._emit_completion_marker()

    def get_enqueued_count(self) -> int:
        return self._enqueued

    def get_sent_count(self) -> int:
        """Number of chunks emitted with real audio (markers excluded)."""
        return self._sent

    def get_cumulative_offset(self) -> int:
        return self._cumulative_offset_ms

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        """Stop accepting sentences. Queued sentences not yet started are skipped."""
        if not self._aborted:
            logger.info(
                "TTS processor aborted after %d enqueued sentences", self._enqueued
            )
        self._aborted = True

    async def _run_after(
        self,
        previous: Optional[asyncio.Task[None]],
        unit: SynthesisUnit,
        index: Optional[int],
    ) -> None:
        if previous is not None:
            # asyncio.wait never re-raises the previous task's outcome
            await asyncio.wait({previous})

        if self._aborted:
            logger.info("Dropping sentence %d: processor aborted", unit.sequence)
            return

        if unit.sanitized_text:
            try:
                if index is None:
                    await self._synthesize_streaming(unit)
                else:
                    await self._synthesize_whole(unit, index)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to synthesize sentence %d (%r): %s",
                    unit.sequence,
                    unit.sanitized_text[:40],
                    exc,
                )
        else:
            logger.info(
                "Sentence %d has no speakable text after sanitization: %r",
                unit.sequence,
                unit.text[:40],
            )

        if unit.is_last and not self._completion_sent:
            await self._emit_completion_marker()

    async def _synthesize_whole(self, unit: SynthesisUnit, index: int) -> None:
        logger.info(
            "Synthesizing chunk %d (%d chars): %s",
            index,
            len(unit.sanitized_text),
            unit.sanitized_text[:40],
        )
        result = await self.provider.synthesize(unit.sanitized_text, self._voice)
        result = normalize_wav_timing(result)

        chunk = AudioChunk(
            chunk_index=index,
            audio_base64=base64.b64encode(result.audio).decode("ascii"),
            content_type=result.content_type,
            word_timings=result.word_timings,
            cumulative_offset_ms=self._cumulative_offset_ms,
            duration_ms=result.estimated_duration_ms,
            is_last=unit.is_last,
            text=unit.sanitized_text,
        )
        self._cumulative_offset_ms += result.estimated_duration_ms
        await self._emit(chunk)

    async def _synthesize_streaming(self, unit: SynthesisUnit) -> None:
        logger.info(
            "Streaming synthesis for sentence %d (%d chars): %s",
            unit.sequence,
            len(unit.sanitized_text),
            unit.sanitized_text[:40],
        )
        first = True
        part: TTSStreamChunk
        async for part in self.provider.synthesize_stream(
            unit.sanitized_text, self._voice
        ):
            index = self._next_chunk_index
            self._next_chunk_index += 1

            chunk = AudioChunk(
                chunk_index=index,
                audio_base64=base64.b64encode(part.audio).decode("ascii"),
                content_type=part.content_type,
                word_timings=part.word_timings,
                cumulative_offset_ms=self._cumulative_offset_ms,
                duration_ms=part.duration_ms,
                is_last=False,
                # Text was already shown via tokens; only the first slice carries it
                text=unit.sanitized_text if first else "",
            )
            self._cumulative_offset_ms += part.duration_ms
            first = False
            await self._emit(chunk)

    async def _emit_completion_marker(self) -> None:
        index = self._next_chunk_index
        self._next_chunk_index += 1
        logger.info(
            "Emitting completion marker %d (cumulative: %dms)",
            index,
            self._cumulative_offset_ms,
        )
        await self._emit(
            AudioChunk(
                chunk_index=index,
                audio_base64="",
                content_type="audio/wav",
                word_timings=[],
                cumulative_offset_ms=self._cumulative_offset_ms,
                duration_ms=0,
                is_last=True,
                text="",
            )
        )

    async def _emit(self, chunk: AudioChunk) -> None:
        if chunk.audio_base64 and not self._first_chunk_logged:
            elapsed = (time.monotonic() - self._started_at) * 1000
            logger.info(f"🎵 First audio chunk in {elapsed:.0f}ms")
            self._first_chunk_logged = True

        logger.debug(
            "Emitting chunk %d (duration: %dms, offset: %dms, last: %s)",
            chunk.chunk_index,
            chunk.duration_ms,
            chunk.cumulative_offset_ms,
            chunk.is_last,
        )
        outcome = self._on_chunk(chunk)
        if inspect.isawaitable(outcome):
            await outcome

        if chunk.is_last:
            self._completion_sent = True
        if chunk.audio_base64:
            self._sent += 1


__all__ = ["ChunkCallback", "SequentialTTSProcessor"]
