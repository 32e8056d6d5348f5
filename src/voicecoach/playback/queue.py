"""
Gapless playback of streamed audio chunks.

Chunks are placed on the audio clock by their ``cumulative_offset_ms``
rather than by arrival order or chunk index:

    timeline origin ──┬── chunk 0 ──┬── chunk 1 ──┬── chunk 2 ──┐
                      0ms           d0            d0+d1

The first chunk to arrive fixes the origin at the current clock time, even
when it is not chunk 0, so earlier audio still has room in front of it.
Each chunk then starts at the latest of its slot (origin + offset), the end
of any scheduled audio with a smaller offset, and now. An index that never
arrives (failed synthesis) costs silence only. A late chunk that no longer
fits in front of audio already scheduled after it is appended at the end
rather than played on top of it.

Word timings from every chunk are shifted by the chunk offset and merged
into one timeline. Each word also records the clock time its chunk really
started, so highlighting follows the audio when a chunk was pushed back.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import bisect
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..services.tts.types import AudioChunk, WordTiming
from .context import (
    AudioBuffer,
    AudioBufferSourceNode,
    AudioContext,
    AudioDecodeError,
    SoundDeviceAudioContext,
)
from .gesture import AudioUnlocker, GestureTarget

logger = logging.getLogger(__name__)

ContextFactory = Callable[[], AudioContext]

# Clock comparisons tolerate float rounding between offsets and sample counts
_EPSILON = 1e-6


@dataclass
class _ScheduledChunk:
    chunk_index: int
    node: AudioBufferSourceNode
    start_time: float
    is_last: bool


@dataclass
class _Span:
    """Clock interval claimed by one chunk, audible or reserved silence."""

    offset_ms: int
    start: float
    end: float


class StreamingAudioQueue:
    """Schedules :class:`AudioChunk` payloads onto one audio context.

    The context is created lazily by :meth:`initialize` and lives until
    :meth:`stop`. :meth:`reset_playback_state` clears everything between
    conversational turns while keeping the context open.
    """

    def __init__(
        self,
        *,
        context_factory: Optional[ContextFactory] = None,
        gesture_target: Optional[GestureTarget] = None,
        on_playback_start: Optional[Callable[[], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ):
        self._context_factory = context_factory or SoundDeviceAudioContext
        self._gesture_target = gesture_target or GestureTarget()
        self._on_playback_start = on_playback_start
        self._on_complete = on_complete

        self._context: Optional[AudioContext] = None
        self._unlocker: Optional[AudioUnlocker] = None
        self._resume_tasks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()
        self._clear_state()

    # -- public state --

    @property
    def context(self) -> Optional[AudioContext]:
        return self._context

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def all_word_timings(self) -> List[WordTiming]:
        return list(self._word_timings)

    @property
    def tts_words(self) -> List[str]:
        return [timing.word for timing in self._word_timings]

    @property
    def tts_text(self) -> str:
        return " ".join(self.tts_words)

    # -- lifecycle --

    async def initialize(self) -> AudioContext:
        """Return the audio context, creating it on first use.

        Never waits for ``resume()``: a context that starts suspended gets a
        background resume attempt plus one-shot gesture listeners.
        """

        if self._context is None or self._context.state == "closed":
            self._context = self._context_factory()
            self._unlocker = AudioUnlocker(self._gesture_target, self._context)
            logger.debug("Created audio context (%s)", self._context.state)

        if self._context.state == "suspended":
            self._start_resume_attempt(self._context)
            if self._unlocker is not None:
                self._unlocker.register()

        return self._context

    def reset_playback_state(self) -> None:
        """Stop queued audio and forget timings; keep the context open."""

        self._release_nodes()
        self._clear_state()

    async def stop(self, trigger_complete: bool = False) -> None:
        """Tear down playback entirely, closing the audio context.

        ``on_complete`` fires only when ``trigger_complete`` is set and audio
        was playing.
        """

        was_playing = self._is_playing
        self._release_nodes()
        for task in list(self._resume_tasks):
            task.cancel()
        self._resume_tasks.clear()
        if self._unlocker is not None:
            self._unlocker.unregister()
            self._unlocker = None

        context, self._context = self._context, None
        if context is not None and context.state != "closed":
            await context.close()

        self._clear_state()
        if trigger_complete and was_playing and self._on_complete is not None:
            self._on_complete()

    async def pause(self) -> None:
        if self._context is not None and self._context.state == "running":
            await self._context.suspend()

    async def resume(self) -> None:
        if self._context is not None and self._context.state == "suspended":
            await self._context.resume()

    # -- chunk handling --

    async def enqueue_chunk(self, chunk: AudioChunk) -> None:
        """Decode and schedule ``chunk``.

        Chunks are processed one at a time in call order. Decode failures are
        recorded in :attr:`error` and never raised.
        """

        async with self._lock:
            context = await self.initialize()

            if chunk.is_completion_marker:
                self._handle_completion_marker()
                return

            try:
                buffer = await self._decode(context, chunk)
            except AudioDecodeError as exc:
                self._handle_decode_failure(chunk, exc)
                return

            start = self._schedule(context, chunk, buffer)
            self._merge_word_timings(chunk, start)

    def current_word_index(self) -> int:
        """Index into :attr:`all_word_timings` of the word being spoken, or -1."""

        if self._context is None or not self._word_clock:
            return -1
        now = self._context.current_time + _EPSILON
        # Clock order can differ from timeline order once a chunk was appended late
        current = -1
        latest = None
        for index, started in enumerate(self._word_clock):
            if started <= now and (latest is None or started >= latest):
                current, latest = index, started
        return current

    # -- internals --

    def _clear_state(self) -> None:
        self._active: list[_ScheduledChunk] = []
        self._spans: list[_Span] = []
        self._span_offsets: list[int] = []
        self._word_timings: list[WordTiming] = []
        self._word_offsets: list[int] = []
        self._word_clock: list[float] = []
        self._playback_start_time: Optional[float] = None
        self._scheduled_count = 0
        self._finished_count = 0
        self._pending_completion = False
        self._completed = False
        self._is_playing = False
        self._error: Optional[str] = None

    def _release_nodes(self) -> None:
        active, self._active = self._active, []
        for entry in active:
            entry.node.on_ended = None
            entry.node.stop()
            entry.node.disconnect()

    def _start_resume_attempt(self, context: AudioContext) -> None:
        task = asyncio.get_running_loop().create_task(self._attempt_resume(context))
        self._resume_tasks.add(task)
        task.add_done_callback(self._resume_tasks.discard)

    async def _attempt_resume(self, context: AudioContext) -> None:
        try:
            await context.resume()
        except RuntimeError as exc:
            logger.debug("Background resume failed: %s", exc)

    async def _decode(self, context: AudioContext, chunk: AudioChunk) -> AudioBuffer:
        try:
            data = base64.b64decode(chunk.audio_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AudioDecodeError(f"invalid base64 audio: {exc}") from exc
        return await context.decode_audio_data(data)

    def _place(self, offset_ms: int, duration: float, now: float) -> float:
        """Claim a clock interval of ``duration`` seconds for ``offset_ms``."""

        if self._playback_start_time is None:
            self._playback_start_time = now

        position = bisect.bisect_right(self._span_offsets, offset_ms)
        start = max(self._playback_start_time + offset_ms / 1000, now)
        for span in self._spans[:position]:
            start = max(start, span.end)

        later = self._spans[position:]
        if any(
            span.start < start + duration - _EPSILON and span.end > start + _EPSILON
            for span in later
        ):
            start = max(start, max(span.end for span in self._spans))
            logger.warning(
                "Audio at offset %dms arrived too late for its slot; appending at %.3fs",
                offset_ms,
                start,
            )

        self._spans.insert(position, _Span(offset_ms, start, start + duration))
        self._span_offsets.insert(position, offset_ms)
        return start

    def _schedule(
        self, context: AudioContext, chunk: AudioChunk, buffer: AudioBuffer
    ) -> float:
        start = self._place(
            chunk.cumulative_offset_ms, buffer.duration, context.current_time
        )
        node = context.create_buffer_source(buffer)
        entry = _ScheduledChunk(
            chunk_index=chunk.chunk_index,
            node=node,
            start_time=start,
            is_last=chunk.is_last,
        )
        node.on_ended = lambda: self._handle_ended(entry)
        node.start(start)

        self._active.append(entry)
        self._scheduled_count += 1

        logger.debug(
            "Scheduled chunk %d at %.3fs (%.0fms)",
            chunk.chunk_index,
            start,
            buffer.duration * 1000,
        )

        if not self._is_playing:
            self._is_playing = True
            if self._on_playback_start is not None:
                self._on_playback_start()
        return start

    def _merge_word_timings(self, chunk: AudioChunk, start: float) -> None:
        for timing in chunk.word_timings:
            shifted = timing.shifted(chunk.cumulative_offset_ms)
            position = bisect.bisect_right(self._word_offsets, shifted.start_ms)
            self._word_offsets.insert(position, shifted.start_ms)
            self._word_timings.insert(position, shifted)
            self._word_clock.insert(position, start + timing.start_ms / 1000)

    def _handle_decode_failure(self, chunk: AudioChunk, exc: Exception) -> None:
        self._error = f"Failed to decode audio chunk {chunk.chunk_index}: {exc}"
        if chunk.duration_ms > 0 and self._context is not None:
            # Keep later chunks in their slots by reserving silence.
            self._place(
                chunk.cumulative_offset_ms,
                chunk.duration_ms / 1000,
                self._context.current_time,
            )
            logger.warning(
                "%s; reserving %dms of silence", self._error, chunk.duration_ms
            )
        else:
            logger.warning("%s; dropping chunk", self._error)

        if chunk.is_last:
            self._handle_completion_marker()

    def _handle_completion_marker(self) -> None:
        if self._scheduled_count == 0 or self._finished_count >= self._scheduled_count:
            self._complete()
        else:
            self._pending_completion = True

    def _handle_ended(self, entry: _ScheduledChunk) -> None:
        if entry in self._active:
            self._active.remove(entry)
        self._finished_count += 1
        if entry.is_last or (
            self._pending_completion and self._finished_count >= self._scheduled_count
        ):
            self._complete()

    def _complete(self) -> None:
        if self._completed:
            return
        self._completed = True
        self._pending_completion = False
        self._is_playing = False
        logger.debug("Playback complete after %d chunks", self._scheduled_count)
        if self._on_complete is not None:
            self._on_complete()


__all__ = ["ContextFactory", "StreamingAudioQueue"]
