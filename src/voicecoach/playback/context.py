"""
Audio output clock and scheduled buffer sources.

``AudioContext`` is the small surface the playback queue needs: a clock that
only advances while the context is running, buffer decoding, and source
nodes that start at an absolute clock time and report when they end.

``SoundDeviceAudioContext`` implements it on top of a ``sounddevice``
output stream. The stream callback mixes every scheduled source whose frame
range overlaps the current block, so sources placed back to back on the
clock play gaplessly.
"""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Literal, Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

logger = logging.getLogger(__name__)

ContextState = Literal["running", "suspended", "closed"]


class AudioDecodeError(Exception):
    """Raised when chunk audio cannot be decoded."""


@dataclass
class AudioBuffer:
    """Decoded mono float32 samples."""

    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        """Length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate


class AudioBufferSourceNode(ABC):
    """One buffer scheduled for playback."""

    def __init__(self, buffer: AudioBuffer):
        self.buffer = buffer
        self.on_ended: Optional[Callable[[], None]] = None

    @abstractmethod
    def start(self, when: float = 0.0) -> None:
        """Begin playback at ``when`` seconds on the context clock."""

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    def _fire_ended(self) -> None:
        callback = self.on_ended
        if callback is not None:
            callback()


class AudioContext(ABC):
    @property
    @abstractmethod
    def state(self) -> ContextState: ...

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Seconds of audio rendered since creation."""

    @abstractmethod
    async def resume(self) -> None: ...

    @abstractmethod
    async def suspend(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def decode_audio_data(self, data: bytes) -> AudioBuffer: ...

    @abstractmethod
    def create_buffer_source(self, buffer: AudioBuffer) -> AudioBufferSourceNode: ...


def decode_audio_bytes(data: bytes, target_rate: int) -> AudioBuffer:
    """Decode a WAV/MP3/OGG payload to mono float32 at ``target_rate``."""

    if not data:
        raise AudioDecodeError("empty audio payload")
    try:
        samples, rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (sf.SoundFileError, RuntimeError, ValueError) as exc:
        raise AudioDecodeError(str(exc)) from exc

    mono = samples.mean(axis=1).astype(np.float32)
    if rate != target_rate and len(mono) > 1:
        length = max(1, round(len(mono) * target_rate / rate))
        positions = np.linspace(0, len(mono) - 1, num=length)
        mono = np.interp(positions, np.arange(len(mono)), mono).astype(np.float32)
    return AudioBuffer(samples=mono, sample_rate=target_rate)


class _SoundDeviceSource(AudioBufferSourceNode):
    def __init__(self, context: "SoundDeviceAudioContext", buffer: AudioBuffer):
        super().__init__(buffer)
        self._context = context
        self._started = False

    def start(self, when: float = 0.0) -> None:
        if self._started:
            raise RuntimeError("source already started")
        self._started = True
        self._context._schedule(self, when)

    def stop(self) -> None:
        if self._context._unschedule(self):
            self._fire_ended()

    def disconnect(self) -> None:
        self._context._unschedule(self)


@dataclass
class _Scheduled:
    node: _SoundDeviceSource
    start_frame: int
    position: int = 0


class SoundDeviceAudioContext(AudioContext):
    """Mixing audio context backed by ``sounddevice.OutputStream``.

    The frame counter only advances inside the stream callback, so the clock
    stands still while the context is suspended.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        *,
        blocksize: int = 1024,
        device: Optional[int | str] = None,
        start_suspended: bool = False,
    ):
        self.sample_rate = sample_rate
        self._loop = asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._scheduled: list[_Scheduled] = []
        self._frames_rendered = 0
        self._state: ContextState = "suspended"
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=1,
            dtype="float32",
            blocksize=blocksize,
            device=device,
            callback=self._callback,
        )
        if not start_suspended:
            self._stream.start()
            self._state = "running"

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate

    async def resume(self) -> None:
        if self._state == "closed":
            raise RuntimeError("cannot resume a closed AudioContext")
        if self._state == "suspended":
            await asyncio.to_thread(self._stream.start)
            self._state = "running"

    async def suspend(self) -> None:
        if self._state == "running":
            await asyncio.to_thread(self._stream.stop)
            self._state = "suspended"

    async def close(self) -> None:
        if self._state == "closed":
            return
        self._state = "closed"
        with self._lock:
            self._scheduled.clear()
        await asyncio.to_thread(self._stream.close)

    async def decode_audio_data(self, data: bytes) -> AudioBuffer:
        return await asyncio.to_thread(decode_audio_bytes, data, self.sample_rate)

    def create_buffer_source(self, buffer: AudioBuffer) -> AudioBufferSourceNode:
        if buffer.sample_rate != self.sample_rate:
            raise ValueError("buffer sample rate does not match the context")
        return _SoundDeviceSource(self, buffer)

    def _schedule(self, node: _SoundDeviceSource, when: float) -> None:
        with self._lock:
            start_frame = max(round(when * self.sample_rate), self._frames_rendered)
            self._scheduled.append(_Scheduled(node=node, start_frame=start_frame))

    def _unschedule(self, node: _SoundDeviceSource) -> bool:
        with self._lock:
            for entry in self._scheduled:
                if entry.node is node:
                    self._scheduled.remove(entry)
                    return True
        return False

    # -- sounddevice audio-thread callback --

    def _callback(self, outdata: np.ndarray, frames: int, _time, status) -> None:
        if status:
            logger.warning("Playback status: %s", status)
        outdata.fill(0.0)
        finished: list[_SoundDeviceSource] = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for entry in list(self._scheduled):
                samples = entry.node.buffer.samples
                begin = max(block_start, entry.start_frame + entry.position)
                if begin >= block_end:
                    continue
                take = min(block_end - begin, len(samples) - entry.position)
                if take > 0:
                    out_at = begin - block_start
                    outdata[out_at : out_at + take, 0] += samples[
                        entry.position : entry.position + take
                    ]
                    entry.position += take
                if entry.position >= len(samples):
                    self._scheduled.remove(entry)
                    finished.append(entry.node)
            self._frames_rendered = block_end

        np.clip(outdata, -1.0, 1.0, out=outdata)
        for node in finished:
            self._loop.call_soon_threadsafe(node._fire_ended)


__all__ = [
    "AudioBuffer",
    "AudioBufferSourceNode",
    "AudioContext",
    "AudioDecodeError",
    "ContextState",
    "SoundDeviceAudioContext",
    "decode_audio_bytes",
]
