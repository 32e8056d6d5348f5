import pathlib
import sys
from typing import Optional

import numpy as np
import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from voicecoach.playback.context import (  # noqa: E402
    AudioBuffer,
    AudioBufferSourceNode,
    AudioContext,
    AudioDecodeError,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeSourceNode(AudioBufferSourceNode):
    def __init__(self, buffer: AudioBuffer):
        super().__init__(buffer)
        self.start_time: Optional[float] = None
        self.stopped = False
        self.disconnected = False

    def start(self, when: float = 0.0) -> None:
        self.start_time = when

    def stop(self) -> None:
        self.stopped = True

    def disconnect(self) -> None:
        self.disconnected = True

    def finish(self) -> None:
        self._fire_ended()


class FakeAudioContext(AudioContext):
    """Manual clock. Payloads of the form ``b"dur:<seconds>"`` decode to silence."""

    def __init__(self, state: str = "running", *, allow_resume: bool = True):
        self._state = state
        self.allow_resume = allow_resume
        self.now = 0.0
        self.resume_calls = 0
        self.close_calls = 0
        self.nodes: list[FakeSourceNode] = []

    @property
    def state(self):
        return self._state

    @property
    def current_time(self) -> float:
        return self.now

    async def resume(self) -> None:
        self.resume_calls += 1
        if not self.allow_resume:
            raise RuntimeError("playback requires a user gesture")
        self._state = "running"

    async def suspend(self) -> None:
        self._state = "suspended"

    async def close(self) -> None:
        self.close_calls += 1
        self._state = "closed"

    async def decode_audio_data(self, data: bytes) -> AudioBuffer:
        if not data.startswith(b"dur:"):
            raise AudioDecodeError("unsupported payload")
        seconds = float(data[4:].decode())
        samples = np.zeros(round(seconds * 1000), dtype=np.float32)
        return AudioBuffer(samples=samples, sample_rate=1000)

    def create_buffer_source(self, buffer: AudioBuffer) -> FakeSourceNode:
        node = FakeSourceNode(buffer)
        self.nodes.append(node)
        return node


class FakeContextFactory:
    def __init__(self, state: str = "running", *, allow_resume: bool = True):
        self.state = state
        self.allow_resume = allow_resume
        self.created: list[FakeAudioContext] = []

    def __call__(self) -> FakeAudioContext:
        context = FakeAudioContext(self.state, allow_resume=self.allow_resume)
        self.created.append(context)
        return context

    @property
    def latest(self) -> FakeAudioContext:
        return self.created[-1]


@pytest.fixture
def context_factory() -> FakeContextFactory:
    return FakeContextFactory()


@pytest.fixture
def suspended_context_factory() -> FakeContextFactory:
    return FakeContextFactory("suspended", allow_resume=False)
