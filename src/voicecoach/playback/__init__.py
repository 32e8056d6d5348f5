"""Client-side playback of streamed TTS audio chunks."""

from .client import StreamingTTSClient
from .context import (
    AudioBuffer,
    AudioBufferSourceNode,
    AudioContext,
    AudioDecodeError,
    SoundDeviceAudioContext,
)
from .gesture import AudioUnlocker, GestureTarget
from .queue import StreamingAudioQueue

__all__ = [
    "AudioBuffer",
    "AudioBufferSourceNode",
    "AudioContext",
    "AudioDecodeError",
    "AudioUnlocker",
    "GestureTarget",
    "SoundDeviceAudioContext",
    "StreamingAudioQueue",
    "StreamingTTSClient",
]
