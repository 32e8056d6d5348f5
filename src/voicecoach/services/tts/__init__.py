"""
TTS (Text-to-Speech) Services Package.

This package contains modules for streaming TTS processing:

- sentence_detector: Splits streaming LLM text into whole sentences
- sanitize: Removes markup and system tokens before synthesis
- providers: One adapter per vendor behind a common interface
- sequential_processor: Ordered synthesis with cumulative audio offsets
- wav_utils / timing: Word timing estimation and normalization

Architecture Overview:

    ┌─────────────┐     ┌──────────────────┐     ┌─────────────────────────┐
    │ LLM Stream  │────▶│ SentenceDetector │────▶│ SequentialTTSProcessor  │
    └─────────────┘     └──────────────────┘     └─────────────────────────┘
                                                              │
                                                              ▼
                                                      ┌───────────────┐
                                                      │  TTSProvider  │
                                                      └───────────────┘
                                                              │
                                                              ▼
                                                      ┌───────────────┐
                                                      │  SSE events   │
                                                      │ (audio_chunk) │
                                                      └───────────────┘

Ordering guarantees:
1. Sentences are emitted by the detector in source order
2. The processor emits chunk N strictly before chunk N+1, whatever the
   synthesis latency of each
3. Every chunk carries cumulativeOffsetMs, the summed duration of all chunks
   before it, so clients can place audio on one timeline
"""

from .factory import create_tts_provider
from .providers import TTSConfigurationError, TTSProvider, TTSProviderError
from .sanitize import find_system_tokens, sanitize_for_tts
from .sentence_detector import SentenceDetector
from .sequential_processor import SequentialTTSProcessor
from .types import AudioChunk, TTSResult, TTSStreamChunk, WordTiming

__all__ = [
    "AudioChunk",
    "SentenceDetector",
    "SequentialTTSProcessor",
    "TTSConfigurationError",
    "TTSProvider",
    "TTSProviderError",
    "TTSResult",
    "TTSStreamChunk",
    "WordTiming",
    "create_tts_provider",
    "find_system_tokens",
    "sanitize_for_tts",
]
