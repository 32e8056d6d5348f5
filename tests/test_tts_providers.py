from __future__ import annotations

import base64
import json
import struct
from typing import Callable

import httpx
import pytest

from voicecoach.services.tts.providers import (
    ElevenLabsTTSProvider,
    GroqTTSProvider,
    InworldTTSProvider,
    OpenAITTSProvider,
    TTSProviderError,
)

Handler = Callable[[httpx.Request], httpx.Response]


def mock_client(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_wav(duration_ms: int, sample_rate: int = 24000) -> bytes:
    data = b"\x00" * (sample_rate * duration_ms // 1000 * 2)
    fmt = struct.pack("<HHIIHH", 1, 1, sample_rate, sample_rate * 2, 2, 16)
    body = b"WAVEfmt " + struct.pack("<I", 16) + fmt + b"data"
    body += struct.pack("<I", len(data)) + data
    return b"RIFF" + struct.pack("<I", len(body)) + body


@pytest.mark.anyio
async def test_openai_synthesize_estimates_timings() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"ID3-mp3-bytes")

    async with mock_client(handler) as client:
        provider = OpenAITTSProvider("test-key", "shimmer", http_client=client)
        result = await provider.synthesize("You can do this.")

    assert result.audio == b"ID3-mp3-bytes"
    assert result.content_type == "audio/mpeg"
    assert result.timing_source == "estimated"
    assert result.voice == "shimmer"
    assert [t.word for t in result.word_timings] == ["You", "can", "do", "this."]
    assert result.estimated_duration_ms == 1600

    request = seen[0]
    assert request.url.path.endswith("/audio/speech")
    body = json.loads(request.content)
    assert body["model"] == "tts-1"
    assert body["voice"] == "shimmer"
    assert body["input"] == "You can do this."


@pytest.mark.anyio
async def test_openai_unknown_voice_falls_back() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"audio")

    async with mock_client(handler) as client:
        provider = OpenAITTSProvider("test-key", "not-a-voice", http_client=client)
        assert provider.default_voice == "nova"
        result = await provider.synthesize("Hello.", voice="troy")

    assert result.voice == "nova"


@pytest.mark.anyio
async def test_openai_error_maps_to_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    async with mock_client(handler) as client:
        provider = OpenAITTSProvider("test-key", http_client=client)
        with pytest.raises(TTSProviderError) as excinfo:
            await provider.synthesize("Hello.")

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Text-to-speech synthesis failed"


@pytest.mark.anyio
async def test_validate_text_limits() -> None:
    async with mock_client(lambda r: httpx.Response(200)) as client:
        provider = OpenAITTSProvider("test-key", http_client=client)
        with pytest.raises(ValueError, match="Text is required"):
            await provider.synthesize("")
        with pytest.raises(ValueError, match="max 4096"):
            await provider.synthesize("a" * 4097)


@pytest.mark.anyio
async def test_groq_requests_wav_and_skips_directions() -> None:
    seen: list[httpx.Request] = []
    wav = make_wav(900)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=wav)

    async with mock_client(handler) as client:
        provider = GroqTTSProvider("test-key", "hannah", http_client=client)
        result = await provider.synthesize("[cheerful] Nice work today.")

    assert result.content_type == "audio/wav"
    assert result.provider == "groq"
    assert [t.word for t in result.word_timings] == ["Nice", "work", "today."]

    request = seen[0]
    assert request.url.host == "api.groq.com"
    body = json.loads(request.content)
    assert body["response_format"] == "wav"
    assert body["model"] == "canopylabs/orpheus-v1-english"
    assert body["voice"] == "hannah"


@pytest.mark.anyio
async def test_elevenlabs_uses_character_alignment() -> None:
    seen: list[httpx.Request] = []
    text = "Hi you"

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "audio_base64": base64.b64encode(b"mp3").decode(),
                "alignment": {
                    "characters": list(text),
                    "character_start_times_seconds": [0.0, 0.1, 0.2, 0.3, 0.4, 0.5],
                    "character_end_times_seconds": [0.1, 0.2, 0.3, 0.4, 0.5, 0.62],
                },
            },
        )

    async with mock_client(handler) as client:
        provider = ElevenLabsTTSProvider("xi-key", "voice-1", http_client=client)
        result = await provider.synthesize(text)

    assert result.audio == b"mp3"
    assert result.timing_source == "actual"
    assert result.estimated_duration_ms == 620
    assert [(t.word, t.start_ms, t.end_ms) for t in result.word_timings] == [
        ("Hi", 0, 200),
        ("you", 300, 620),
    ]
    request = seen[0]
    assert request.url.path == "/v1/text-to-speech/voice-1/with-timestamps"
    assert request.headers["xi-api-key"] == "xi-key"
    assert json.loads(request.content)["model_id"] == "eleven_flash_v2_5"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("status_code", "message"),
    [
        (401, "Invalid ElevenLabs API key"),
        (422, "Invalid request to ElevenLabs API"),
        (500, "Text-to-speech synthesis failed"),
    ],
)
async def test_elevenlabs_error_messages(status_code: int, message: str) -> None:
    async with mock_client(lambda r: httpx.Response(status_code, text="nope")) as client:
        provider = ElevenLabsTTSProvider("xi-key", http_client=client)
        with pytest.raises(TTSProviderError) as excinfo:
            await provider.synthesize("Hello.")

    assert excinfo.value.status_code == status_code
    assert excinfo.value.detail == message


def _inworld_result(words: list[str], starts: list[float], ends: list[float]) -> dict:
    return {
        "audioContent": base64.b64encode(("|".join(words)).encode()).decode(),
        "timestampInfo": {
            "wordAlignment": {
                "words": words,
                "wordStartTimeSeconds": starts,
                "wordEndTimeSeconds": ends,
            }
        },
    }


@pytest.mark.anyio
async def test_inworld_synthesize_whole() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tts/v1/voice"
        assert request.headers["Authorization"] == "Basic iw-key"
        payload = json.loads(request.content)
        assert payload["audioConfig"]["speakingRate"] == 0.8
        return httpx.Response(
            200, json=_inworld_result(["Stay", "strong."], [0.0, 0.4], [0.35, 0.9])
        )

    async with mock_client(handler) as client:
        provider = InworldTTSProvider("iw-key", http_client=client)
        result = await provider.synthesize("Stay strong.")

    assert result.estimated_duration_ms == 900
    assert result.voice == "Dennis"
    assert [t.word for t in result.word_timings] == ["Stay", "strong."]


@pytest.mark.anyio
async def test_inworld_missing_audio_is_bad_gateway() -> None:
    async with mock_client(lambda r: httpx.Response(200, json={})) as client:
        provider = InworldTTSProvider("iw-key", http_client=client)
        with pytest.raises(TTSProviderError) as excinfo:
            await provider.synthesize("Hello.")

    assert excinfo.value.status_code == 502


@pytest.mark.anyio
async def test_inworld_stream_rebases_slice_timings() -> None:
    lines = [
        json.dumps({"result": _inworld_result(["One", "two"], [0.0, 0.3], [0.3, 0.6])}),
        "",
        "not json",
        json.dumps({"result": _inworld_result(["three."], [0.6], [1.0])}),
        json.dumps({"result": {}}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tts/v1/voice:stream"
        return httpx.Response(200, content="\n".join(lines).encode())

    async with mock_client(handler) as client:
        provider = InworldTTSProvider("iw-key", http_client=client)
        slices = [part async for part in provider.synthesize_stream("One two three.")]

    assert [s.duration_ms for s in slices] == [600, 400]
    assert [(t.word, t.start_ms, t.end_ms) for t in slices[1].word_timings] == [
        ("three.", 0, 400)
    ]
    assert slices[0].audio == b"One|two"


@pytest.mark.anyio
async def test_inworld_stream_error_status() -> None:
    async with mock_client(lambda r: httpx.Response(429, text="slow down")) as client:
        provider = InworldTTSProvider("iw-key", http_client=client)
        with pytest.raises(TTSProviderError) as excinfo:
            async for _ in provider.synthesize_stream("Hello."):
                pass

    assert excinfo.value.status_code == 429
    assert excinfo.value.detail == "InWorld API rate limit exceeded"
