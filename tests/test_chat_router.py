from __future__ import annotations

import base64
import json
from typing import Any, AsyncIterator, Iterator, Optional, Sequence

import pytest
import sse_starlette.sse
from fastapi.testclient import TestClient

from voicecoach.app import create_app
from voicecoach.config import Settings
from voicecoach.services.tts.providers.base import TTSProvider, TTSProviderError
from voicecoach.services.tts.types import TTSResult, WordTiming


class ScriptedLLM:
    def __init__(self, tokens: list[str]) -> None:
        self.tokens = tokens

    async def stream_tokens(
        self, messages: Sequence[dict[str, Any]], *, model: Optional[str] = None
    ) -> AsyncIterator[str]:
        for token in self.tokens:
            yield token

    async def complete(
        self, messages: Sequence[dict[str, Any]], *, model: Optional[str] = None
    ) -> dict[str, Any]:
        return {"content": "".join(self.tokens), "model": "scripted"}


class EchoProvider(TTSProvider):
    name = "echo"
    max_text_length = 50

    @property
    def default_voice(self) -> str:
        return "echo"

    async def synthesize(self, text: str, voice: Optional[str] = None) -> TTSResult:
        self.validate_text(text)
        if text.startswith("Explode"):
            raise TTSProviderError(429, "rate limited")
        return TTSResult(
            audio=text.encode(),
            content_type="audio/mpeg",
            word_timings=[WordTiming(word=w, start_ms=0, end_ms=0) for w in text.split()],
            estimated_duration_ms=250,
            provider="echo",
            timing_source="actual",
            voice=voice or "echo",
        )


@pytest.fixture(autouse=True)
def reset_sse_app_status() -> Iterator[None]:
    # The exit event binds to the first loop that used it; each TestClient runs its own.
    app_status = getattr(sse_starlette.sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield


def make_client(
    tmp_path, tokens: list[str], *, provider: Optional[TTSProvider] = None
) -> TestClient:
    settings = Settings(
        _env_file=None,  # type: ignore[call-arg]
        CHAT_DATABASE_PATH=str(tmp_path / "chat.db"),
        STREAMING_TTS_ENABLED=True,
    )
    app = create_app(settings, llm_client=ScriptedLLM(tokens), tts_provider=provider)
    return TestClient(app)


def parse_events(body: str) -> list[dict[str, Any]]:
    return [
        json.loads(line[len("data:") :].strip())
        for line in body.splitlines()
        if line.startswith("data:")
    ]


def test_streaming_chat_emits_tokens_audio_and_done(tmp_path) -> None:
    with make_client(
        tmp_path, ["Nice work. ", "Stay strong."], provider=EchoProvider()
    ) as client:
        response = client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "I resisted today"}]},
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = parse_events(response.text)
    assert [e["type"] for e in events if e["type"] != "audio_chunk"] == [
        "token",
        "token",
        "done",
    ]
    chunks = [e["chunk"] for e in events if e["type"] == "audio_chunk"]
    assert [c["chunkIndex"] for c in chunks] == [0, 1]
    assert [c["cumulativeOffsetMs"] for c in chunks] == [0, 250]
    assert base64.b64decode(chunks[0]["audioBase64"]) == b"Nice work."
    assert set(chunks[0]) == {
        "chunkIndex",
        "audioBase64",
        "contentType",
        "wordTimings",
        "cumulativeOffsetMs",
        "durationMs",
        "isLast",
        "text",
    }
    assert events[-1]["streamingTTS"] is True
    assert events[0]["conversationId"] == events[-1]["conversationId"]


def test_streaming_chat_without_provider_is_text_only(tmp_path) -> None:
    with make_client(tmp_path, ["Hello."]) as client:
        response = client.post(
            "/api/chat",
            json={
                "messages": [{"role": "user", "content": "hi"}],
                "conversationId": "conv-1",
            },
        )

    events = parse_events(response.text)
    assert [e["type"] for e in events] == ["token", "done"]
    assert events[-1] == {
        "type": "done",
        "done": True,
        "conversationId": "conv-1",
        "sessionComplete": False,
        "streamingTTS": False,
    }


def test_non_streaming_chat(tmp_path) -> None:
    with make_client(tmp_path, ["Well done. [SESSION_COMPLETE]"]) as client:
        response = client.post(
            "/api/chat",
            json={"messages": [{"role": "user", "content": "bye"}], "stream": False},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["content"] == "Well done. [SESSION_COMPLETE]"
    assert body["sessionComplete"] is True
    assert body["model"] == "scripted"
    assert body["conversationId"]


def test_chat_rejects_empty_messages(tmp_path) -> None:
    with make_client(tmp_path, ["x"]) as client:
        response = client.post("/api/chat", json={"messages": []})

    assert response.status_code == 422


def test_health_reports_tts(tmp_path) -> None:
    with make_client(tmp_path, [], provider=EchoProvider()) as client:
        body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["tts_provider"] == "echo"
    assert body["streaming_tts"] is True


def test_synthesize_endpoint(tmp_path) -> None:
    with make_client(tmp_path, [], provider=EchoProvider()) as client:
        response = client.post(
            "/api/voice/synthesize",
            json={"text": "**Breathe** in. [SESSION_COMPLETE]", "voice": "calm"},
        )

    assert response.status_code == 200
    body = response.json()
    assert base64.b64decode(body["audio"]) == b"Breathe in."
    assert body["contentType"] == "audio/mpeg"
    assert body["estimatedDurationMs"] == 250
    assert body["timingSource"] == "actual"
    assert body["voice"] == "calm"
    assert body["provider"] == "echo"
    assert [t["word"] for t in body["wordTimings"]] == ["Breathe", "in."]
    assert set(body["wordTimings"][0]) == {"word", "startMs", "endMs"}


@pytest.mark.parametrize(
    ("text", "status_code"),
    [
        ("[SESSION_COMPLETE]", 400),
        ("x" * 60, 400),
        ("Explode now", 429),
    ],
)
def test_synthesize_errors(tmp_path, text: str, status_code: int) -> None:
    with make_client(tmp_path, [], provider=EchoProvider()) as client:
        response = client.post("/api/voice/synthesize", json={"text": text})

    assert response.status_code == status_code


def test_synthesize_without_provider(tmp_path) -> None:
    with make_client(tmp_path, []) as client:
        response = client.post("/api/voice/synthesize", json={"text": "Hello"})

    assert response.status_code == 503
