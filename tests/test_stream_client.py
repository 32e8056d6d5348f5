from __future__ import annotations

import base64
import json
from typing import Any, AsyncIterator

import httpx
import pytest

from voicecoach.playback import StreamingAudioQueue, StreamingTTSClient


def sse_lines(*events: dict[str, Any] | str) -> list[str]:
    lines: list[str] = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.extend([f"data: {data}", ""])
    return lines


async def line_stream(lines: list[str]) -> AsyncIterator[str]:
    for line in lines:
        yield line


def audio_event(index: int, offset_ms: int, duration_ms: int, **extra: Any) -> dict:
    chunk = {
        "chunkIndex": index,
        "audioBase64": base64.b64encode(f"dur:{duration_ms / 1000}".encode()).decode(),
        "contentType": "audio/mpeg",
        "wordTimings": [{"word": "Hi.", "startMs": 0, "endMs": 200}],
        "cumulativeOffsetMs": offset_ms,
        "durationMs": duration_ms,
        "isLast": False,
        "text": "Hi.",
    }
    chunk.update(extra)
    return {"type": "audio_chunk", "chunk": chunk}


class Recorder:
    def __init__(self) -> None:
        self.texts: list[str] = []
        self.completions: list[tuple[str, bool, bool]] = []
        self.errors: list[str] = []

    def client(self, queue: StreamingAudioQueue, **kwargs: Any) -> StreamingTTSClient:
        return StreamingTTSClient(
            queue,
            on_text_update=self.texts.append,
            on_complete=lambda *args: self.completions.append(args),
            on_error=self.errors.append,
            **kwargs,
        )


@pytest.mark.anyio
async def test_process_stream_routes_tokens_audio_and_done(context_factory) -> None:
    recorder = Recorder()
    queue = StreamingAudioQueue(context_factory=context_factory)
    client = recorder.client(queue)

    await client.process_stream(
        line_stream(
            sse_lines(
                {"type": "token", "token": "Hi.", "conversationId": "conv-1"},
                audio_event(0, 0, 400),
                {"type": "token", "token": " Bye.", "conversationId": "conv-1"},
                audio_event(1, 400, 300, wordTimings=[]),
                {
                    "type": "done",
                    "done": True,
                    "conversationId": "conv-1",
                    "sessionComplete": True,
                    "streamingTTS": True,
                },
            )
        )
    )

    assert recorder.texts == ["Hi.", "Hi. Bye."]
    assert recorder.completions == [("Hi. Bye.", True, True)]
    assert client.conversation_id == "conv-1"
    assert not client.is_streaming
    assert [n.start_time for n in context_factory.latest.nodes] == pytest.approx(
        [0.0, 0.4]
    )
    assert client.tts_text == "Hi."


@pytest.mark.anyio
async def test_error_event_is_reported(context_factory) -> None:
    recorder = Recorder()
    client = recorder.client(StreamingAudioQueue(context_factory=context_factory))

    await client.process_stream(
        line_stream(
            sse_lines(
                {"type": "token", "token": "Par"},
                {"type": "error", "error": "Model overloaded", "conversationId": "c"},
            )
        )
    )

    assert recorder.errors == ["Model overloaded"]
    assert client.error == "Model overloaded"
    assert recorder.completions == []


@pytest.mark.anyio
async def test_untyped_events_are_understood(context_factory) -> None:
    recorder = Recorder()
    client = recorder.client(StreamingAudioQueue(context_factory=context_factory))

    await client.process_stream(
        line_stream(sse_lines({"token": "Old "}, {"token": "server."}, {"done": True}))
    )

    assert client.full_text == "Old server."
    assert recorder.completions == [("Old server.", False, False)]


@pytest.mark.anyio
async def test_bad_lines_and_chunks_are_skipped(context_factory) -> None:
    recorder = Recorder()
    client = recorder.client(StreamingAudioQueue(context_factory=context_factory))

    await client.process_stream(
        line_stream(
            [": keep-alive", ""]
            + sse_lines(
                "not json",
                {"type": "audio_chunk", "chunk": {"chunkIndex": -1}},
                {"type": "token", "token": "Still here."},
            )
        )
    )

    assert client.full_text == "Still here."
    assert context_factory.latest.nodes == []
    assert recorder.errors == []


@pytest.mark.anyio
async def test_new_turn_resets_previous_timings(context_factory) -> None:
    queue = StreamingAudioQueue(context_factory=context_factory)
    client = StreamingTTSClient(queue)

    await client.process_stream(line_stream(sse_lines(audio_event(0, 0, 400))))
    first_node = context_factory.latest.nodes[0]
    await client.process_stream(line_stream(sse_lines({"type": "token", "token": "Next"})))

    assert first_node.stopped
    assert client.all_word_timings == []
    assert client.full_text == "Next"
    assert len(context_factory.created) == 1


@pytest.mark.anyio
async def test_send_posts_chat_and_streams(context_factory) -> None:
    seen: list[dict[str, Any]] = []
    body = "\n".join(
        sse_lines(
            {"type": "token", "token": "Hello.", "conversationId": "conv-7"},
            {
                "type": "done",
                "done": True,
                "conversationId": "conv-7",
                "sessionComplete": False,
                "streamingTTS": False,
            },
        )
    )

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/api/chat"
        return httpx.Response(
            200, text=body, headers={"content-type": "text/event-stream"}
        )

    recorder = Recorder()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = recorder.client(
        StreamingAudioQueue(context_factory=context_factory),
        server_url="http://coach.test/",
        http_client=http_client,
    )

    await client.send([{"role": "user", "content": "hi"}], voice="calm")
    await client.send([{"role": "user", "content": "again"}])

    assert recorder.completions[0] == ("Hello.", False, False)
    assert "conversationId" not in seen[0]
    assert seen[0]["voice"] == "calm"
    assert seen[1]["conversationId"] == "conv-7"
    await http_client.aclose()


@pytest.mark.anyio
async def test_send_reports_http_errors(context_factory) -> None:
    recorder = Recorder()
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom"))
    )
    client = recorder.client(
        StreamingAudioQueue(context_factory=context_factory), http_client=http_client
    )

    await client.send([{"role": "user", "content": "hi"}])

    assert recorder.errors == ["Error 500: boom"]
    await http_client.aclose()


@pytest.mark.anyio
async def test_stop_clears_client_state(context_factory) -> None:
    queue = StreamingAudioQueue(context_factory=context_factory)
    client = StreamingTTSClient(queue)
    await client.process_stream(
        line_stream(sse_lines({"type": "token", "token": "Hi", "conversationId": "c"}))
    )

    await client.stop()

    assert client.full_text == ""
    assert client.conversation_id is None
    assert queue.context is None
