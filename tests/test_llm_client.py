from __future__ import annotations

import json

import httpx
import pytest

from voicecoach.config import Settings
from voicecoach.llm import LLMClient, LLMError


def make_settings(**values) -> Settings:
    base = {
        "LLM_API_KEY": "sk-test",
        "LLM_BASE_URL": "https://llm.example.com/v1",
        "LLM_DEFAULT_MODEL": "test/model",
        "LLM_SYSTEM_PROMPT": "Be kind.",
    }
    base.update(values)
    return Settings(_env_file=None, **base)  # type: ignore[call-arg]


def sse_body(*chunks: dict | str) -> bytes:
    lines = []
    for chunk in chunks:
        data = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


def make_client(handler, **settings) -> LLMClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LLMClient(make_settings(**settings), http_client=http_client)


def test_build_payload_prepends_system_prompt() -> None:
    client = LLMClient(make_settings())

    payload = client.build_payload([{"role": "user", "content": "hi"}])

    assert payload["model"] == "test/model"
    assert payload["stream"] is True
    assert payload["messages"][0] == {"role": "system", "content": "Be kind."}


def test_build_payload_keeps_existing_system_message() -> None:
    client = LLMClient(make_settings())

    payload = client.build_payload(
        [{"role": "system", "content": "Custom"}, {"role": "user", "content": "hi"}],
        model="other/model",
        stream=False,
    )

    assert payload["model"] == "other/model"
    assert [m["content"] for m in payload["messages"]] == ["Custom", "hi"]


@pytest.mark.anyio
async def test_stream_tokens_yields_deltas_until_done() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            content=sse_body(
                delta("Hello"),
                {"choices": [{"delta": {"role": "assistant"}}]},
                delta(" there."),
                "[DONE]",
                delta("ignored"),
            ),
            headers={"content-type": "text/event-stream"},
        )

    client = make_client(handler)
    tokens = [t async for t in client.stream_tokens([{"role": "user", "content": "hi"}])]

    assert tokens == ["Hello", " there."]
    request = seen[0]
    assert str(request.url) == "https://llm.example.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"


@pytest.mark.anyio
async def test_stream_tokens_http_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limited"}})

    client = make_client(handler)
    with pytest.raises(LLMError) as excinfo:
        async for _ in client.stream_tokens([{"role": "user", "content": "hi"}]):
            pass

    assert excinfo.value.status_code == 429
    assert excinfo.value.detail == "Rate limited"
    assert excinfo.value.status_text == "Too Many Requests"


@pytest.mark.anyio
async def test_stream_tokens_inline_error_event() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=sse_body(delta("Hi"), {"error": {"message": "upstream died"}})
        )

    client = make_client(handler)
    received: list[str] = []
    with pytest.raises(LLMError) as excinfo:
        async for token in client.stream_tokens([{"role": "user", "content": "hi"}]):
            received.append(token)

    assert received == ["Hi"]
    assert excinfo.value.status_code == 502
    assert excinfo.value.detail == "upstream died"


@pytest.mark.anyio
async def test_stream_tokens_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    with pytest.raises(LLMError) as excinfo:
        async for _ in client.stream_tokens([{"role": "user", "content": "hi"}]):
            pass

    assert excinfo.value.status_code == 502


@pytest.mark.anyio
async def test_complete_returns_content_and_model() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["stream"] is False
        return httpx.Response(
            200,
            json={
                "model": "test/model-2024",
                "choices": [{"message": {"role": "assistant", "content": "Done."}}],
            },
        )

    client = make_client(handler)
    result = await client.complete([{"role": "user", "content": "hi"}])

    assert result == {"content": "Done.", "model": "test/model-2024"}


@pytest.mark.anyio
async def test_complete_malformed_body() -> None:
    client = make_client(lambda r: httpx.Response(200, json={"choices": []}))

    with pytest.raises(LLMError) as excinfo:
        await client.complete([{"role": "user", "content": "hi"}])

    assert excinfo.value.status_code == 502
