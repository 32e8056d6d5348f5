"""Streaming client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Optional, Sequence

import httpx
from fastapi import status

from .config import Settings, secret_value
from .sse import iter_events

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Wrap transport or API failures when communicating with the LLM."""

    def __init__(self, status_code: int, detail: Any, status_text: Optional[str] = None):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail
        self.status_text = status_text


class LLMClient:
    """Client responsible for streaming chat completions token by token."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        api_key = secret_value(self._settings.llm_api_key)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.llm_base_url).rstrip("/")

    def build_payload(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        model: Optional[str] = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        conversation = [dict(message) for message in messages]
        system_prompt = self._settings.system_prompt
        if system_prompt and not any(m.get("role") == "system" for m in conversation):
            conversation.insert(0, {"role": "system", "content": system_prompt})
        return {
            "model": model or self._settings.default_model,
            "messages": conversation,
            "stream": stream,
        }

    async def stream_tokens(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        model: Optional[str] = None,
    ) -> AsyncGenerator[str, None]:
        """Yield assistant text deltas as they arrive."""

        payload = self.build_payload(messages, model=model, stream=True)
        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                f"{self._base_url}/chat/completions",
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise LLMError(
                        response.status_code,
                        self._extract_error_detail(body),
                        response.reason_phrase or None,
                    )

                async for event in iter_events(response.aiter_lines()):
                    if event.data == "[DONE]":
                        break
                    token = self._extract_delta(event.data)
                    if token:
                        yield token
        except httpx.HTTPError as exc:
            raise LLMError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        *,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        """Return ``{"content", "model"}`` from a non-streaming completion."""

        payload = self.build_payload(messages, model=model, stream=False)
        headers = dict(self._headers)
        headers["Accept"] = "application/json"

        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self._base_url}/chat/completions",
                headers=headers,
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise LLMError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise LLMError(response.status_code, detail, response.reason_phrase or None)

        try:
            body = response.json()
            content = body["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        return {"content": content, "model": body.get("model", payload["model"])}

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass

    @staticmethod
    def _extract_delta(data: str) -> Optional[str]:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON stream event: %s", data[:80])
            return None
        if isinstance(chunk, dict) and chunk.get("error"):
            error = chunk["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise LLMError(status.HTTP_502_BAD_GATEWAY, message or "LLM stream error")
        try:
            content = chunk["choices"][0]["delta"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None
        return content if isinstance(content, str) else None

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "LLM provider returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            error = payload.get("error") or payload
            if isinstance(error, dict) and "message" in error:
                return error["message"]
            return error
        return payload


__all__ = ["LLMClient", "LLMError"]
