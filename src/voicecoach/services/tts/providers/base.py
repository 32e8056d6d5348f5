"""Common interface and plumbing for TTS vendor adapters."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, ClassVar, Optional

import httpx

from ..types import TTSResult, TTSStreamChunk

logger = logging.getLogger(__name__)


class TTSProviderError(Exception):
    """Wrap transport or API failures when talking to a TTS vendor."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class TTSConfigurationError(RuntimeError):
    """Raised when no usable TTS provider can be constructed."""


class TTSProvider(ABC):
    """
    Uniform synthesis interface implemented once per vendor.

    Every provider implements ``synthesize``. Providers that can deliver a
    sentence progressively set ``supports_streaming`` and implement
    ``synthesize_stream``.

    Attributes:
        name: Short vendor identifier reported in results
        max_text_length: Longest input the vendor accepts
    """

    name: ClassVar[str] = "base"
    max_text_length: ClassVar[int] = 4096
    supports_streaming: ClassVar[bool] = False

    # Singleton HTTP client for connection pooling
    _http_client: ClassVar[Optional[httpx.AsyncClient]] = None

    def __init__(self, *, http_client: Optional[httpx.AsyncClient] = None):
        self._client_override = http_client

    @classmethod
    def get_http_client(cls) -> httpx.AsyncClient:
        """Get singleton HTTP client for connection pooling."""
        if TTSProvider._http_client is None:
            TTSProvider._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                http2=True,
            )
            logger.info("Created singleton httpx.AsyncClient for TTS")
        return TTSProvider._http_client

    @classmethod
    async def close_http_client(cls) -> None:
        """Close the singleton HTTP client. Call on app shutdown."""
        if TTSProvider._http_client is not None:
            await TTSProvider._http_client.aclose()
            TTSProvider._http_client = None
            logger.info("Closed TTS HTTP client")

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._client_override is not None:
            return self._client_override
        return self.get_http_client()

    @property
    @abstractmethod
    def default_voice(self) -> str:
        """Voice used when the caller does not ask for one."""

    @abstractmethod
    async def synthesize(self, text: str, voice: Optional[str] = None) -> TTSResult:
        """Synthesize ``text`` in one request."""

    async def synthesize_stream(
        self, text: str, voice: Optional[str] = None
    ) -> AsyncIterator[TTSStreamChunk]:
        """Yield audio progressively. Only streaming providers override this."""
        raise NotImplementedError(f"{self.name} does not support streaming synthesis")
        yield  # pragma: no cover

    def validate_text(self, text: str) -> None:
        if not text or not isinstance(text, str):
            raise ValueError("Text is required")
        if len(text) > self.max_text_length:
            raise ValueError(f"Text too long (max {self.max_text_length} characters)")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(voice={self.default_voice!r})"


def extract_error_detail(raw: bytes, fallback: str) -> Any:
    """Best-effort decode of a vendor error body."""

    if not raw:
        return fallback
    text = raw.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(payload, dict):
        return payload.get("error") or payload.get("detail") or payload
    return payload


__all__ = [
    "TTSConfigurationError",
    "TTSProvider",
    "TTSProviderError",
    "extract_error_detail",
]
