"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import ChatStreamHandler
from .config import PROJECT_ROOT, Settings, get_settings
from .llm import LLMClient
from .repository import ConversationRepository
from .routers.chat import router as chat_router
from .routers.voice import router as voice_router
from .services.detection_tracker import MomentDetector, SessionDetectionTracker
from .services.tts import TTSConfigurationError, TTSProvider, create_tts_provider


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("voicecoach").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet down noisy HTTP libraries unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def _build_tts_provider(settings: Settings) -> Optional[TTSProvider]:
    try:
        return create_tts_provider(settings)
    except TTSConfigurationError as exc:
        logging.warning("Text-to-speech disabled: %s", exc)
        return None


def create_app(
    settings: Optional[Settings] = None,
    *,
    llm_client: Optional[LLMClient] = None,
    tts_provider: Optional[TTSProvider] = None,
    moment_detector: Optional[MomentDetector] = None,
) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()

    repository = ConversationRepository(
        _resolve_under(PROJECT_ROOT, settings.chat_database_path)
    )
    client = llm_client or LLMClient(settings)
    provider = tts_provider or _build_tts_provider(settings)
    tracker = SessionDetectionTracker(settings.max_detections_per_session)

    chat_handler = ChatStreamHandler(
        client,
        repository,
        tts_provider=provider,
        streaming_tts_enabled=settings.streaming_tts_enabled,
        detection_tracker=tracker,
        moment_detector=moment_detector,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await repository.initialize()
        try:
            yield
        finally:
            # Add timeout to prevent hanging during shutdown (especially in tests)
            try:
                await asyncio.wait_for(repository.close(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Repository shutdown timed out after 10s")
            await TTSProvider.close_http_client()
            await LLMClient.aclose_shared()

    app = FastAPI(
        title="Voice Coach Backend",
        version="0.1.0",
        description="Streaming coaching chat with sentence-level speech synthesis.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.repository = repository
    app.state.llm_client = client
    app.state.tts_provider = provider
    app.state.detection_tracker = tracker
    app.state.chat_handler = chat_handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(voice_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | bool | None]:
        return {
            "status": "ok",
            "default_model": settings.default_model,
            "tts_provider": provider.name if provider is not None else None,
            "streaming_tts": settings.streaming_tts_enabled and provider is not None,
        }

    return app


__all__ = ["create_app"]
