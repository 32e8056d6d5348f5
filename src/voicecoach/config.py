"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

TTSProviderName = Literal["groq", "openai", "elevenlabs", "inworld"]


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM (any OpenAI-compatible chat completions endpoint)
    llm_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "LLM_API_KEY", "OPENROUTER_API_KEY", "llm_api_key"
        ),
    )
    llm_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("LLM_BASE_URL", "OPENROUTER_BASE_URL"),
    )
    default_model: str = Field(
        default="openai/gpt-4o-mini",
        validation_alias=AliasChoices(
            "LLM_DEFAULT_MODEL",
            "OPENROUTER_DEFAULT_MODEL",
            "default_model",
        ),
    )
    system_prompt: Optional[str] = Field(
        default=(
            "You are a warm, concise coach helping someone quit nicotine. "
            "Reply in short spoken-style sentences without markdown. "
            "When the session goal has been reached, end your reply with [SESSION_COMPLETE]."
        ),
        validation_alias=AliasChoices("LLM_SYSTEM_PROMPT", "system_prompt"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("LLM_TIMEOUT", "timeout"),
        ge=1,
    )
    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/conversations.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_db"),
    )

    # Text-to-speech
    streaming_tts_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "STREAMING_TTS_ENABLED",
            "streaming_tts_enabled",
        ),
    )
    tts_provider: TTSProviderName = Field(
        default="groq",
        validation_alias=AliasChoices("TTS_PROVIDER", "tts_provider"),
    )
    tts_timeout: float = Field(
        default=30.0,
        validation_alias=AliasChoices("TTS_TIMEOUT", "tts_timeout"),
        ge=1,
    )

    openai_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("OPENAI_API_KEY")
    )
    openai_tts_voice: str = Field(
        default="nova",
        validation_alias=AliasChoices("OPENAI_TTS_VOICE", "openai_tts_voice"),
    )

    groq_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("GROQ_API_KEY")
    )
    groq_tts_voice: str = Field(
        default="troy",
        validation_alias=AliasChoices("GROQ_TTS_VOICE", "groq_tts_voice"),
    )

    elevenlabs_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("ELEVENLABS_API_KEY")
    )
    elevenlabs_voice_id: str = Field(
        default="EXAVITQu4vr4xnSDxMaL",
        validation_alias=AliasChoices("ELEVENLABS_VOICE_ID", "elevenlabs_voice_id"),
    )
    elevenlabs_model: str = Field(
        default="eleven_flash_v2_5",
        validation_alias=AliasChoices("ELEVENLABS_MODEL", "elevenlabs_model"),
    )

    inworld_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("INWORLD_API_KEY")
    )
    inworld_voice_id: str = Field(
        default="Dennis",
        validation_alias=AliasChoices("INWORLD_VOICE_ID", "inworld_voice_id"),
    )
    inworld_model: str = Field(
        default="inworld-tts-1",
        validation_alias=AliasChoices("INWORLD_MODEL", "inworld_model"),
    )

    # Moment detection rate limiting
    max_detections_per_session: int = Field(
        default=20,
        ge=0,
        validation_alias=AliasChoices(
            "MAX_DETECTIONS_PER_SESSION",
            "max_detections_per_session",
        ),
    )


def secret_value(secret: Optional[SecretStr]) -> Optional[str]:
    """Return the plain value of an optional secret, treating blanks as missing."""

    if secret is None:
        return None
    value = secret.get_secret_value().strip()
    return value or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "TTSProviderName", "get_settings", "secret_value"]
