"""Application configuration for audio_stream_bridge."""

from __future__ import annotations

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


DEFAULT_AUDIO_FORMAT_HINT = "bestaudio[ext=m4a]/bestaudio[ext=mp3]/bestaudio"


class Settings(BaseSettings):
    """Settings loaded from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_prefix="AUDIO_BRIDGE_",
        env_file=".env",
        extra="ignore",
    )

    socket_timeout_seconds: int = Field(default=10, gt=0)
    max_retries: int = Field(default=1, ge=0)
    audio_format_hint: str = DEFAULT_AUDIO_FORMAT_HINT

    default_search_results: int = Field(default=10, gt=0)

    log_level: str = "INFO"
