"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL Twilio reaches us on (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # ElevenLabs Conversational AI
    elevenlabs_api_key: str | None = Field(default=None)
    elevenlabs_agent_id: str | None = Field(default=None)
    elevenlabs_api_base_url: str = Field(default="https://api.elevenlabs.io")
    signed_url_timeout_seconds: float = Field(default=10.0, gt=0)

    # Relay session
    provider_connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for signed-URL issuance plus the provider handshake.",
    )
    close_grace_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a closing session waits for both legs to confirm.",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
