"""Configuration for the generation orchestrator."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Orchestrator configuration, read from GENSTUDIO_* env vars and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="GENSTUDIO_",
        extra="ignore",
    )

    # Which backend adapter to use
    backend: Literal["edge", "huggingface"] = Field(default="edge")

    # Hosted edge functions
    functions_url: str = Field(default="http://127.0.0.1:54321/functions/v1")
    functions_anon_key: SecretStr = Field(default=SecretStr(""))

    # Direct inference API
    huggingface_url: str = Field(default="https://api-inference.huggingface.co")
    huggingface_token: SecretStr = Field(default=SecretStr(""))

    # Transport
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    transport_retry_delay_seconds: float = Field(default=0.0, ge=0)

    # Display countdown tick
    countdown_interval_seconds: float = Field(default=1.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")


def get_settings() -> Settings:
    """Get a settings instance."""
    return Settings()
