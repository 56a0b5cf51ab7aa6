"""Configuration management for tinymem."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TinymemSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    redis_url: str = Field(default="redis://127.0.0.1:6379", validation_alias="TINYMEM_REDIS")
    log_level: str = Field(default="INFO", validation_alias="TINYMEM_LOG_LEVEL")
    ask_timeout_seconds: float = Field(default=300.0, validation_alias="TINYMEM_ASK_TIMEOUT")
    ask_poll_interval: float = Field(default=0.5, validation_alias="TINYMEM_ASK_POLL_INTERVAL")
    stale_after_seconds: int = Field(default=120, validation_alias="TINYMEM_STALE_AFTER")
    sweep_interval_seconds: float = Field(
        default=30.0, validation_alias="TINYMEM_SWEEP_INTERVAL"
    )
    history_limit: int = Field(default=20, validation_alias="TINYMEM_HISTORY_LIMIT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "TINYMEM_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("ask_timeout_seconds", "ask_poll_interval", "sweep_interval_seconds")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and intervals must be > 0")
        return value

    @field_validator("stale_after_seconds", "history_limit")
    @classmethod
    def _validate_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("TINYMEM_STALE_AFTER and TINYMEM_HISTORY_LIMIT must be >= 1")
        return value


@lru_cache(maxsize=1)
def get_settings() -> TinymemSettings:
    """Return cached settings instance."""

    return TinymemSettings()


__all__ = ["TinymemSettings", "get_settings"]
