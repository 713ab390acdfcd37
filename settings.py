"""
Bitespeed identity service configuration
"""
import logging
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    db_path: Path = Field(default=Path("contacts.db"), alias="BITESPEED_DB_PATH")
    db_timeout: float = Field(
        default=5.0,
        alias="BITESPEED_DB_TIMEOUT",
        gt=0,
        description="Seconds to wait on a locked database before failing",
    )

    host: str = Field(default="0.0.0.0", alias="BITESPEED_HOST")
    port: int = Field(default=8000, alias="BITESPEED_PORT", ge=1, le=65535)

    log_level: str = Field(default="INFO", alias="BITESPEED_LOG_LEVEL")
    api_prefix: str = Field(default="", alias="BITESPEED_API_PREFIX")
    cors_origins: List[str] = Field(default=["*"], alias="BITESPEED_CORS_ORIGINS")

    # Fresh re-runs of /identify after losing a duplicate-primary race
    resolve_retries: int = Field(default=1, alias="BITESPEED_RESOLVE_RETRIES", ge=0)

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("api_prefix")
    @classmethod
    def _normalise_prefix(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if value and not value.startswith("/"):
            value = "/" + value
        return value

    @field_validator("db_path")
    @classmethod
    def _file_backed(cls, value: Path) -> Path:
        if str(value) == ":memory:":
            raise ValueError("An in-memory database cannot be shared between sessions")
        return value
