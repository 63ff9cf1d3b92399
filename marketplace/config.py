"""
Configuration and settings for the marketplace backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MARKETPLACE_",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api")

    # Record store
    data_dir: str = Field(default="data")
    storage_layout: Literal["flat", "hierarchical"] = Field(default="flat")
    lock_timeout_seconds: float = Field(default=5.0, gt=0)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Populated by the external session provider in front of the API.
    session_header: str = Field(default="X-Session-User-Id")

    log_level: str = Field(default="INFO")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    cors_origins: Optional[str] = Field(default=None)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
