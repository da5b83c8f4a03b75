"""
Application settings using Pydantic.

Provides environment-based configuration loading with PROXYPLANE_ prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PROXYPLANE_",
    )

    # State
    state_backend: str = "file"  # file, sql
    state_path: Path = Path("proxyplane.state.json")
    database_url: str = "sqlite+aiosqlite:///proxyplane.state.db"

    # Provider
    provider: str = "aws"  # aws, memory
    aws_region: str = "us-east-1"
    aws_profile: str | None = None
    default_tags: dict[str, str] = {}

    # Executor
    max_workers: int = 8
    retry_attempts: int = 5
    retry_backoff_multiplier: float = 0.5
    retry_backoff_min: float = 0.5
    retry_backoff_max: float = 20.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json, console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
