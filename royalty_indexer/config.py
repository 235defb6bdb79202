"""
Configuration management for the Royalty Indexer.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Royalty Indexer")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000)

    # Database
    database_url: str = Field(default="sqlite:///./royalty_indexer.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Artifact source
    artifact_source_url: Optional[str] = Field(default=None)
    artifact_source_timeout_seconds: float = Field(default=10.0, gt=0)
    artifact_source_retries: int = Field(default=2, ge=0)
    max_closure_size: int = Field(
        default=10_000,
        ge=1,
        description="Maximum distinct artifacts visited by one dependency traversal",
    )

    # Maintenance sweep
    sweep_enabled: bool = Field(default=True)
    sweep_interval_seconds: int = Field(default=60, ge=1)

    # Royalty defaults, used until a parameter update event is recorded
    default_initial_rate: Decimal = Field(default=Decimal("10"))
    default_decay_factor: int = Field(default=65, ge=0, le=100)
    default_max_depth: int = Field(default=5, ge=0)
    default_floor_rate: Decimal = Field(default=Decimal("0.1"))
    default_decay_period: int = Field(default=30 * 24 * 60 * 60)


@lru_cache
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
