"""
Settings for the data-access layer.

Values are read from the environment with the ``DAZZLE_DATA_`` prefix,
e.g. ``DAZZLE_DATA_DATABASE_PATH=/var/lib/app/data.db``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DataSettings(BaseSettings):
    """Repository and store settings loaded from environment."""

    model_config = SettingsConfigDict(env_prefix="DAZZLE_DATA_", extra="ignore")

    # Storage
    database_path: Path = Field(
        default=Path(".dazzle/data.db"), description="SQLite database file"
    )

    # Query defaults
    default_page_size: int = Field(default=15, ge=1, description="Default items per page")
    max_page_size: int = Field(default=1000, ge=1, description="Upper bound for page size")

    # Logging
    log_level: str = Field(default="INFO", description="Minimum log level")
    log_dir: Path = Field(default=Path(".dazzle/logs"), description="Directory for log files")


@lru_cache
def get_settings() -> DataSettings:
    """Return the process-wide settings instance."""
    return DataSettings()
