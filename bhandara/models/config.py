"""Configuration models for the application."""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(str, Enum):
    """Available key-value storage backends."""

    MEMORY = "memory"
    FILE = "file"
    SQLITE = "sqlite"


class BhandaraConfig(BaseSettings):
    """Main configuration for Bhandara Finder.

    Every field can be set through a ``BHANDARA_``-prefixed environment
    variable, e.g. ``BHANDARA_REFRESH_INTERVAL_MS=30000``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BHANDARA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    storage_backend: StorageBackend = Field(default=StorageBackend.FILE)
    storage_path: str = Field(
        default="./.bhandara",
        description="Profile directory for the file backend, database file for sqlite",
    )
    storage_quota_bytes: Optional[int] = Field(
        default=5 * 1024 * 1024,
        gt=0,
        description="Maximum total size of all stored keys and values, None for unlimited",
    )

    # Persisted keys
    events_key: str = Field(default="bhandaras", min_length=1)
    identity_key: str = Field(default="ownerId", min_length=1)

    # Freshness
    refresh_interval_ms: int = Field(default=60000, gt=0)

    # Images
    max_image_bytes: int = Field(default=10 * 1024 * 1024, gt=0)

    log_level: str = Field(default="INFO")

    @property
    def refresh_interval_seconds(self) -> float:
        """Refresh interval as seconds, for asyncio.sleep."""
        return self.refresh_interval_ms / 1000
