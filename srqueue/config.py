"""Queue configuration using Pydantic Settings."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueueSettings(BaseSettings):
    """
    Settings of one queue instance, loaded from SRQUEUE_* environment variables.

    Intervals and ages are in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="SRQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Polling for ready entries
    check_interval: float = Field(default=10, gt=0)

    # Removal of finished entries
    cleanup_interval: float = Field(default=3600, gt=0)
    cleanup_age: float = Field(default=3600 * 24 * 7, ge=0)

    # Wait step while stop() drains running entries
    drain_interval: float = Field(default=0.5, gt=0)

    # Storage
    storage_url: str = "memory://"
    database_name: str = "srqueue"
    collection_name: str = "requestQueue"
    max_retries: int = Field(default=10, ge=1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"


# Global settings instance
_settings: QueueSettings | None = None


def get_settings() -> QueueSettings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = QueueSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
