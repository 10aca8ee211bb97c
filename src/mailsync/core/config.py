"""Sync configuration using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncConfig(BaseSettings):
    """Sync engine configuration loaded from environment variables.

    Every field can be overridden with a ``MAILSYNC_`` prefixed variable,
    e.g. ``MAILSYNC_POLLING_INTERVAL=120``.
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Change detection
    enable_push_notifications: bool = Field(default=True, description="Register push watches")
    polling_interval: float = Field(
        default=300.0, gt=0, description="Seconds between fallback polls per account"
    )
    push_topic_name: str = Field(
        default="projects/mailsync/topics/gmail-sync",
        description="Pub/Sub topic that receives mailbox change notifications",
    )
    push_renewal_margin: float = Field(
        default=3600.0, ge=0, description="Renew push watches this many seconds before expiry"
    )

    # Sync behaviour
    enable_incremental_sync: bool = Field(default=True, description="Use history-based sync")
    enable_offline_queue: bool = Field(default=True, description="Buffer mutating operations")
    batch_size: int = Field(default=50, ge=1, le=100, description="Messages fetched per batch")
    page_size: int = Field(default=50, ge=1, le=500, description="Messages listed per page")
    full_sync_max_messages: int | None = Field(
        default=None, ge=1, description="Cap on messages listed by a full sync"
    )
    sync_label_ids: str | None = Field(
        default=None, description="Comma-separated labels that restrict full sync listing"
    )

    # Retry policy
    max_retries: int = Field(default=3, ge=0, description="Retries before giving up")
    retry_base_delay: float = Field(default=1.0, gt=0, description="Base backoff in seconds")
    retry_max_delay: float = Field(default=30.0, gt=0, description="Backoff ceiling in seconds")
    retry_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")

    # Remote calls
    request_timeout: float = Field(default=30.0, gt=0, description="Per-call timeout in seconds")
    requests_per_second: int = Field(default=10, ge=1, description="Gmail API request rate")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_json: bool = Field(default=False, description="Use JSON log format")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        """Accept lowercase level names."""
        if isinstance(v, str):
            return v.upper()
        return v

    @model_validator(mode="after")
    def check_delay_bounds(self) -> SyncConfig:
        """Ensure the backoff ceiling is not below the base delay."""
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @property
    def label_filter(self) -> list[str] | None:
        """Label IDs parsed from ``sync_label_ids``, or None for all mail."""
        if not self.sync_label_ids:
            return None
        labels = [label.strip() for label in self.sync_label_ids.split(",") if label.strip()]
        return labels or None


@lru_cache
def get_sync_config() -> SyncConfig:
    """Get cached sync configuration instance."""
    return SyncConfig()
