"""Core utilities for mailsync."""

from __future__ import annotations

from mailsync.core.config import SyncConfig, get_sync_config
from mailsync.core.logging import configure_logging, get_logger

__all__ = [
    "SyncConfig",
    "configure_logging",
    "get_logger",
    "get_sync_config",
]
