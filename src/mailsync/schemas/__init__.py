"""Pydantic schemas exposed to the presentation layer."""

from mailsync.schemas.sync import (
    AccountSyncStateResponse,
    PendingOperationResponse,
    PushSubscriptionResponse,
    SyncStatusSummary,
)

__all__ = [
    "AccountSyncStateResponse",
    "PendingOperationResponse",
    "PushSubscriptionResponse",
    "SyncStatusSummary",
]
