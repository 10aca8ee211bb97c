"""Sync state Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mailsync.sync.errors import ErrorKind
from mailsync.sync.state import OperationType, SyncStatus


class PendingOperationResponse(BaseModel):
    """Schema for a queued operation."""

    id: str
    type: OperationType
    message_ids: list[str]
    label_id: str | None = None
    created_at: datetime
    retry_count: int

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PushSubscriptionResponse(BaseModel):
    """Schema for push subscription bookkeeping."""

    enabled: bool
    expires_at: datetime | None = None
    cursor: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AccountSyncStateResponse(BaseModel):
    """Snapshot of one account's sync state for the presentation layer."""

    account_id: str
    status: SyncStatus
    last_history_cursor: str | None
    pending_operations: list[PendingOperationResponse] = Field(default_factory=list)
    retry_count: int
    push_subscription: PushSubscriptionResponse
    last_sync_at: datetime | None = None
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None
    auth_required: bool = False
    dropped_operations: int = 0
    next_retry_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class SyncStatusSummary(BaseModel):
    """Aggregate status across all accounts."""

    is_online: bool
    total_accounts: int
    syncing_accounts: int
    error_accounts: int
    offline_accounts: int = 0
    paused_accounts: int = 0
    pending_operations: int
    dropped_operations: int = 0
