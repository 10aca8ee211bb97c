"""Tests for sync state schemas."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from mailsync.schemas.sync import (
    AccountSyncStateResponse,
    PendingOperationResponse,
    SyncStatusSummary,
)
from mailsync.sync.errors import ErrorKind
from mailsync.sync.state import (
    AccountSyncState,
    OperationType,
    PendingOperation,
    PushSubscription,
    SyncStatus,
)


class TestAccountSyncStateResponse:
    """Tests for AccountSyncStateResponse schema."""

    def test_from_fresh_state(self) -> None:
        """Test a new account state converts with defaults."""
        schema = AccountSyncStateResponse.model_validate(AccountSyncState(account_id="acct-1"))

        assert schema.account_id == "acct-1"
        assert schema.status == "idle"
        assert schema.last_history_cursor is None
        assert schema.pending_operations == []
        assert schema.push_subscription.enabled is False
        assert schema.last_error_kind is None

    def test_from_failed_state(self) -> None:
        """Test error details and enums are exposed as plain values."""
        expires = datetime(2024, 1, 8, tzinfo=UTC)
        state = AccountSyncState(
            account_id="acct-1",
            status=SyncStatus.ERROR,
            last_history_cursor="42",
            retry_count=2,
            last_error="Backend Error",
            last_error_kind=ErrorKind.SERVER_ERROR,
            push_subscription=PushSubscription(enabled=True, expires_at=expires, cursor="40"),
        )
        state.pending_operations.append(
            PendingOperation.create("acct-1", "move_label", ["m1", "m2"], label_id="Label_1")
        )

        schema = AccountSyncStateResponse.model_validate(state)

        assert schema.status == "error"
        assert schema.last_error_kind == "server_error"
        assert schema.retry_count == 2
        assert schema.push_subscription.expires_at == expires
        assert len(schema.pending_operations) == 1
        operation = schema.pending_operations[0]
        assert operation.type == "move_label"
        assert operation.message_ids == ["m1", "m2"]
        assert operation.label_id == "Label_1"

    def test_serializes_to_json(self) -> None:
        """Test the snapshot dumps to JSON-compatible data."""
        schema = AccountSyncStateResponse.model_validate(AccountSyncState(account_id="acct-1"))

        data = schema.model_dump(mode="json")

        assert data["status"] == "idle"
        assert data["push_subscription"] == {"enabled": False, "expires_at": None, "cursor": None}


class TestPendingOperationResponse:
    """Tests for PendingOperationResponse schema."""

    def test_from_operation(self) -> None:
        """Test conversion from a queued operation."""
        op = PendingOperation.create("acct-1", OperationType.STAR, ["m1"])

        schema = PendingOperationResponse.model_validate(op)

        assert schema.id == op.id
        assert schema.type == "star"
        assert schema.retry_count == 0

    def test_invalid_type(self) -> None:
        """Test unknown operation types are rejected."""
        with pytest.raises(ValidationError):
            PendingOperationResponse(
                id="op-1",
                type="explode",
                message_ids=["m1"],
                created_at=datetime.now(UTC),
                retry_count=0,
            )


class TestSyncStatusSummary:
    """Tests for SyncStatusSummary schema."""

    def test_defaults(self) -> None:
        """Test optional counters default to zero."""
        schema = SyncStatusSummary(
            is_online=True,
            total_accounts=3,
            syncing_accounts=1,
            error_accounts=0,
            pending_operations=4,
        )

        assert schema.offline_accounts == 0
        assert schema.paused_accounts == 0
        assert schema.dropped_operations == 0
