"""Outcome of one sync pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mailsync.integrations.gmail.models import GmailLabel, GmailMessage
    from mailsync.sync.errors import ErrorKind


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass(frozen=True)
class SyncResult:
    """Immutable record of a single sync attempt.

    Attributes:
        account_id: Account that was synced.
        success: Whether the pass completed.
        sync_type: Path actually taken.
        new_messages: Messages not seen before.
        updated_messages: Known messages whose content or labels changed.
        deleted_message_ids: Messages removed remotely.
        new_labels: Labels not seen before.
        updated_labels: Known labels whose fields changed.
        history_cursor: Cursor to resume incremental sync from.
        duration_ms: Wall time of the attempt.
        error: Short error message when ``success`` is false.
        error_kind: Classification of the error.
        fell_back_to_full: Incremental sync was abandoned for a full sync.
    """

    account_id: str
    success: bool
    sync_type: SyncType = SyncType.FULL
    new_messages: tuple[GmailMessage, ...] = field(default_factory=tuple)
    updated_messages: tuple[GmailMessage, ...] = field(default_factory=tuple)
    deleted_message_ids: tuple[str, ...] = field(default_factory=tuple)
    new_labels: tuple[GmailLabel, ...] = field(default_factory=tuple)
    updated_labels: tuple[GmailLabel, ...] = field(default_factory=tuple)
    history_cursor: str | None = None
    duration_ms: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None
    fell_back_to_full: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_messages
            or self.updated_messages
            or self.deleted_message_ids
            or self.new_labels
            or self.updated_labels
        )

    @classmethod
    def failure(
        cls,
        account_id: str,
        error: str,
        error_kind: ErrorKind | None = None,
        sync_type: SyncType = SyncType.FULL,
        duration_ms: int = 0,
    ) -> SyncResult:
        return cls(
            account_id=account_id,
            success=False,
            sync_type=sync_type,
            error=error,
            error_kind=error_kind,
            duration_ms=duration_ms,
        )
