"""Remote mail provider contract used by the sync engine.

The orchestrator, offline queue, pager and push bridge only talk to a
``MailProvider``. Every method is keyed by account ID; the implementation
resolves credentials for that account itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mailsync.integrations.gmail.models import GmailLabel, GmailMessage, GmailMessageRef


class MailProviderError(Exception):
    """Base exception for provider-level failures.

    Attributes:
        account_id: Account the failing call was made for.
    """

    def __init__(self, message: str, account_id: str | None = None) -> None:
        super().__init__(message)
        self.account_id = account_id


class HistoryCursorExpiredError(MailProviderError):
    """Raised when the provider no longer accepts a history cursor."""

    def __init__(self, cursor: str, account_id: str | None = None) -> None:
        super().__init__(f"History cursor {cursor!r} is expired or invalid", account_id)
        self.cursor = cursor


@dataclass
class MessagePage:
    """One page of a message listing."""

    refs: list[GmailMessageRef]
    next_page_token: str | None = None


@dataclass
class HistoryRecord:
    """One change-log entry, normalized to message IDs per change kind."""

    id: str
    messages_added: list[str] = field(default_factory=list)
    messages_deleted: list[str] = field(default_factory=list)
    labels_added: list[str] = field(default_factory=list)
    labels_removed: list[str] = field(default_factory=list)


@dataclass
class HistoryPage:
    """One page of history since a cursor."""

    records: list[HistoryRecord]
    next_page_token: str | None = None
    cursor: str | None = None


@dataclass
class WatchRegistration:
    """Result of registering a push subscription."""

    cursor: str | None
    expires_at: datetime


@runtime_checkable
class MailProvider(Protocol):
    """Operations the sync engine needs from the remote mail service."""

    async def list_labels(self, account_id: str) -> list[GmailLabel]:
        """List all labels of the mailbox."""
        ...

    async def get_history_cursor(self, account_id: str) -> str | None:
        """Return the mailbox's current history cursor."""
        ...

    async def list_messages(
        self,
        account_id: str,
        page_token: str | None = None,
        max_results: int = 50,
        label_ids: list[str] | None = None,
        query: str | None = None,
    ) -> MessagePage:
        """List one page of message references."""
        ...

    async def get_message(self, account_id: str, message_id: str) -> GmailMessage:
        """Fetch one full message."""
        ...

    async def batch_get_messages(
        self, account_id: str, message_ids: list[str]
    ) -> list[GmailMessage | Exception]:
        """Fetch several full messages; per-message failures are returned in place."""
        ...

    async def get_history(
        self, account_id: str, cursor: str, page_token: str | None = None
    ) -> HistoryPage:
        """Fetch changes since a cursor.

        Raises:
            HistoryCursorExpiredError: If the cursor is no longer retained.
        """
        ...

    async def modify_labels(
        self,
        account_id: str,
        message_ids: list[str],
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> None:
        """Apply a label delta to messages."""
        ...

    async def trash_messages(self, account_id: str, message_ids: list[str]) -> None:
        """Move messages to the trash."""
        ...

    async def watch(self, account_id: str, topic_name: str) -> WatchRegistration:
        """Register a time-limited push subscription."""
        ...

    async def stop_watch(self, account_id: str) -> None:
        """Remove the push subscription."""
        ...
