"""In-memory mailbox state exposed to the presentation layer."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from mailsync.sync.state import OperationType

if TYPE_CHECKING:
    from mailsync.integrations.gmail.models import GmailLabel, GmailMessage
    from mailsync.sync.results import SyncResult
    from mailsync.sync.state import PendingOperation

logger = structlog.get_logger(__name__)

StoreListener = Callable[[str], None]


@dataclass
class AccountSlice:
    """Cached messages, threads and labels of one account."""

    messages: dict[str, GmailMessage] = field(default_factory=dict)
    threads: dict[str, set[str]] = field(default_factory=dict)
    labels: dict[str, GmailLabel] = field(default_factory=dict)
    updated_at: datetime | None = None


class MailStateStore:
    """Observable per-account cache of mailbox state.

    Sync results and optimistic operation updates are the only writers.
    Listeners are called with the account ID after every change.
    """

    def __init__(self) -> None:
        self._slices: dict[str, AccountSlice] = {}
        self._listeners: list[StoreListener] = []

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, account_id: str) -> None:
        account = self._slices.get(account_id)
        if account is not None:
            account.updated_at = datetime.now(UTC)
        for listener in list(self._listeners):
            try:
                listener(account_id)
            except Exception:
                logger.exception("store_listener_failed", account_id=account_id)

    def _slice(self, account_id: str) -> AccountSlice:
        return self._slices.setdefault(account_id, AccountSlice())

    def _view(self, account_id: str) -> AccountSlice:
        # Reads never create a slice for an unknown account.
        account = self._slices.get(account_id)
        return account if account is not None else AccountSlice()

    def has_account(self, account_id: str) -> bool:
        return account_id in self._slices

    def ensure_account(self, account_id: str) -> None:
        self._slice(account_id)

    def remove_account(self, account_id: str) -> None:
        """Drop everything cached for an account."""
        self._slices.pop(account_id, None)

    # Reads

    def get_messages(self, account_id: str) -> list[GmailMessage]:
        """Messages of an account, newest first."""
        messages = list(self._view(account_id).messages.values())
        return sorted(messages, key=lambda m: m.date_sent, reverse=True)

    def get_message(self, account_id: str, message_id: str) -> GmailMessage | None:
        return self._view(account_id).messages.get(message_id)

    def message_ids(self, account_id: str) -> set[str]:
        return set(self._view(account_id).messages)

    def get_thread(self, account_id: str, thread_id: str) -> list[GmailMessage]:
        """Messages of a thread, oldest first."""
        account = self._view(account_id)
        messages = [account.messages[mid] for mid in account.threads.get(thread_id, ())]
        return sorted(messages, key=lambda m: m.date_sent)

    def get_thread_ids(self, account_id: str) -> list[str]:
        return list(self._view(account_id).threads)

    def get_labels(self, account_id: str) -> list[GmailLabel]:
        return list(self._view(account_id).labels.values())

    def get_label(self, account_id: str, label_id: str) -> GmailLabel | None:
        return self._view(account_id).labels.get(label_id)

    def message_count(self, account_id: str) -> int:
        return len(self._view(account_id).messages)

    # Writes

    def _put(self, account: AccountSlice, message: GmailMessage) -> None:
        previous = account.messages.get(message.id)
        if previous is not None and previous.thread_id != message.thread_id:
            self._unlink(account, previous)
        account.messages[message.id] = message
        account.threads.setdefault(message.thread_id, set()).add(message.id)

    def _unlink(self, account: AccountSlice, message: GmailMessage) -> None:
        members = account.threads.get(message.thread_id)
        if members is None:
            return
        members.discard(message.id)
        if not members:
            del account.threads[message.thread_id]

    def upsert_messages(
        self, account_id: str, messages: Iterable[GmailMessage]
    ) -> tuple[list[GmailMessage], list[GmailMessage]]:
        """Insert or replace messages.

        Returns:
            Tuple of (messages that were new, messages that replaced a cached copy).
        """
        account = self._slice(account_id)
        new: list[GmailMessage] = []
        updated: list[GmailMessage] = []
        for message in messages:
            if message.id in account.messages:
                updated.append(message)
            else:
                new.append(message)
            self._put(account, message)
        if new or updated:
            self._notify(account_id)
        return new, updated

    def remove_messages(self, account_id: str, message_ids: Iterable[str]) -> list[str]:
        """Remove messages; unknown IDs are ignored.

        Returns:
            The IDs that were actually removed.
        """
        account = self._slice(account_id)
        removed = []
        for message_id in message_ids:
            message = account.messages.pop(message_id, None)
            if message is None:
                continue
            self._unlink(account, message)
            removed.append(message_id)
        if removed:
            self._notify(account_id)
        return removed

    def upsert_labels(self, account_id: str, labels: Iterable[GmailLabel]) -> None:
        account = self._slice(account_id)
        changed = False
        for label in labels:
            account.labels[label.id] = label
            changed = True
        if changed:
            self._notify(account_id)

    def apply_sync_result(self, result: SyncResult) -> None:
        """Fold a successful sync pass into the cache."""
        if not result.success:
            return
        account = self._slices.get(result.account_id)
        if account is None:
            logger.info("sync_result_discarded", account_id=result.account_id)
            return
        for label in (*result.new_labels, *result.updated_labels):
            account.labels[label.id] = label
        for message in (*result.new_messages, *result.updated_messages):
            self._put(account, message)
        for message_id in result.deleted_message_ids:
            message = account.messages.pop(message_id, None)
            if message is not None:
                self._unlink(account, message)
        if result.has_changes:
            self._notify(result.account_id)

    def apply_operation(self, operation: PendingOperation) -> list[str]:
        """Apply an operation's effect locally before the provider confirms it.

        Returns:
            IDs of cached messages that were changed.
        """
        account = self._slices.get(operation.account_id)
        if account is None:
            return []
        if operation.type == OperationType.DELETE:
            add, remove = ["TRASH"], ["INBOX"]
        else:
            add, remove = operation.label_delta()

        changed = []
        for message_id in operation.message_ids:
            message = account.messages.get(message_id)
            if message is None:
                continue
            message.apply_label_delta(add=add, remove=remove)
            changed.append(message_id)
        if changed:
            self._notify(operation.account_id)
        return changed
