"""Shared test fixtures for mailsync."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from mailsync.core.config import SyncConfig
from mailsync.integrations.gmail.client import GmailApiError
from mailsync.integrations.gmail.models import GmailLabel, GmailMessage, GmailMessageRef
from mailsync.providers.base import HistoryPage, MessagePage, WatchRegistration
from mailsync.sync.connectivity import ConnectivityMonitor
from mailsync.sync.events import SyncEvent, SyncEventBus
from mailsync.sync.operations import OfflineOperationQueue
from mailsync.sync.orchestrator import SyncOrchestrator
from mailsync.sync.retry import RetryPolicy
from mailsync.sync.state import Account, AccountRegistry
from mailsync.sync.store import MailStateStore


def make_message(
    message_id: str,
    thread_id: str | None = None,
    label_ids: list[str] | None = None,
    history_id: str = "1",
    date_sent: datetime | None = None,
) -> GmailMessage:
    """Build a parsed message with sensible defaults."""
    return GmailMessage(
        id=message_id,
        thread_id=thread_id or f"t-{message_id}",
        history_id=history_id,
        message_id=f"<{message_id}@example.com>",
        subject=f"Subject {message_id}",
        from_address="sender@example.com",
        date_sent=date_sent or datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        snippet="",
        size_bytes=100,
        label_ids=list(label_ids) if label_ids is not None else ["INBOX"],
    )


class FakeMailProvider:
    """In-memory MailProvider with scriptable failures.

    Messages are listed in insertion order; page tokens are offsets.
    """

    def __init__(self) -> None:
        self.labels: list[GmailLabel] = [GmailLabel(id="INBOX", name="INBOX", type="system")]
        self.messages: dict[str, GmailMessage] = {}
        self.history_cursor: str | None = "100"
        self.history_pages: list[HistoryPage] = []
        self.message_errors: dict[str, Exception] = {}
        self.watch_expires_at = datetime.now(UTC) + timedelta(days=7)
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.list_gate: asyncio.Event | None = None
        self.batch_gate: asyncio.Event | None = None
        self._failures: dict[str, list[Any]] = {}

    def add_messages(self, *messages: GmailMessage) -> None:
        for message in messages:
            self.messages[message.id] = message

    def fail(self, method: str, exc: Exception, times: int | None = None) -> None:
        """Make ``method`` raise ``exc`` (``times`` calls, or forever)."""
        self._failures[method] = [exc, times]

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _check(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        entry = self._failures.get(method)
        if entry is None:
            return
        exc, times = entry
        if times is not None:
            if times <= 0:
                del self._failures[method]
                return
            entry[1] = times - 1
        raise exc

    async def list_labels(self, account_id: str) -> list[GmailLabel]:
        self._check("list_labels", account_id)
        return list(self.labels)

    async def get_history_cursor(self, account_id: str) -> str | None:
        self._check("get_history_cursor", account_id)
        return self.history_cursor

    async def list_messages(
        self,
        account_id: str,
        page_token: str | None = None,
        max_results: int = 50,
        label_ids: list[str] | None = None,
        query: str | None = None,
    ) -> MessagePage:
        self._check("list_messages", account_id, page_token)
        if self.list_gate is not None:
            await self.list_gate.wait()
        ids = list(self.messages)
        start = int(page_token or 0)
        end = start + max_results
        refs = [GmailMessageRef(id=mid, thread_id=self.messages[mid].thread_id) for mid in ids[start:end]]
        return MessagePage(refs=refs, next_page_token=str(end) if end < len(ids) else None)

    async def get_message(self, account_id: str, message_id: str) -> GmailMessage:
        self._check("get_message", account_id, message_id)
        return self.messages[message_id]

    async def batch_get_messages(
        self, account_id: str, message_ids: list[str]
    ) -> list[GmailMessage | Exception]:
        self._check("batch_get_messages", account_id, tuple(message_ids))
        if self.batch_gate is not None:
            await self.batch_gate.wait()
        results: list[GmailMessage | Exception] = []
        for message_id in message_ids:
            if message_id in self.message_errors:
                results.append(self.message_errors[message_id])
            elif message_id in self.messages:
                results.append(self.messages[message_id])
            else:
                results.append(GmailApiError("Not Found", status_code=404))
        return results

    async def get_history(
        self, account_id: str, cursor: str, page_token: str | None = None
    ) -> HistoryPage:
        self._check("get_history", account_id, cursor, page_token)
        index = int(page_token or 0)
        if index >= len(self.history_pages):
            return HistoryPage(records=[], cursor=cursor)
        page = self.history_pages[index]
        next_token = str(index + 1) if index + 1 < len(self.history_pages) else None
        return HistoryPage(records=page.records, next_page_token=next_token, cursor=page.cursor)

    async def modify_labels(
        self,
        account_id: str,
        message_ids: list[str],
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> None:
        self._check("modify_labels", account_id, tuple(message_ids), add_label_ids, remove_label_ids)

    async def trash_messages(self, account_id: str, message_ids: list[str]) -> None:
        self._check("trash_messages", account_id, tuple(message_ids))

    async def watch(self, account_id: str, topic_name: str) -> WatchRegistration:
        self._check("watch", account_id, topic_name)
        return WatchRegistration(cursor=self.history_cursor, expires_at=self.watch_expires_at)

    async def stop_watch(self, account_id: str) -> None:
        self._check("stop_watch", account_id)


@pytest.fixture
def sync_config() -> SyncConfig:
    """Config with fast retries and push disabled."""
    return SyncConfig(
        _env_file=None,
        enable_push_notifications=False,
        polling_interval=3600.0,
        max_retries=3,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        page_size=2,
        batch_size=2,
        request_timeout=5.0,
    )


@pytest.fixture
def message_factory() -> Any:
    """The ``make_message`` builder."""
    return make_message


@pytest.fixture
def provider() -> FakeMailProvider:
    return FakeMailProvider()


@pytest.fixture
def registry() -> AccountRegistry:
    registry = AccountRegistry()
    registry.add(Account(id="acct-1", email="one@example.com"))
    return registry


@pytest.fixture
def store() -> MailStateStore:
    return MailStateStore()


@pytest.fixture
def events() -> SyncEventBus:
    return SyncEventBus()


@pytest.fixture
def recorded_events(events: SyncEventBus) -> list[SyncEvent]:
    """Every event emitted on the ``events`` bus."""
    received: list[SyncEvent] = []
    events.add_listener(received.append)
    return received


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture
def retry_policy(sync_config: SyncConfig) -> RetryPolicy:
    return RetryPolicy.from_config(sync_config)


@pytest.fixture
def queue(
    registry: AccountRegistry,
    provider: FakeMailProvider,
    store: MailStateStore,
    connectivity: ConnectivityMonitor,
    events: SyncEventBus,
    retry_policy: RetryPolicy,
) -> OfflineOperationQueue:
    return OfflineOperationQueue(
        registry=registry,
        provider=provider,
        store=store,
        connectivity=connectivity,
        events=events,
        retry_policy=retry_policy,
    )


@pytest.fixture
def orchestrator(
    registry: AccountRegistry,
    provider: FakeMailProvider,
    store: MailStateStore,
    queue: OfflineOperationQueue,
    events: SyncEventBus,
    connectivity: ConnectivityMonitor,
    sync_config: SyncConfig,
    retry_policy: RetryPolicy,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        registry=registry,
        provider=provider,
        store=store,
        queue=queue,
        events=events,
        connectivity=connectivity,
        config=sync_config,
        retry_policy=retry_policy,
    )


@pytest.fixture
def raw_gmail_message() -> dict[str, Any]:
    """A messages.get (format=full) response with a multipart body."""
    return {
        "id": "msg123",
        "threadId": "thread456",
        "historyId": "9001",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Hello there",
        "sizeEstimate": 2048,
        "internalDate": "1704103200000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Message-ID", "value": "<abc@example.com>"},
                {"name": "Subject", "value": "Quarterly report"},
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "bob@example.com, \"Carol, C\" <carol@example.com>"},
                {"name": "Date", "value": "Mon, 1 Jan 2024 10:00:00 +0000"},
                {"name": "References", "value": "<r1@example.com> r2@example.com"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": "SGVsbG8gdGhlcmU"}},
                        {"mimeType": "text/html", "body": {"data": "PHA-SGk8L3A-"}},
                    ],
                },
                {
                    "mimeType": "application/pdf",
                    "filename": "report.pdf",
                    "body": {"attachmentId": "ATT1", "size": 5000},
                },
            ],
        },
    }
