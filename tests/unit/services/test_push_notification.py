"""Tests for PushNotificationBridge."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest import mock

import pytest

from mailsync.core.config import SyncConfig
from mailsync.integrations.gmail.client import GmailApiError
from mailsync.services.push_notification import (
    InvalidNotificationError,
    NotificationDeduplicator,
    PushNotificationBridge,
    parse_notification,
)
from mailsync.sync.connectivity import ConnectivityMonitor
from mailsync.sync.errors import AlreadySyncingError
from mailsync.sync.events import SyncEvent, SyncEventBus, SyncEventType
from mailsync.sync.orchestrator import SyncOrchestrator
from mailsync.sync.retry import RetryPolicy
from mailsync.sync.state import AccountRegistry, SyncStatus


def _encode(payload: object) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


def _notification(email: str = "one@example.com", history_id: str = "12345") -> str:
    return _encode({"emailAddress": email, "historyId": history_id})


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def push_config() -> SyncConfig:
    """Config with push enabled and quick retries."""
    return SyncConfig(
        _env_file=None,
        enable_push_notifications=True,
        push_topic_name="projects/test/topics/gmail",
        push_renewal_margin=3600.0,
        max_retries=1,
        retry_base_delay=0.01,
        retry_max_delay=0.01,
        request_timeout=5.0,
    )


@pytest.fixture
def bridge(
    registry: AccountRegistry,
    provider: Any,
    orchestrator: SyncOrchestrator,
    events: SyncEventBus,
    connectivity: ConnectivityMonitor,
    push_config: SyncConfig,
) -> PushNotificationBridge:
    """Bridge wired to the fake provider."""
    bridge = PushNotificationBridge(
        registry=registry,
        provider=provider,
        orchestrator=orchestrator,
        events=events,
        connectivity=connectivity,
        config=push_config,
        retry_policy=RetryPolicy.from_config(push_config),
    )
    return bridge


class TestNotificationDeduplicator:
    """Tests for NotificationDeduplicator."""

    def test_is_duplicate_returns_false_for_new_key(self) -> None:
        """Test new keys are not duplicates."""
        dedup = NotificationDeduplicator()

        assert dedup.is_duplicate("key1") is False

    def test_is_duplicate_returns_true_for_seen_key(self) -> None:
        """Test seen keys are duplicates."""
        dedup = NotificationDeduplicator()
        dedup.mark_processed("key1")

        assert dedup.is_duplicate("key1") is True
        assert len(dedup) == 1

    def test_expired_entries_are_removed(self) -> None:
        """Test expired entries are cleaned up."""
        dedup = NotificationDeduplicator(ttl_seconds=0.05)
        dedup.mark_processed("key1")

        time.sleep(0.1)

        assert dedup.is_duplicate("key1") is False

    def test_max_entries_eviction(self) -> None:
        """Test the least recently seen entry is evicted at capacity."""
        dedup = NotificationDeduplicator(max_entries=2)

        dedup.mark_processed("key1")
        dedup.mark_processed("key2")
        dedup.is_duplicate("key1")
        dedup.mark_processed("key3")

        assert dedup.is_duplicate("key2") is False
        assert dedup.is_duplicate("key1") is True
        assert dedup.is_duplicate("key3") is True


class TestParseNotification:
    """Tests for parse_notification."""

    def test_valid_notification(self) -> None:
        """Test a Gmail payload is decoded."""
        data = parse_notification(_notification(history_id="987"))

        assert data.email_address == "one@example.com"
        assert data.history_id == "987"
        assert data.raw_data["historyId"] == "987"

    @pytest.mark.parametrize(
        "message_data",
        [
            "not-base64!!!",
            base64.b64encode(b"not json").decode(),
            _encode(["a", "list"]),
            _encode({"historyId": "1"}),
            _encode({"emailAddress": "one@example.com"}),
        ],
    )
    def test_invalid_notifications(self, message_data: str) -> None:
        """Test malformed payloads raise InvalidNotificationError."""
        with pytest.raises(InvalidNotificationError):
            parse_notification(message_data)


class TestPushNotificationBridgeRegistration:
    """Tests for watch registration and renewal."""

    @pytest.mark.asyncio
    async def test_register_stores_subscription(
        self, bridge: PushNotificationBridge, provider: Any, registry: AccountRegistry
    ) -> None:
        """Test a successful watch is recorded and a renewal scheduled."""
        subscription = await bridge.register("acct-1")

        assert subscription is not None
        assert subscription.enabled
        assert subscription.cursor == "100"
        assert registry.get_state("acct-1").push_subscription is subscription
        assert bridge.has_renewal("acct-1")
        assert provider.calls[-1] == ("watch", ("acct-1", "projects/test/topics/gmail"))
        await bridge.shutdown()

    @pytest.mark.asyncio
    async def test_register_disabled(
        self, bridge: PushNotificationBridge, provider: Any
    ) -> None:
        """Test nothing happens when push is turned off."""
        bridge.config.enable_push_notifications = False

        assert await bridge.register("acct-1") is None
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_register_retries_then_gives_up(
        self, bridge: PushNotificationBridge, provider: Any, registry: AccountRegistry
    ) -> None:
        """Test a failing watch is retried and then left to polling."""
        provider.fail("watch", GmailApiError("Backend Error", status_code=503))

        subscription = await bridge.register("acct-1")

        assert subscription is None
        assert provider.call_count("watch") == 2
        assert not registry.get_state("acct-1").push_subscription.enabled
        assert not bridge.has_renewal("acct-1")

    @pytest.mark.asyncio
    async def test_renew_expiring(
        self, bridge: PushNotificationBridge, provider: Any, registry: AccountRegistry
    ) -> None:
        """Test subscriptions inside the renewal margin are renewed."""
        provider.watch_expires_at = datetime.now(UTC) + timedelta(minutes=10)
        await bridge.register("acct-1")
        provider.watch_expires_at = datetime.now(UTC) + timedelta(days=7)

        renewed = await bridge.renew_expiring()

        assert renewed == ["acct-1"]
        assert registry.get_state("acct-1").push_subscription.expires_at == provider.watch_expires_at
        await bridge.shutdown()

    @pytest.mark.asyncio
    async def test_renewal_fires_before_expiry(
        self, bridge: PushNotificationBridge, provider: Any
    ) -> None:
        """Test a short-lived watch renews itself halfway through its lifetime."""
        provider.watch_expires_at = datetime.now(UTC) + timedelta(milliseconds=100)
        await bridge.register("acct-1")
        provider.watch_expires_at = datetime.now(UTC) + timedelta(days=7)

        task = bridge._renewals["acct-1"]
        await task

        assert provider.call_count("watch") == 2
        assert bridge.has_renewal("acct-1")
        await bridge.shutdown()

    @pytest.mark.asyncio
    async def test_unregister(
        self, bridge: PushNotificationBridge, provider: Any, registry: AccountRegistry
    ) -> None:
        """Test unregistering stops the watch and clears the subscription."""
        await bridge.register("acct-1")

        await bridge.unregister("acct-1")

        assert provider.call_count("stop_watch") == 1
        assert not registry.get_state("acct-1").push_subscription.enabled
        assert not bridge.has_renewal("acct-1")


class TestPushNotificationBridgeNotifications:
    """Tests for notification handling."""

    @pytest.mark.asyncio
    async def test_triggers_sync(
        self,
        bridge: PushNotificationBridge,
        provider: Any,
        message_factory: Any,
        recorded_events: list[SyncEvent],
    ) -> None:
        """Test a notification syncs the matching account."""
        provider.add_messages(message_factory("m1"))

        result = await bridge.handle_notification(_notification(email="ONE@example.com"))

        assert result.success
        assert result.account_id == "acct-1"
        assert result.new_messages == 1
        received = [e for e in recorded_events if e.type == SyncEventType.PUSH_NOTIFICATION_RECEIVED]
        assert received[0].data["history_id"] == "12345"

    @pytest.mark.asyncio
    async def test_duplicate_skipped(
        self, bridge: PushNotificationBridge, provider: Any
    ) -> None:
        """Test the same notification is only acted on once."""
        first = await bridge.handle_notification(_notification())
        second = await bridge.handle_notification(_notification())

        assert first.skipped is False
        assert second.skipped is True
        assert provider.call_count("list_labels") == 1

    @pytest.mark.asyncio
    async def test_invalid_notification(self, bridge: PushNotificationBridge) -> None:
        """Test undecodable data is reported, not raised."""
        result = await bridge.handle_notification("%%%")

        assert result.success is False
        assert result.error is not None

    @pytest.mark.asyncio
    async def test_unknown_account(self, bridge: PushNotificationBridge) -> None:
        """Test notifications for unknown mailboxes are rejected."""
        result = await bridge.handle_notification(_notification(email="nobody@example.com"))

        assert result.success is False
        assert "nobody@example.com" in result.error

    @pytest.mark.asyncio
    async def test_paused_account_skipped(
        self,
        bridge: PushNotificationBridge,
        provider: Any,
        orchestrator: SyncOrchestrator,
        registry: AccountRegistry,
    ) -> None:
        """Test paused accounts ignore notifications."""
        orchestrator.pause_account("acct-1")

        result = await bridge.handle_notification(_notification())

        assert result.skipped
        assert registry.get_state("acct-1").status == SyncStatus.PAUSED
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_sync_in_progress_skipped(
        self, bridge: PushNotificationBridge, orchestrator: SyncOrchestrator
    ) -> None:
        """Test a notification during a running sync is not an error."""
        with mock.patch.object(
            orchestrator, "sync_account", side_effect=AlreadySyncingError("acct-1")
        ):
            result = await bridge.handle_notification(_notification())

        assert result.success
        assert result.skipped

    @pytest.mark.asyncio
    async def test_notification_during_sync_triggers_follow_up(
        self,
        bridge: PushNotificationBridge,
        provider: Any,
        orchestrator: SyncOrchestrator,
        registry: AccountRegistry,
    ) -> None:
        """Test a change reported mid-pass is picked up by one more pass."""
        provider.list_gate = asyncio.Event()
        running = asyncio.create_task(orchestrator.sync_account("acct-1"))
        await _wait_until(lambda: provider.call_count("list_messages") == 1)

        result = await bridge.handle_notification(_notification())
        provider.list_gate.set()
        first = await running
        await _wait_until(lambda: provider.call_count("get_history") == 1)
        await _wait_until(lambda: registry.get_state("acct-1").status == SyncStatus.IDLE)

        assert result.success
        assert result.skipped
        assert first.success
        assert provider.call_count("list_labels") == 1
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_failed_sync_reported(
        self, bridge: PushNotificationBridge, provider: Any
    ) -> None:
        """Test a failing sync is surfaced in the result."""
        provider.fail("list_labels", GmailApiError("Bad", status_code=400))

        result = await bridge.handle_notification(_notification())

        assert result.success is False
        assert result.error == "Bad"

    @pytest.mark.asyncio
    async def test_batch(self, bridge: PushNotificationBridge) -> None:
        """Test notifications in a batch are handled in order."""
        results = await bridge.handle_notification_batch(
            [_notification(history_id="1"), _notification(history_id="1"), "%%%"]
        )

        assert [r.skipped for r in results] == [False, True, False]
        assert results[2].success is False
