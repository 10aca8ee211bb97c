"""Tests for SyncEventBus and ConnectivityMonitor."""

from __future__ import annotations

import asyncio
from unittest import mock

import pytest

from mailsync.sync.connectivity import ConnectivityMonitor
from mailsync.sync.events import SyncEvent, SyncEventBus, SyncEventType


class TestSyncEventBus:
    """Tests for SyncEventBus."""

    def test_typed_and_wildcard_listeners(self) -> None:
        """Test typed listeners only see their type; wildcards see all."""
        bus = SyncEventBus()
        typed: list[SyncEvent] = []
        everything: list[SyncEvent] = []
        bus.add_listener(typed.append, SyncEventType.SYNC_COMPLETED)
        bus.add_listener(everything.append)

        bus.emit(SyncEventType.SYNC_STARTED, "a")
        bus.emit(SyncEventType.SYNC_COMPLETED, "a", new_messages=2)

        assert [e.type for e in typed] == [SyncEventType.SYNC_COMPLETED]
        assert typed[0].data == {"new_messages": 2}
        assert len(everything) == 2

    def test_remove_listener(self) -> None:
        """Test the returned remover detaches the listener."""
        bus = SyncEventBus()
        listener = mock.MagicMock()
        remove = bus.add_listener(listener)

        remove()
        bus.emit(SyncEventType.ACCOUNT_UPDATED, "a")

        listener.assert_not_called()
        assert bus.listener_count() == 0

    def test_failing_listener_does_not_break_emit(self) -> None:
        """Test a raising listener is skipped."""
        bus = SyncEventBus()
        received: list[SyncEvent] = []
        bus.add_listener(mock.MagicMock(side_effect=RuntimeError("boom")))
        bus.add_listener(received.append)

        event = bus.emit(SyncEventType.SYNC_ERROR, "a", error="x")

        assert received == [event]

    @pytest.mark.asyncio
    async def test_stream(self) -> None:
        """Test async streams receive events emitted after opening."""
        bus = SyncEventBus()
        stream = bus.stream()
        next_event = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        bus.emit(SyncEventType.NEW_MESSAGES, "a", count=1)
        event = await asyncio.wait_for(next_event, timeout=1)

        assert event.type == SyncEventType.NEW_MESSAGES
        await stream.aclose()


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    @pytest.mark.asyncio
    async def test_notifies_on_change_only(self) -> None:
        """Test subscribers run only when the flag flips."""
        monitor = ConnectivityMonitor()
        callback = mock.AsyncMock()
        monitor.subscribe(callback)

        assert await monitor.set_online(True) is False
        assert await monitor.set_online(False) is True

        callback.assert_awaited_once_with(False)
        assert monitor.is_online is False

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self) -> None:
        """Test a failing subscriber does not stop the next one."""
        monitor = ConnectivityMonitor()
        second = mock.AsyncMock()
        monitor.subscribe(mock.AsyncMock(side_effect=RuntimeError("boom")))
        monitor.subscribe(second)

        await monitor.set_online(False)

        second.assert_awaited_once_with(False)

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        """Test unsubscribed callbacks are not called."""
        monitor = ConnectivityMonitor(online=False)
        callback = mock.AsyncMock()
        unsubscribe = monitor.subscribe(callback)

        unsubscribe()
        await monitor.set_online(True)

        callback.assert_not_awaited()
