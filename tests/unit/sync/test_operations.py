"""Tests for the offline operation queue."""

from __future__ import annotations

from typing import Any

import pytest

from mailsync.auth.provider import AuthExpiredError
from mailsync.integrations.gmail.client import GmailApiError
from mailsync.sync.connectivity import ConnectivityMonitor
from mailsync.sync.errors import AccountNotFoundError, OfflineQueueDisabledError
from mailsync.sync.events import SyncEvent, SyncEventType
from mailsync.sync.operations import OfflineOperationQueue
from mailsync.sync.state import AccountRegistry, OperationType, PendingOperation
from mailsync.sync.store import MailStateStore


def _op(op_type: OperationType = OperationType.STAR, *ids: str) -> PendingOperation:
    return PendingOperation.create("acct-1", op_type, list(ids) or ["m1"])


class TestEnqueue:
    """Tests for OfflineOperationQueue.enqueue."""

    @pytest.mark.asyncio
    async def test_online_sends_immediately(
        self, queue: OfflineOperationQueue, provider: Any
    ) -> None:
        """Test an online enqueue drains at once."""
        op = _op(OperationType.MARK_READ)

        report = await queue.enqueue(op)

        assert report is not None
        assert report.succeeded == [op.id]
        assert queue.pending("acct-1") == []
        assert provider.calls[-1] == ("modify_labels", ("acct-1", ("m1",), None, ["UNREAD"]))

    @pytest.mark.asyncio
    async def test_offline_buffers(
        self,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
        provider: Any,
    ) -> None:
        """Test operations wait while offline."""
        await connectivity.set_online(False)

        report = await queue.enqueue(_op())

        assert report is None
        assert len(queue.pending("acct-1")) == 1
        assert provider.call_count("modify_labels") == 0

    @pytest.mark.asyncio
    async def test_optimistic_update(
        self,
        queue: OfflineOperationQueue,
        store: MailStateStore,
        connectivity: ConnectivityMonitor,
        message_factory: Any,
    ) -> None:
        """Test the store reflects the action before it is sent."""
        await connectivity.set_online(False)
        store.upsert_messages("acct-1", [message_factory("m1", label_ids=["INBOX"])])

        await queue.enqueue(_op(OperationType.ARCHIVE))

        assert store.get_message("acct-1", "m1").label_ids == []

    @pytest.mark.asyncio
    async def test_disabled_queue_offline(
        self,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
    ) -> None:
        """Test a disabled queue refuses operations it cannot send."""
        queue.enabled = False
        await connectivity.set_online(False)

        with pytest.raises(OfflineQueueDisabledError):
            await queue.enqueue(_op())

        assert queue.pending("acct-1") == []

    @pytest.mark.asyncio
    async def test_disabled_queue_online(self, queue: OfflineOperationQueue) -> None:
        """Test a disabled queue still sends when it can."""
        queue.enabled = False

        report = await queue.enqueue(_op())

        assert report is not None
        assert len(report.succeeded) == 1

    @pytest.mark.asyncio
    async def test_unknown_account(self, queue: OfflineOperationQueue) -> None:
        """Test operations for unknown accounts are rejected."""
        with pytest.raises(AccountNotFoundError):
            await queue.enqueue(PendingOperation.create("nope", OperationType.STAR, ["m1"]))


class TestDrain:
    """Tests for OfflineOperationQueue.drain."""

    @pytest.mark.asyncio
    async def test_fifo_order(
        self,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
        provider: Any,
    ) -> None:
        """Test operations reach the provider in insertion order."""
        await connectivity.set_online(False)
        first = _op(OperationType.STAR, "a")
        second = _op(OperationType.DELETE, "b")
        third = _op(OperationType.UNSTAR, "c")
        for op in (first, second, third):
            await queue.enqueue(op)
        await connectivity.set_online(True)

        report = await queue.drain("acct-1")

        assert report.succeeded == [first.id, second.id, third.id]
        sent = [(name, args[1]) for name, args in provider.calls]
        assert sent == [("modify_labels", ("a",)), ("trash_messages", ("b",)), ("modify_labels", ("c",))]

    @pytest.mark.asyncio
    async def test_skipped_when_offline(
        self, queue: OfflineOperationQueue, connectivity: ConnectivityMonitor
    ) -> None:
        """Test nothing runs while offline."""
        await connectivity.set_online(False)
        await queue.enqueue(_op())

        report = await queue.drain("acct-1")

        assert report.skipped
        assert len(queue.pending("acct-1")) == 1

    @pytest.mark.asyncio
    async def test_retryable_failure_requeued_in_front(
        self,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
        provider: Any,
    ) -> None:
        """Test a transient failure keeps the operation at the head of the queue."""
        await connectivity.set_online(False)
        failing = _op(OperationType.DELETE, "a")
        later = _op(OperationType.STAR, "b")
        await queue.enqueue(failing)
        await queue.enqueue(later)
        await connectivity.set_online(True)
        provider.fail("trash_messages", GmailApiError("busy", status_code=503), times=1)

        report = await queue.drain("acct-1")

        assert report.requeued == [failing.id]
        assert report.succeeded == [later.id]
        assert [op.id for op in queue.pending("acct-1")] == [failing.id]
        assert failing.retry_count == 1

    @pytest.mark.asyncio
    async def test_dropped_after_max_retries(
        self,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
        provider: Any,
        registry: AccountRegistry,
        recorded_events: list[SyncEvent],
    ) -> None:
        """Test an operation is attempted at most max_retries times."""
        await connectivity.set_online(False)
        op = _op()
        await queue.enqueue(op)
        await connectivity.set_online(True)
        provider.fail("modify_labels", TimeoutError())

        for _ in range(5):
            await queue.drain("acct-1")

        assert provider.call_count("modify_labels") == queue.retry_policy.max_retries
        assert queue.pending("acct-1") == []
        assert registry.get_state("acct-1").dropped_operations == 1
        dropped = [e for e in recorded_events if e.type == SyncEventType.OPERATION_DROPPED]
        assert len(dropped) == 1
        assert dropped[0].data["operation_id"] == op.id

    @pytest.mark.asyncio
    async def test_non_retryable_dropped_immediately(
        self,
        queue: OfflineOperationQueue,
        provider: Any,
        registry: AccountRegistry,
    ) -> None:
        """Test permanent failures are dropped without a retry."""
        provider.fail("modify_labels", GmailApiError("bad", status_code=400))

        report = await queue.enqueue(_op())

        assert report is not None
        assert len(report.dropped) == 1
        assert registry.get_state("acct-1").dropped_operations == 1

    @pytest.mark.asyncio
    async def test_auth_failure_halts_drain(
        self,
        queue: OfflineOperationQueue,
        connectivity: ConnectivityMonitor,
        provider: Any,
        registry: AccountRegistry,
    ) -> None:
        """Test expired credentials stop the drain and keep everything queued."""
        await connectivity.set_online(False)
        ops = [_op(OperationType.STAR, "a"), _op(OperationType.STAR, "b")]
        for op in ops:
            await queue.enqueue(op)
        await connectivity.set_online(True)
        provider.fail("modify_labels", AuthExpiredError("acct-1"))

        report = await queue.drain("acct-1")

        state = registry.get_state("acct-1")
        assert state.auth_required
        assert report.requeued == [op.id for op in ops]
        assert [op.id for op in queue.pending("acct-1")] == [op.id for op in ops]
        assert all(op.retry_count == 0 for op in ops)
        assert provider.call_count("modify_labels") == 1
        assert (await queue.drain("acct-1")).skipped

    def test_forget(self, queue: OfflineOperationQueue, registry: AccountRegistry) -> None:
        """Test forgetting an account discards its queue."""
        registry.get_state("acct-1").pending_operations.append(_op())

        assert queue.forget("acct-1") == 1
        assert queue.total_pending() == 0
        assert queue.forget("unknown") == 0
