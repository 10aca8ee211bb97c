"""Offline queue for mutating mailbox operations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from mailsync.sync.errors import ErrorClassifier, ErrorKind, OfflineQueueDisabledError
from mailsync.sync.events import SyncEventType
from mailsync.sync.state import OperationType

if TYPE_CHECKING:
    from mailsync.providers.base import MailProvider
    from mailsync.sync.connectivity import ConnectivityMonitor
    from mailsync.sync.events import SyncEventBus
    from mailsync.sync.retry import RetryPolicy
    from mailsync.sync.state import AccountRegistry, AccountSyncState, PendingOperation
    from mailsync.sync.store import MailStateStore

logger = structlog.get_logger(__name__)


@dataclass
class DrainReport:
    """What a drain did with each operation it took from the queue.

    Attributes:
        account_id: Drained account.
        skipped: Nothing ran because the account was offline or needs re-auth.
        succeeded: IDs of operations the provider accepted.
        requeued: IDs put back for a later attempt.
        dropped: IDs given up on.
    """

    account_id: str
    skipped: bool = False
    succeeded: list[str] = field(default_factory=list)
    requeued: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


class OfflineOperationQueue:
    """Buffers user actions and replays them against the provider.

    Operations of one account run strictly in insertion order. A drain
    takes the whole queue, so operations enqueued while it runs wait for
    the next drain.

    Example:
        op = PendingOperation.create("acct-1", OperationType.STAR, ["m1"])
        await queue.enqueue(op)
        report = await queue.drain("acct-1")
    """

    def __init__(
        self,
        registry: AccountRegistry,
        provider: MailProvider,
        store: MailStateStore,
        connectivity: ConnectivityMonitor,
        events: SyncEventBus,
        retry_policy: RetryPolicy,
        classifier: ErrorClassifier | None = None,
        enabled: bool = True,
        request_timeout: float = 30.0,
    ) -> None:
        """Initialize the queue.

        Args:
            registry: Accounts and their sync state.
            provider: Remote mail provider.
            store: Receives optimistic updates.
            connectivity: Global online flag.
            events: Event bus for drop notifications.
            retry_policy: Supplies ``max_retries`` and retryable kinds.
            classifier: Failure classifier.
            enabled: Whether operations may be buffered at all.
            request_timeout: Timeout for each provider call.
        """
        self.registry = registry
        self.provider = provider
        self.store = store
        self.connectivity = connectivity
        self.events = events
        self.retry_policy = retry_policy
        self.classifier = classifier or ErrorClassifier()
        self.enabled = enabled
        self.request_timeout = request_timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    def _can_send(self, state: AccountSyncState) -> bool:
        return self.connectivity.is_online and not state.auth_required

    def pending(self, account_id: str) -> list[PendingOperation]:
        return list(self.registry.get_state(account_id).pending_operations)

    def total_pending(self) -> int:
        return sum(len(account.state.pending_operations) for account in self.registry)

    async def enqueue(self, operation: PendingOperation) -> DrainReport | None:
        """Queue an operation and try to send it right away.

        Returns:
            The report of the immediate drain, or None if nothing was sent.

        Raises:
            AccountNotFoundError: If the operation's account is unknown.
            OfflineQueueDisabledError: If it cannot be sent now and buffering
                is disabled.
        """
        state = self.registry.get_state(operation.account_id)
        if not self.enabled and not self._can_send(state):
            raise OfflineQueueDisabledError(
                f"Cannot send {operation.type.value} for {operation.account_id} while "
                "offline and the offline queue is disabled"
            )

        state.pending_operations.append(operation)
        self.store.apply_operation(operation)
        await logger.ainfo(
            "operation_enqueued",
            account_id=operation.account_id,
            operation_id=operation.id,
            operation_type=operation.type.value,
            message_count=len(operation.message_ids),
        )

        if self._can_send(state):
            return await self.drain(operation.account_id)
        return None

    async def _execute(self, operation: PendingOperation) -> None:
        if operation.type == OperationType.DELETE:
            call = self.provider.trash_messages(operation.account_id, operation.message_ids)
        else:
            add, remove = operation.label_delta()
            call = self.provider.modify_labels(
                operation.account_id,
                operation.message_ids,
                add_label_ids=add or None,
                remove_label_ids=remove or None,
            )
        await asyncio.wait_for(call, timeout=self.request_timeout)

    async def drain(self, account_id: str) -> DrainReport:
        """Send every queued operation of an account in order.

        Raises:
            AccountNotFoundError: If the account is unknown.
        """
        state = self.registry.get_state(account_id)
        report = DrainReport(account_id=account_id)

        async with self._lock(account_id):
            if not self._can_send(state) or not state.pending_operations:
                report.skipped = not self._can_send(state)
                return report

            batch = list(state.pending_operations)
            state.pending_operations.clear()
            requeue: list[PendingOperation] = []

            for index, operation in enumerate(batch):
                try:
                    await self._execute(operation)
                except Exception as e:
                    classified = self.classifier.classify(e)
                    if classified.kind == ErrorKind.AUTHENTICATION_EXPIRED:
                        state.auth_required = True
                        requeue.extend(batch[index:])
                        report.requeued.extend(op.id for op in batch[index:])
                        await logger.awarning(
                            "operation_drain_halted",
                            account_id=account_id,
                            operation_id=operation.id,
                            remaining=len(batch) - index,
                        )
                        break

                    operation.retry_count += 1
                    if (
                        self.retry_policy.is_retryable(classified)
                        and operation.retry_count < self.retry_policy.max_retries
                    ):
                        requeue.append(operation)
                        report.requeued.append(operation.id)
                        await logger.ainfo(
                            "operation_requeued",
                            account_id=account_id,
                            operation_id=operation.id,
                            retry_count=operation.retry_count,
                            error_kind=classified.kind.value,
                        )
                    else:
                        await self._drop(state, operation, classified.kind, classified.message)
                        report.dropped.append(operation.id)
                else:
                    report.succeeded.append(operation.id)

            # Put retries ahead of operations enqueued during the drain.
            state.pending_operations[:0] = requeue

        if report.succeeded or report.dropped:
            await logger.ainfo(
                "operations_drained",
                account_id=account_id,
                succeeded=len(report.succeeded),
                requeued=len(report.requeued),
                dropped=len(report.dropped),
            )
        return report

    async def _drop(
        self,
        state: AccountSyncState,
        operation: PendingOperation,
        kind: ErrorKind,
        message: str,
    ) -> None:
        state.dropped_operations += 1
        await logger.awarning(
            "operation_dropped",
            account_id=operation.account_id,
            operation_id=operation.id,
            operation_type=operation.type.value,
            retry_count=operation.retry_count,
            error_kind=kind.value,
            error=message,
        )
        self.events.emit(
            SyncEventType.OPERATION_DROPPED,
            operation.account_id,
            operation_id=operation.id,
            operation_type=operation.type.value,
            error_kind=kind.value,
            error=message,
            dropped_operations=state.dropped_operations,
        )

    def forget(self, account_id: str) -> int:
        """Discard the queue of a removed account.

        Returns:
            Number of operations discarded.
        """
        self._locks.pop(account_id, None)
        if account_id not in self.registry:
            return 0
        state = self.registry.get_state(account_id)
        count = len(state.pending_operations)
        state.pending_operations.clear()
        return count
