"""Sync engine: state machine, orchestration, queueing and pagination."""

from mailsync.sync.cancellation import CancellationToken
from mailsync.sync.connectivity import ConnectivityMonitor
from mailsync.sync.errors import (
    AccountNotFoundError,
    AlreadySyncingError,
    ClassifiedError,
    ErrorClassifier,
    ErrorKind,
    InvalidTransitionError,
    OfflineQueueDisabledError,
    SyncCancelledError,
    SyncError,
)
from mailsync.sync.events import SyncEvent, SyncEventBus, SyncEventType
from mailsync.sync.operations import DrainReport, OfflineOperationQueue
from mailsync.sync.orchestrator import SyncOrchestrator
from mailsync.sync.pagination import MessagePager, PaginationCursor, PaginationState
from mailsync.sync.results import SyncResult, SyncType
from mailsync.sync.retry import RetryPolicy
from mailsync.sync.state import (
    Account,
    AccountRegistry,
    AccountSyncState,
    OperationType,
    PendingOperation,
    PushSubscription,
    QuotaInfo,
    SyncStatus,
)
from mailsync.sync.store import MailStateStore

__all__ = [
    "Account",
    "AccountNotFoundError",
    "AccountRegistry",
    "AccountSyncState",
    "AlreadySyncingError",
    "CancellationToken",
    "ClassifiedError",
    "ConnectivityMonitor",
    "DrainReport",
    "ErrorClassifier",
    "ErrorKind",
    "InvalidTransitionError",
    "MailStateStore",
    "MessagePager",
    "OfflineOperationQueue",
    "OfflineQueueDisabledError",
    "OperationType",
    "PaginationCursor",
    "PaginationState",
    "PendingOperation",
    "PushSubscription",
    "QuotaInfo",
    "RetryPolicy",
    "SyncCancelledError",
    "SyncError",
    "SyncEvent",
    "SyncEventBus",
    "SyncEventType",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStatus",
    "SyncType",
]
