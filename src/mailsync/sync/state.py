"""Per-account sync state machine and account registry."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from mailsync.sync.errors import (
    AccountNotFoundError,
    AlreadySyncingError,
    ErrorKind,
    InvalidTransitionError,
)


class SyncStatus(str, Enum):
    """Sync status of an account."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"
    PAUSED = "paused"


# syncing -> syncing is only reachable through begin_sync(force=True).
ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.IDLE: frozenset({SyncStatus.SYNCING, SyncStatus.OFFLINE, SyncStatus.PAUSED}),
    SyncStatus.SYNCING: frozenset({SyncStatus.IDLE, SyncStatus.ERROR, SyncStatus.OFFLINE}),
    SyncStatus.ERROR: frozenset(
        {SyncStatus.SYNCING, SyncStatus.IDLE, SyncStatus.OFFLINE, SyncStatus.PAUSED}
    ),
    SyncStatus.OFFLINE: frozenset({SyncStatus.IDLE}),
    SyncStatus.PAUSED: frozenset({SyncStatus.IDLE}),
}


class OperationType(str, Enum):
    """Mutating user actions that can be queued."""

    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    STAR = "star"
    UNSTAR = "unstar"
    DELETE = "delete"
    ARCHIVE = "archive"
    MOVE_LABEL = "move_label"


@dataclass
class PendingOperation:
    """A mutating action waiting to be sent to the provider.

    Attributes:
        id: Unique operation ID.
        account_id: Owning account.
        type: What the action does.
        message_ids: Target messages (never empty).
        label_id: Destination label, required for ``move_label``.
        created_at: When the user issued the action.
        retry_count: Failed attempts so far.
    """

    account_id: str
    type: OperationType
    message_ids: list[str]
    label_id: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    retry_count: int = 0

    def __post_init__(self) -> None:
        self.type = OperationType(self.type)
        if not self.message_ids:
            raise ValueError("message_ids must not be empty")
        if self.type == OperationType.MOVE_LABEL and not self.label_id:
            raise ValueError("label_id is required for move_label")

    @classmethod
    def create(
        cls,
        account_id: str,
        type: OperationType | str,  # noqa: A002
        message_ids: list[str],
        label_id: str | None = None,
    ) -> PendingOperation:
        """Create a new operation, validating its arguments."""
        return cls(
            account_id=account_id,
            type=OperationType(type),
            message_ids=list(message_ids),
            label_id=label_id,
        )

    def label_delta(self) -> tuple[list[str], list[str]]:
        """Return ``(add, remove)`` label IDs for label-changing operations."""
        if self.type == OperationType.MARK_READ:
            return [], ["UNREAD"]
        if self.type == OperationType.MARK_UNREAD:
            return ["UNREAD"], []
        if self.type == OperationType.STAR:
            return ["STARRED"], []
        if self.type == OperationType.UNSTAR:
            return [], ["STARRED"]
        if self.type == OperationType.ARCHIVE:
            return [], ["INBOX"]
        if self.type == OperationType.MOVE_LABEL:
            return [self.label_id or ""], []
        return [], []


@dataclass
class PushSubscription:
    """Push registration bookkeeping for an account."""

    enabled: bool = False
    expires_at: datetime | None = None
    cursor: str | None = None

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        """Check whether the subscription lapses within ``seconds``."""
        if not self.enabled or self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return (self.expires_at - now).total_seconds() <= seconds


@dataclass
class QuotaInfo:
    """Mailbox storage quota."""

    used_bytes: int
    limit_bytes: int

    @property
    def usage_ratio(self) -> float:
        if self.limit_bytes <= 0:
            return 0.0
        return self.used_bytes / self.limit_bytes


@dataclass
class AccountSyncState:
    """Mutable sync bookkeeping for one account.

    Status changes go through ``transition`` (or ``begin_sync``), which
    enforces the state machine. ``generation`` increases on every sync start
    so a pass pre-empted by a forced sync can tell that it is stale.
    """

    account_id: str
    status: SyncStatus = SyncStatus.IDLE
    last_history_cursor: str | None = None
    pending_operations: list[PendingOperation] = field(default_factory=list)
    retry_count: int = 0
    push_subscription: PushSubscription = field(default_factory=PushSubscription)
    last_sync_at: datetime | None = None
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None
    auth_required: bool = False
    dropped_operations: int = 0
    next_retry_at: datetime | None = None
    generation: int = 0
    status_before_sync: SyncStatus | None = None

    @property
    def is_syncing(self) -> bool:
        return self.status == SyncStatus.SYNCING

    def can_transition(self, target: SyncStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: SyncStatus) -> None:
        """Move to ``target``.

        Raises:
            AlreadySyncingError: If asked to enter syncing while syncing.
            InvalidTransitionError: If the state machine forbids the move.
        """
        target = SyncStatus(target)
        if target == SyncStatus.SYNCING and self.status == SyncStatus.SYNCING:
            raise AlreadySyncingError(self.account_id)
        if not self.can_transition(target):
            raise InvalidTransitionError(self.account_id, self.status.value, target.value)
        self.status = target

    def begin_sync(self, force: bool = False) -> int:
        """Enter syncing and start a new generation.

        Args:
            force: Pre-empt a sync that is already in flight.

        Returns:
            The generation number owned by the caller.
        """
        if self.status == SyncStatus.SYNCING:
            if not force:
                raise AlreadySyncingError(self.account_id)
        else:
            prior = self.status
            self.transition(SyncStatus.SYNCING)
            self.status_before_sync = prior
        self.generation += 1
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def record_success(self, cursor: str | None) -> None:
        self.transition(SyncStatus.IDLE)
        if cursor:
            self.last_history_cursor = cursor
        self.last_sync_at = datetime.now(UTC)
        self.retry_count = 0
        self.last_error = None
        self.last_error_kind = None
        self.next_retry_at = None

    def record_failure(self, message: str, kind: ErrorKind) -> None:
        """Enter error, remember the failure and count the attempt."""
        self.transition(SyncStatus.ERROR)
        self.last_error = message
        self.last_error_kind = kind
        self.retry_count += 1
        if kind == ErrorKind.AUTHENTICATION_EXPIRED:
            self.auth_required = True

    def restore_prior_status(self, message: str, kind: ErrorKind) -> None:
        """Leave syncing for the status held before the pass started.

        Used for failures that should not change the account's health. The
        error is still recorded for display.
        """
        prior = self.status_before_sync or SyncStatus.IDLE
        if prior not in (SyncStatus.IDLE, SyncStatus.ERROR):
            prior = SyncStatus.IDLE
        self.transition(prior)
        self.last_error = message
        self.last_error_kind = kind

    def reset_push_subscription(self) -> None:
        self.push_subscription = PushSubscription()


@dataclass
class Account:
    """A connected mailbox.

    Attributes:
        id: Account ID.
        email: Mailbox address, used to route push notifications.
        is_authenticated: Last known authentication status.
        quota: Storage quota, when known.
        state: The account's sync state.
    """

    id: str
    email: str
    is_authenticated: bool = True
    quota: QuotaInfo | None = None
    state: AccountSyncState = field(init=False)

    def __post_init__(self) -> None:
        self.state = AccountSyncState(account_id=self.id)

    @property
    def status(self) -> SyncStatus:
        return self.state.status


class AccountRegistry:
    """In-memory index of accounts by ID and email address."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    def __iter__(self) -> Iterator[Account]:
        return iter(list(self._accounts.values()))

    def add(self, account: Account) -> Account:
        if account.id in self._accounts:
            raise ValueError(f"Account {account.id} already exists")
        self._accounts[account.id] = account
        return account

    def get(self, account_id: str) -> Account:
        """Return an account.

        Raises:
            AccountNotFoundError: If the ID is unknown.
        """
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_state(self, account_id: str) -> AccountSyncState:
        return self.get(account_id).state

    def find_by_email(self, email: str) -> Account | None:
        email = email.strip().lower()
        for account in self._accounts.values():
            if account.email.lower() == email:
                return account
        return None

    def remove(self, account_id: str) -> Account:
        account = self.get(account_id)
        del self._accounts[account_id]
        return account

    def ids(self) -> list[str]:
        return list(self._accounts)
