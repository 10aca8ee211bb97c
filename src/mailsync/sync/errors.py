"""Sync exceptions and failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import httpx

from mailsync.auth.provider import AuthExpiredError
from mailsync.integrations.gmail.client import GmailApiError
from mailsync.integrations.gmail.parser import MailParseError
from mailsync.providers.base import HistoryCursorExpiredError


class SyncError(Exception):
    """Base exception for sync engine errors."""

    pass


class AccountNotFoundError(SyncError):
    """Raised when an operation names an unknown account."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class AlreadySyncingError(SyncError):
    """Raised when a non-forced sync is requested while one is in flight."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account {account_id} is already syncing")
        self.account_id = account_id


class InvalidTransitionError(SyncError):
    """Raised when the account state machine rejects a transition."""

    def __init__(self, account_id: str, current: str, target: str) -> None:
        super().__init__(f"Account {account_id}: cannot go from {current} to {target}")
        self.account_id = account_id
        self.current = current
        self.target = target


class SyncCancelledError(SyncError):
    """Raised inside a sync pass when its cancellation token trips."""

    pass


class OfflineQueueDisabledError(SyncError):
    """Raised when an operation cannot be sent and queuing is turned off."""

    pass


class ErrorKind(str, Enum):
    """Failure taxonomy used for retry decisions."""

    TRANSIENT_NETWORK = "transient_network"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    AUTHENTICATION_EXPIRED = "authentication_expired"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TRANSIENT_NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR}
)

RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

NOT_FOUND_STATUSES = frozenset({404, 410})
VALIDATION_STATUSES = frozenset({400, 409, 412, 422})


@dataclass(frozen=True)
class ClassifiedError:
    """A failure mapped onto the taxonomy.

    Attributes:
        kind: Error category.
        message: Short human-readable message.
        retryable: Whether the default policy would retry this kind.
        retry_after: Server-requested delay in seconds, if any.
        status_code: HTTP status code, if the failure came from a response.
    """

    kind: ErrorKind
    message: str
    retryable: bool
    retry_after: float | None = None
    status_code: int | None = None


class ErrorClassifier:
    """Maps exceptions raised by providers and parsers to ``ErrorKind``."""

    def __init__(self, retryable_kinds: frozenset[ErrorKind] = RETRYABLE_KINDS) -> None:
        self.retryable_kinds = retryable_kinds

    def classify(self, exc: BaseException) -> ClassifiedError:
        """Classify an exception.

        Args:
            exc: The failure to classify.

        Returns:
            The classification, including any server retry hint.
        """
        message = str(exc) or type(exc).__name__

        if isinstance(exc, AuthExpiredError):
            return self._build(ErrorKind.AUTHENTICATION_EXPIRED, message)
        if isinstance(exc, HistoryCursorExpiredError):
            return self._build(ErrorKind.NOT_FOUND, message)
        if isinstance(exc, MailParseError):
            return self._build(ErrorKind.VALIDATION, message)
        if isinstance(exc, GmailApiError):
            return self._classify_api_error(exc)
        if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
            return self._build(ErrorKind.TRANSIENT_NETWORK, message)
        if isinstance(exc, (TimeoutError, ConnectionError)):
            return self._build(ErrorKind.TRANSIENT_NETWORK, message)
        return self._build(ErrorKind.UNKNOWN, message)

    def _classify_api_error(self, exc: GmailApiError) -> ClassifiedError:
        status = exc.status_code
        message = exc.message

        if status == 401:
            kind = ErrorKind.AUTHENTICATION_EXPIRED
        elif status == 429 or (status == 403 and exc.reason in RATE_LIMIT_REASONS):
            kind = ErrorKind.RATE_LIMITED
        elif status is not None and 500 <= status < 600:
            kind = ErrorKind.SERVER_ERROR
        elif status == 408:
            kind = ErrorKind.TRANSIENT_NETWORK
        elif status in NOT_FOUND_STATUSES:
            kind = ErrorKind.NOT_FOUND
        elif status in VALIDATION_STATUSES:
            kind = ErrorKind.VALIDATION
        else:
            kind = ErrorKind.UNKNOWN

        retry_after = exc.retry_after if kind == ErrorKind.RATE_LIMITED else None
        return self._build(kind, message, retry_after=retry_after, status_code=status)

    def _build(
        self,
        kind: ErrorKind,
        message: str,
        retry_after: float | None = None,
        status_code: int | None = None,
    ) -> ClassifiedError:
        return ClassifiedError(
            kind=kind,
            message=message,
            retryable=kind in self.retryable_kinds,
            retry_after=retry_after,
            status_code=status_code,
        )
