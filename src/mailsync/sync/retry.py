"""Exponential backoff policy."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from mailsync.sync.errors import RETRYABLE_KINDS, ClassifiedError, ErrorClassifier, ErrorKind

if TYPE_CHECKING:
    from mailsync.core.config import SyncConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Decides whether and when a failed call is retried.

    Backoff grows as ``base_delay * multiplier ** attempt`` and is capped at
    ``max_delay``. A server-provided ``retry_after`` replaces the computed
    value. Authentication failures are never retried.

    Example:
        policy = RetryPolicy.from_config(config)
        labels = await policy.run(lambda: provider.list_labels("acct-1"), classifier)
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        retryable_kinds: frozenset[ErrorKind] = RETRYABLE_KINDS,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay < 0 or max_delay < base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.retryable_kinds = retryable_kinds - {ErrorKind.AUTHENTICATION_EXPIRED}

    @classmethod
    def from_config(cls, config: SyncConfig) -> RetryPolicy:
        """Build a policy from sync settings."""
        return cls(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            multiplier=config.retry_multiplier,
        )

    def compute_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Return the delay in seconds before retry number ``attempt``.

        Args:
            attempt: Zero-based retry attempt.
            retry_after: Server-requested delay, which takes precedence.
        """
        if retry_after is not None and retry_after >= 0:
            return retry_after
        return min(self.max_delay, self.base_delay * self.multiplier ** max(attempt, 0))

    def is_retryable(self, classified: ClassifiedError) -> bool:
        return classified.kind in self.retryable_kinds

    def should_retry(self, classified: ClassifiedError, attempt: int) -> bool:
        """Check whether a failure on ``attempt`` (zero-based) gets another try."""
        return self.is_retryable(classified) and attempt < self.max_retries

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        classifier: ErrorClassifier,
    ) -> T:
        """Await ``operation``, retrying retryable failures with backoff.

        Args:
            operation: Factory returning a fresh awaitable per attempt.
            classifier: Used to decide retryability.

        Returns:
            The operation's result.

        Raises:
            Exception: The last failure once retries are exhausted, or the
                first non-retryable failure.
        """

        def wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            retry_after = classifier.classify(error).retry_after if error else None
            return self.compute_delay(retry_state.attempt_number - 1, retry_after)

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                "retrying_operation",
                attempt=retry_state.attempt_number,
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error_kind=classifier.classify(error).kind.value if error else None,
            )

        def retryable(error: BaseException) -> bool:
            # Cancellation is never retried.
            return isinstance(error, Exception) and self.is_retryable(classifier.classify(error))

        retrying = AsyncRetrying(
            retry=retry_if_exception(retryable),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait,
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )
        return await retrying(operation)

    @staticmethod
    async def _sleep(seconds: float) -> None:
        await asyncio.sleep(seconds)
