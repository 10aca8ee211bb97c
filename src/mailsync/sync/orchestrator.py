"""Per-account sync driver.

``SyncOrchestrator.sync_account`` owns the whole life of a sync pass:
it checks preconditions, moves the account through its state machine,
runs either an incremental (history based) or a full sync, folds the
result into the store, drains the offline queue and emits events.
Failures are reported in the returned ``SyncResult``; only unknown
accounts and concurrent non-forced calls raise.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Iterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

import structlog

from mailsync.auth.provider import AuthExpiredError
from mailsync.sync.cancellation import CancellationToken
from mailsync.sync.errors import (
    ErrorClassifier,
    ErrorKind,
    SyncCancelledError,
    SyncError,
)
from mailsync.sync.events import SyncEventType
from mailsync.sync.pagination import PaginationCursor
from mailsync.sync.results import SyncResult, SyncType
from mailsync.sync.retry import RetryPolicy
from mailsync.sync.state import SyncStatus

if TYPE_CHECKING:
    from mailsync.auth.provider import AuthProvider
    from mailsync.core.config import SyncConfig
    from mailsync.integrations.gmail.models import GmailLabel, GmailMessage
    from mailsync.providers.base import MailProvider
    from mailsync.sync.connectivity import ConnectivityMonitor
    from mailsync.sync.events import SyncEventBus
    from mailsync.sync.operations import OfflineOperationQueue
    from mailsync.sync.state import Account, AccountRegistry, AccountSyncState
    from mailsync.sync.store import MailStateStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Failures of an incremental pass that mean "start over with a full sync".
FALLBACK_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.VALIDATION})

# Message fetch failures that skip the message instead of failing the pass.
SKIPPABLE_FETCH_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.VALIDATION})

# Cached messages in these labels are outside a default listing.
UNLISTED_LABELS = frozenset({"TRASH", "SPAM"})


def _chunks(items: list[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _label_changed(old: GmailLabel, new: GmailLabel) -> bool:
    return (
        old.name != new.name
        or old.type != new.type
        or old.messages_total != new.messages_total
        or old.messages_unread != new.messages_unread
        or old.color != new.color
    )


def _message_changed(old: GmailMessage, new: GmailMessage) -> bool:
    return old.history_id != new.history_id or old.label_ids != new.label_ids


class SyncOrchestrator:
    """Runs full and incremental syncs for registered accounts.

    Example:
        orchestrator = SyncOrchestrator(
            registry, provider, store, queue, events, connectivity, config
        )
        result = await orchestrator.sync_account("acct-1")
        results = await orchestrator.sync_all_accounts()
    """

    def __init__(
        self,
        registry: AccountRegistry,
        provider: MailProvider,
        store: MailStateStore,
        queue: OfflineOperationQueue,
        events: SyncEventBus,
        connectivity: ConnectivityMonitor,
        config: SyncConfig,
        retry_policy: RetryPolicy | None = None,
        classifier: ErrorClassifier | None = None,
        auth_provider: AuthProvider | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            registry: Accounts and their sync state.
            provider: Remote mail provider.
            store: Local mailbox state.
            queue: Offline operation queue drained after every pass.
            events: Event bus for the presentation layer.
            connectivity: Global online flag.
            config: Sync settings.
            retry_policy: Backoff policy (built from config when omitted).
            classifier: Failure classifier.
            auth_provider: Consulted for ``is_authenticated`` before a pass.
        """
        self.registry = registry
        self.provider = provider
        self.store = store
        self.queue = queue
        self.events = events
        self.connectivity = connectivity
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)
        self.classifier = classifier or ErrorClassifier()
        self.auth_provider = auth_provider
        self._tokens: dict[str, CancellationToken] = {}
        self._retry_tasks: dict[str, asyncio.Task[None]] = {}
        self._pause_requested: set[str] = set()
        self._resync_requested: set[str] = set()
        self._follow_ups: dict[str, asyncio.Task[None]] = {}

    # Public API

    async def sync_account(
        self,
        account_id: str,
        force: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> SyncResult:
        """Sync one account.

        Args:
            account_id: Account to sync.
            force: Run a full sync, pre-empting any pass in flight.
            cancel_token: Optional token the caller can trip to stop the pass.

        Returns:
            The outcome of the pass.

        Raises:
            AccountNotFoundError: If the account is unknown.
            AlreadySyncingError: If a pass is in flight and ``force`` is false.
        """
        account = self.registry.get(account_id)
        state = account.state

        if state.status == SyncStatus.PAUSED:
            return self._skipped(account_id, "Sync is paused")
        if state.status == SyncStatus.OFFLINE or not self.connectivity.is_online:
            return self._skipped(account_id, "Offline")

        # Status check and transition happen before the first await.
        generation = state.begin_sync(force=force)
        self.store.ensure_account(account_id)
        previous = self._tokens.get(account_id)
        if previous is not None:
            previous.cancel("Pre-empted by a forced sync")
        token = cancel_token or CancellationToken()
        self._tokens[account_id] = token
        self._cancel_retry(account_id)

        incremental = bool(
            self.config.enable_incremental_sync and state.last_history_cursor and not force
        )
        self.events.emit(
            SyncEventType.SYNC_STARTED,
            account_id,
            sync_type=(SyncType.INCREMENTAL if incremental else SyncType.FULL).value,
            force=force,
        )

        try:
            with structlog.contextvars.bound_contextvars(account_id=account_id):
                result = await self._run_pass(account, generation, token, incremental)
        finally:
            if self._tokens.get(account_id) is token:
                del self._tokens[account_id]

        if state.is_current(generation):
            self._honor_resync_request(account)
        return result

    async def sync_all_accounts(self) -> list[SyncResult]:
        """Sync every account concurrently.

        Returns:
            One result per account, in registry order. Raised preconditions
            are converted into failed results.
        """
        account_ids = self.registry.ids()
        outcomes = await asyncio.gather(
            *(self.sync_account(account_id) for account_id in account_ids),
            return_exceptions=True,
        )

        results: list[SyncResult] = []
        for account_id, outcome in zip(account_ids, outcomes, strict=True):
            if isinstance(outcome, SyncResult):
                results.append(outcome)
                continue
            kind = None
            if isinstance(outcome, Exception) and not isinstance(outcome, SyncError):
                kind = self.classifier.classify(outcome).kind
            results.append(
                SyncResult.failure(account_id, str(outcome) or type(outcome).__name__, kind)
            )
        return results

    def cancel_sync(self, account_id: str, reason: str = "Cancelled") -> bool:
        """Trip the cancellation token of the pass in flight, if any."""
        token = self._tokens.get(account_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def request_resync(self, account_id: str) -> bool:
        """Ask for one more pass once the pass in flight ends.

        Changes reported while a pass is running may have landed after it
        read the mailbox; the follow-up pass picks them up.

        Returns:
            True if a pass is in flight and the request was recorded.
        """
        state = self.registry.get_state(account_id)
        if not state.is_syncing:
            return False
        self._resync_requested.add(account_id)
        return True

    def is_retry_scheduled(self, account_id: str) -> bool:
        task = self._retry_tasks.get(account_id)
        return task is not None and not task.done()

    def pause_account(self, account_id: str) -> None:
        """Stop automatic sync for an account.

        A pass in flight is cancelled and the account is paused when it ends.

        Raises:
            AccountNotFoundError: If the account is unknown.
            InvalidTransitionError: If the account is offline.
        """
        state = self.registry.get_state(account_id)
        self._cancel_retry(account_id)
        if state.status == SyncStatus.PAUSED:
            return
        if state.status == SyncStatus.SYNCING:
            self._pause_requested.add(account_id)
            self.cancel_sync(account_id, "Paused")
            return
        state.transition(SyncStatus.PAUSED)
        self._account_updated(state)

    def resume_account(self, account_id: str) -> bool:
        """Return a paused account to idle.

        Returns:
            True if the account was paused.
        """
        state = self.registry.get_state(account_id)
        self._pause_requested.discard(account_id)
        if state.status != SyncStatus.PAUSED:
            return False
        state.transition(SyncStatus.IDLE)
        self._account_updated(state)
        return True

    def mark_reauthenticated(self, account_id: str) -> None:
        """Clear the re-authentication block after the user signed in again."""
        account = self.registry.get(account_id)
        state = account.state
        account.is_authenticated = True
        state.auth_required = False
        state.retry_count = 0
        if state.status == SyncStatus.ERROR:
            state.transition(SyncStatus.IDLE)
        self._account_updated(state)

    async def handle_connectivity_change(self, online: bool) -> list[str]:
        """React to the global online flag flipping.

        Going offline parks idle and error accounts in offline. Coming back
        online returns offline accounts to idle and resyncs them together
        with accounts whose last failure was retryable.

        Returns:
            IDs of the accounts whose status changed or that were resynced.
        """
        self.events.emit(SyncEventType.CONNECTION_STATUS_CHANGED, None, online=online)
        touched: list[str] = []

        if not online:
            for account in self.registry:
                state = account.state
                if state.status in (SyncStatus.IDLE, SyncStatus.ERROR):
                    self._cancel_retry(account.id)
                    state.transition(SyncStatus.OFFLINE)
                    self._account_updated(state)
                    touched.append(account.id)
            return touched

        for account in self.registry:
            state = account.state
            if state.status == SyncStatus.OFFLINE:
                state.transition(SyncStatus.IDLE)
                self._account_updated(state)
                touched.append(account.id)
            elif (
                state.status == SyncStatus.ERROR
                and not state.auth_required
                and state.last_error_kind in self.retry_policy.retryable_kinds
            ):
                touched.append(account.id)

        if touched:
            await logger.ainfo("reconnect_resync", account_count=len(touched))
            outcomes = await asyncio.gather(
                *(self.sync_account(account_id) for account_id in touched),
                return_exceptions=True,
            )
            for account_id, outcome in zip(touched, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    await logger.ainfo(
                        "reconnect_resync_skipped", account_id=account_id, error=str(outcome)
                    )
        return touched

    def forget(self, account_id: str) -> None:
        """Drop runtime bookkeeping of a removed account."""
        self.cancel_sync(account_id, "Account removed")
        self._cancel_retry(account_id)
        self._pause_requested.discard(account_id)
        self._resync_requested.discard(account_id)
        follow_up = self._follow_ups.pop(account_id, None)
        if follow_up is not None and follow_up is not asyncio.current_task():
            follow_up.cancel()

    async def shutdown(self) -> None:
        """Cancel scheduled retries and any pass in flight."""
        for token in list(self._tokens.values()):
            token.cancel("Shutting down")
        tasks = [*self._retry_tasks.values(), *self._follow_ups.values()]
        self._retry_tasks.clear()
        self._follow_ups.clear()
        self._resync_requested.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # Pass execution

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.config.request_timeout)

    async def _run_pass(
        self,
        account: Account,
        generation: int,
        token: CancellationToken,
        incremental: bool,
    ) -> SyncResult:
        state = account.state
        started = time.monotonic()
        await logger.ainfo(
            "sync_started",
            sync_type="incremental" if incremental else "full",
            generation=generation,
        )

        try:
            await self._check_auth(account)
            if incremental:
                result = await self._incremental_with_fallback(account.id, state, token)
            else:
                result = await self._full_sync(account.id, token)
        except SyncCancelledError as e:
            return await self._finish_cancelled(account, generation, str(e), started)
        except Exception as e:
            return await self._finish_failure(account, generation, e, started, incremental)

        return await self._finish_success(account, generation, result, started, token)

    async def _check_auth(self, account: Account) -> None:
        if account.state.auth_required:
            raise AuthExpiredError(account.id)
        if self.auth_provider is not None:
            authenticated = await self._call(self.auth_provider.is_authenticated(account.id))
            account.is_authenticated = authenticated
            if not authenticated:
                raise AuthExpiredError(account.id)

    async def _incremental_with_fallback(
        self, account_id: str, state: AccountSyncState, token: CancellationToken
    ) -> SyncResult:
        cursor = state.last_history_cursor or ""
        try:
            return await self._incremental_sync(account_id, cursor, token)
        except SyncCancelledError:
            raise
        except Exception as e:
            classified = self.classifier.classify(e)
            if classified.kind not in FALLBACK_KINDS:
                raise
            await logger.awarning(
                "history_cursor_rejected",
                cursor=cursor,
                error_kind=classified.kind.value,
                error=classified.message,
            )
        return await self._full_sync(account_id, token, fell_back_to_full=True)

    async def _full_sync(
        self,
        account_id: str,
        token: CancellationToken,
        fell_back_to_full: bool = False,
    ) -> SyncResult:
        labels = await self._call(self.provider.list_labels(account_id))
        new_labels, updated_labels = self._diff_labels(account_id, labels)

        # Captured before listing so changes made during the listing are
        # replayed by the next incremental pass.
        history_cursor = await self._call(self.provider.get_history_cursor(account_id))

        label_filter = self.config.label_filter
        limit = self.config.full_sync_max_messages
        cursor = PaginationCursor(page_size=self.config.page_size)
        listed: set[str] = set()
        new_messages: list[GmailMessage] = []
        updated_messages: list[GmailMessage] = []
        truncated = False
        page_token: str | None = None

        while True:
            token.raise_if_cancelled()
            page = await self._call(
                self.provider.list_messages(
                    account_id,
                    page_token=page_token,
                    max_results=cursor.page_size,
                    label_ids=label_filter,
                )
            )
            cursor.advance(page_token, page.next_page_token)

            refs = page.refs
            if limit is not None and len(listed) + len(refs) >= limit:
                truncated = len(listed) + len(refs) > limit or cursor.has_next
                refs = refs[: limit - len(listed)]

            for batch in _chunks([ref.id for ref in refs], self.config.batch_size):
                token.raise_if_cancelled()
                fetched, _missing = await self._fetch_messages(account_id, batch)
                for message in fetched:
                    cached = self.store.get_message(account_id, message.id)
                    if cached is None:
                        new_messages.append(message)
                    elif _message_changed(cached, message):
                        updated_messages.append(message)
            listed.update(ref.id for ref in refs)

            await logger.adebug(
                "full_sync_page",
                page=cursor.page_number,
                loaded=cursor.loaded_count,
                listed=len(listed),
            )
            if truncated or not cursor.has_next:
                break
            page_token = cursor.next_page_token

        deleted: list[str] = []
        if not truncated and label_filter is None:
            for message_id in sorted(self.store.message_ids(account_id) - listed):
                cached = self.store.get_message(account_id, message_id)
                if cached is not None and UNLISTED_LABELS.intersection(cached.label_ids):
                    continue
                deleted.append(message_id)

        return SyncResult(
            account_id=account_id,
            success=True,
            sync_type=SyncType.FULL,
            new_messages=tuple(new_messages),
            updated_messages=tuple(updated_messages),
            deleted_message_ids=tuple(deleted),
            new_labels=tuple(new_labels),
            updated_labels=tuple(updated_labels),
            history_cursor=history_cursor,
            fell_back_to_full=fell_back_to_full,
        )

    async def _incremental_sync(
        self, account_id: str, cursor: str, token: CancellationToken
    ) -> SyncResult:
        changed: dict[str, None] = {}
        deleted: dict[str, None] = {}
        latest = cursor
        page_token: str | None = None

        while True:
            token.raise_if_cancelled()
            page = await self._call(self.provider.get_history(account_id, cursor, page_token))
            for record in page.records:
                for message_id in (
                    *record.messages_added,
                    *record.labels_added,
                    *record.labels_removed,
                ):
                    if message_id not in deleted:
                        changed[message_id] = None
                for message_id in record.messages_deleted:
                    changed.pop(message_id, None)
                    deleted[message_id] = None
            if page.cursor:
                latest = page.cursor
            if not page.next_page_token:
                break
            page_token = page.next_page_token

        new_messages: list[GmailMessage] = []
        updated_messages: list[GmailMessage] = []
        for batch in _chunks(list(changed), self.config.batch_size):
            token.raise_if_cancelled()
            fetched, missing = await self._fetch_messages(account_id, batch)
            for message in fetched:
                if self.store.get_message(account_id, message.id) is None:
                    new_messages.append(message)
                else:
                    updated_messages.append(message)
            # Gone between the history read and the fetch.
            for message_id in missing:
                deleted[message_id] = None

        await logger.adebug(
            "history_applied",
            changed=len(changed),
            deleted=len(deleted),
            cursor=latest,
        )
        return SyncResult(
            account_id=account_id,
            success=True,
            sync_type=SyncType.INCREMENTAL,
            new_messages=tuple(new_messages),
            updated_messages=tuple(updated_messages),
            deleted_message_ids=tuple(deleted),
            history_cursor=latest,
        )

    async def _fetch_messages(
        self, account_id: str, message_ids: list[str]
    ) -> tuple[list[GmailMessage], list[str]]:
        """Fetch a batch of messages.

        Returns:
            Tuple of (fetched messages, IDs the provider no longer has).
            Unparseable messages are skipped; other failures are raised.
        """
        if not message_ids:
            return [], []
        results = await self._call(self.provider.batch_get_messages(account_id, message_ids))

        fetched: list[GmailMessage] = []
        missing: list[str] = []
        for message_id, result in zip(message_ids, results, strict=True):
            if not isinstance(result, Exception):
                fetched.append(result)
                continue
            classified = self.classifier.classify(result)
            if classified.kind not in SKIPPABLE_FETCH_KINDS:
                raise result
            await logger.awarning(
                "message_fetch_skipped",
                message_id=message_id,
                error_kind=classified.kind.value,
                error=classified.message,
            )
            if classified.kind == ErrorKind.NOT_FOUND:
                missing.append(message_id)
        return fetched, missing

    def _diff_labels(
        self, account_id: str, labels: list[GmailLabel]
    ) -> tuple[list[GmailLabel], list[GmailLabel]]:
        new: list[GmailLabel] = []
        updated: list[GmailLabel] = []
        for label in labels:
            cached = self.store.get_label(account_id, label.id)
            if cached is None:
                new.append(label)
            elif _label_changed(cached, label):
                updated.append(label)
        return new, updated

    # Pass completion

    async def _finish_success(
        self,
        account: Account,
        generation: int,
        result: SyncResult,
        started: float,
        token: CancellationToken,
    ) -> SyncResult:
        state = account.state
        duration_ms = int((time.monotonic() - started) * 1000)

        if self._is_removed(account):
            return await self._finish_removed(account, result.sync_type, duration_ms)
        if not state.is_current(generation):
            await logger.ainfo("stale_sync_discarded", generation=generation)
            return SyncResult.failure(
                account.id, "Superseded by a newer sync", sync_type=result.sync_type
            )
        if token.is_cancelled:
            return await self._finish_cancelled(
                account, generation, token.reason or "Sync cancelled", started
            )

        result = SyncResult(
            account_id=result.account_id,
            success=True,
            sync_type=result.sync_type,
            new_messages=result.new_messages,
            updated_messages=result.updated_messages,
            deleted_message_ids=result.deleted_message_ids,
            new_labels=result.new_labels,
            updated_labels=result.updated_labels,
            history_cursor=result.history_cursor or state.last_history_cursor,
            duration_ms=duration_ms,
            fell_back_to_full=result.fell_back_to_full,
        )

        self.store.apply_sync_result(result)
        # Keep optimistic updates visible until the provider confirms them.
        for operation in state.pending_operations:
            self.store.apply_operation(operation)

        state.record_success(result.history_cursor)
        if account.id in self._pause_requested:
            self._pause_requested.discard(account.id)
            state.transition(SyncStatus.PAUSED)
        elif not self.connectivity.is_online:
            state.transition(SyncStatus.OFFLINE)

        await self.queue.drain(account.id)

        await logger.ainfo(
            "sync_completed",
            sync_type=result.sync_type.value,
            new_messages=len(result.new_messages),
            updated_messages=len(result.updated_messages),
            deleted_messages=len(result.deleted_message_ids),
            fell_back_to_full=result.fell_back_to_full,
            duration_ms=duration_ms,
        )
        if result.new_messages:
            self.events.emit(
                SyncEventType.NEW_MESSAGES,
                account.id,
                message_ids=[m.id for m in result.new_messages],
                count=len(result.new_messages),
            )
        if result.updated_messages or result.deleted_message_ids:
            self.events.emit(
                SyncEventType.MESSAGES_UPDATED,
                account.id,
                updated_ids=[m.id for m in result.updated_messages],
                deleted_ids=list(result.deleted_message_ids),
            )
        self.events.emit(SyncEventType.SYNC_COMPLETED, account.id, result=result)
        self._account_updated(state)
        return result

    async def _finish_cancelled(
        self,
        account: Account,
        generation: int,
        reason: str,
        started: float,
    ) -> SyncResult:
        state = account.state
        duration_ms = int((time.monotonic() - started) * 1000)
        if self._is_removed(account):
            return await self._finish_removed(account, SyncType.FULL, duration_ms)
        await logger.ainfo("sync_cancelled", reason=reason, generation=generation)

        if state.is_current(generation):
            if account.id in self._pause_requested:
                self._pause_requested.discard(account.id)
                state.transition(SyncStatus.IDLE)
                state.transition(SyncStatus.PAUSED)
            elif not self.connectivity.is_online:
                state.transition(SyncStatus.OFFLINE)
            else:
                state.transition(state.status_before_sync or SyncStatus.IDLE)
            self._account_updated(state)
        return SyncResult.failure(account.id, reason, duration_ms=duration_ms)

    async def _finish_failure(
        self,
        account: Account,
        generation: int,
        exc: Exception,
        started: float,
        incremental: bool,
    ) -> SyncResult:
        state = account.state
        duration_ms = int((time.monotonic() - started) * 1000)
        sync_type = SyncType.INCREMENTAL if incremental else SyncType.FULL
        if self._is_removed(account):
            return await self._finish_removed(account, sync_type, duration_ms)
        classified = self.classifier.classify(exc)
        failure = SyncResult.failure(
            account.id,
            classified.message,
            classified.kind,
            sync_type=sync_type,
            duration_ms=duration_ms,
        )

        if not state.is_current(generation):
            await logger.ainfo("stale_sync_failed", error=classified.message)
            return failure

        await logger.aerror(
            "sync_failed",
            error=classified.message,
            error_kind=classified.kind.value,
            status_code=classified.status_code,
            retry_count=state.retry_count,
        )

        if account.id in self._pause_requested:
            self._pause_requested.discard(account.id)
            state.restore_prior_status(classified.message, classified.kind)
            if state.status != SyncStatus.PAUSED:
                state.transition(SyncStatus.PAUSED)
        elif not self.connectivity.is_online:
            state.transition(SyncStatus.OFFLINE)
            state.last_error = classified.message
            state.last_error_kind = classified.kind
        elif classified.kind == ErrorKind.AUTHENTICATION_EXPIRED:
            account.is_authenticated = False
            state.record_failure(classified.message, classified.kind)
        elif self.retry_policy.is_retryable(classified):
            attempt = state.retry_count
            state.record_failure(classified.message, classified.kind)
            if self.retry_policy.should_retry(classified, attempt):
                delay = self.retry_policy.compute_delay(attempt, classified.retry_after)
                self._schedule_retry(account.id, delay)
            else:
                await logger.awarning("sync_retries_exhausted", retry_count=state.retry_count)
        else:
            state.restore_prior_status(classified.message, classified.kind)

        self.events.emit(
            SyncEventType.SYNC_ERROR,
            account.id,
            error=classified.message,
            error_kind=classified.kind.value,
            retry_scheduled=self.is_retry_scheduled(account.id),
        )
        self._account_updated(state)
        return failure

    def _is_removed(self, account: Account) -> bool:
        return account.id not in self.registry or self.registry.get(account.id) is not account

    async def _finish_removed(
        self, account: Account, sync_type: SyncType, duration_ms: int
    ) -> SyncResult:
        # The account is gone; nothing may be written back for it.
        await logger.ainfo("sync_discarded_account_removed")
        return SyncResult.failure(
            account.id, "Account removed", sync_type=sync_type, duration_ms=duration_ms
        )

    def _skipped(self, account_id: str, reason: str) -> SyncResult:
        logger.info("sync_skipped", account_id=account_id, reason=reason)
        return SyncResult.failure(account_id, reason)

    def _account_updated(self, state: AccountSyncState) -> None:
        self.events.emit(
            SyncEventType.ACCOUNT_UPDATED,
            state.account_id,
            status=state.status.value,
            retry_count=state.retry_count,
            auth_required=state.auth_required,
            last_error=state.last_error,
        )

    # Follow-up passes

    def _honor_resync_request(self, account: Account) -> None:
        if account.id not in self._resync_requested:
            return
        self._resync_requested.discard(account.id)
        state = account.state
        # Error accounts are covered by their retry, paused ones by resume.
        if (
            self._is_removed(account)
            or state.status != SyncStatus.IDLE
            or state.auth_required
            or not self.connectivity.is_online
        ):
            return
        previous = self._follow_ups.get(account.id)
        if (
            previous is not None
            and not previous.done()
            and previous is not asyncio.current_task()
        ):
            return
        self._follow_ups[account.id] = asyncio.create_task(
            self._follow_up(account.id), name=f"sync-follow-up-{account.id}"
        )

    async def _follow_up(self, account_id: str) -> None:
        await logger.ainfo("sync_follow_up", account_id=account_id)
        try:
            await self.sync_account(account_id)
        except SyncError as e:
            await logger.ainfo("sync_follow_up_skipped", account_id=account_id, error=str(e))
        finally:
            if self._follow_ups.get(account_id) is asyncio.current_task():
                del self._follow_ups[account_id]

    # Retry scheduling

    def _schedule_retry(self, account_id: str, delay: float) -> None:
        self._cancel_retry(account_id)
        state = self.registry.get_state(account_id)
        state.next_retry_at = datetime.now(UTC) + timedelta(seconds=delay)
        self._retry_tasks[account_id] = asyncio.create_task(
            self._retry_after(account_id, delay), name=f"sync-retry-{account_id}"
        )
        logger.info("sync_retry_scheduled", account_id=account_id, delay=delay)

    def _cancel_retry(self, account_id: str) -> None:
        task = self._retry_tasks.pop(account_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if account_id in self.registry:
            self.registry.get_state(account_id).next_retry_at = None

    async def _retry_after(self, account_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._retry_tasks.get(account_id) is asyncio.current_task():
            del self._retry_tasks[account_id]
        if account_id not in self.registry:
            return

        state = self.registry.get_state(account_id)
        state.next_retry_at = None
        if (
            state.status != SyncStatus.ERROR
            or state.auth_required
            or not self.connectivity.is_online
        ):
            return
        try:
            await self.sync_account(account_id)
        except SyncError as e:
            await logger.ainfo("sync_retry_skipped", account_id=account_id, error=str(e))
