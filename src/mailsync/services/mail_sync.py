"""Composition root and presentation-facing facade of the sync engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mailsync.auth.coordinator import RefreshCoordinator
from mailsync.core.config import SyncConfig, get_sync_config
from mailsync.providers.gmail import GmailMailProvider
from mailsync.schemas.sync import AccountSyncStateResponse, SyncStatusSummary
from mailsync.services.polling import PollingScheduler
from mailsync.services.push_notification import NotificationResult, PushNotificationBridge
from mailsync.sync.connectivity import ConnectivityMonitor
from mailsync.sync.errors import ErrorClassifier, InvalidTransitionError
from mailsync.sync.events import SyncEventBus, SyncEventType
from mailsync.sync.operations import OfflineOperationQueue
from mailsync.sync.orchestrator import SyncOrchestrator
from mailsync.sync.pagination import MessagePager
from mailsync.sync.retry import RetryPolicy
from mailsync.sync.state import (
    Account,
    AccountRegistry,
    OperationType,
    PendingOperation,
    QuotaInfo,
    SyncStatus,
)
from mailsync.sync.store import MailStateStore

if TYPE_CHECKING:
    from types import TracebackType

    from mailsync.auth.provider import AuthProvider
    from mailsync.providers.base import MailProvider
    from mailsync.sync.results import SyncResult

logger = structlog.get_logger(__name__)


class MailSyncService:
    """Wires the sync components together for a multi-account client.

    Owns the account registry, the mailbox store, the event bus and the
    connectivity flag, and exposes the operations the presentation layer
    needs: account lifecycle, sync triggers, pause/resume, queued
    operations, pagination and state snapshots.

    Typical usage:
        service = MailSyncService.for_gmail(auth_provider)
        await service.add_account("acct-1", "me@example.com")
        await service.sync_account("acct-1")
        op = await service.enqueue_operation("acct-1", "star", ["m1"])
        await service.close()
    """

    def __init__(
        self,
        provider: MailProvider,
        auth_provider: AuthProvider | None = None,
        config: SyncConfig | None = None,
        events: SyncEventBus | None = None,
        connectivity: ConnectivityMonitor | None = None,
        store: MailStateStore | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            provider: Remote mail provider.
            auth_provider: Consulted for authentication status.
            config: Sync settings (environment-derived when omitted).
            events: Event bus (a new one when omitted).
            connectivity: Connectivity flag (online when omitted).
            store: Mailbox state store.
        """
        self.config = config or get_sync_config()
        self.provider = provider
        self.auth_provider = auth_provider
        self.events = events or SyncEventBus()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.store = store or MailStateStore()
        self.registry = AccountRegistry()
        self.classifier = ErrorClassifier()
        self.retry_policy = RetryPolicy.from_config(self.config)

        self.queue = OfflineOperationQueue(
            registry=self.registry,
            provider=provider,
            store=self.store,
            connectivity=self.connectivity,
            events=self.events,
            retry_policy=self.retry_policy,
            classifier=self.classifier,
            enabled=self.config.enable_offline_queue,
            request_timeout=self.config.request_timeout,
        )
        self.orchestrator = SyncOrchestrator(
            registry=self.registry,
            provider=provider,
            store=self.store,
            queue=self.queue,
            events=self.events,
            connectivity=self.connectivity,
            config=self.config,
            retry_policy=self.retry_policy,
            classifier=self.classifier,
            auth_provider=auth_provider,
        )
        self.push = PushNotificationBridge(
            registry=self.registry,
            provider=provider,
            orchestrator=self.orchestrator,
            events=self.events,
            connectivity=self.connectivity,
            config=self.config,
            retry_policy=self.retry_policy,
            classifier=self.classifier,
        )
        self.polling = PollingScheduler(
            registry=self.registry,
            orchestrator=self.orchestrator,
            connectivity=self.connectivity,
            interval=self.config.polling_interval,
        )
        self._unsubscribe_connectivity = self.connectivity.subscribe(
            self.orchestrator.handle_connectivity_change
        )

    @classmethod
    def for_gmail(
        cls, auth_provider: AuthProvider, config: SyncConfig | None = None
    ) -> MailSyncService:
        """Build a service talking to Gmail with tokens from ``auth_provider``."""
        config = config or get_sync_config()
        provider = GmailMailProvider(
            auth_provider,
            RefreshCoordinator(auth_provider),
            requests_per_second=config.requests_per_second,
            request_timeout=config.request_timeout,
        )
        return cls(provider, auth_provider=auth_provider, config=config)

    async def __aenter__(self) -> MailSyncService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # Accounts

    async def add_account(
        self,
        account_id: str,
        email: str,
        quota: QuotaInfo | None = None,
        initial_sync: bool = False,
    ) -> Account:
        """Register an authenticated account and start change detection.

        Args:
            account_id: Account ID.
            email: Mailbox address.
            quota: Storage quota, if known.
            initial_sync: Run a first sync before returning.

        Returns:
            The new account.

        Raises:
            ValueError: If the account already exists.
        """
        account = self.registry.add(Account(id=account_id, email=email, quota=quota))
        self.store.ensure_account(account_id)
        if self.auth_provider is not None:
            account.is_authenticated = await self.auth_provider.is_authenticated(account_id)
            account.state.auth_required = not account.is_authenticated

        self.polling.start(account_id)
        if self.config.enable_push_notifications:
            await self.push.register(account_id)

        await logger.ainfo("account_added", account_id=account_id)
        self.events.emit(
            SyncEventType.ACCOUNT_UPDATED,
            account_id,
            status=account.status.value,
            added=True,
        )

        if initial_sync:
            await self.orchestrator.sync_account(account_id)
        return account

    async def remove_account(self, account_id: str) -> None:
        """Remove an account and everything the engine holds for it.

        Raises:
            AccountNotFoundError: If the account is unknown.
        """
        self.registry.get(account_id)
        self.orchestrator.forget(account_id)
        await self.polling.stop(account_id)
        await self.push.unregister(account_id)
        discarded = self.queue.forget(account_id)
        self.store.remove_account(account_id)
        self.registry.remove(account_id)

        close_account = getattr(self.provider, "close_account", None)
        if close_account is not None:
            await close_account(account_id)

        await logger.ainfo(
            "account_removed", account_id=account_id, discarded_operations=discarded
        )
        self.events.emit(SyncEventType.ACCOUNT_UPDATED, account_id, removed=True)

    def get_account(self, account_id: str) -> Account:
        return self.registry.get(account_id)

    def get_account_state(self, account_id: str) -> AccountSyncStateResponse:
        """Snapshot one account's sync state.

        Raises:
            AccountNotFoundError: If the account is unknown.
        """
        return AccountSyncStateResponse.model_validate(self.registry.get_state(account_id))

    def get_overall_status(self) -> SyncStatusSummary:
        """Aggregate status across every account."""
        states = [account.state for account in self.registry]
        return SyncStatusSummary(
            is_online=self.connectivity.is_online,
            total_accounts=len(states),
            syncing_accounts=sum(1 for s in states if s.status == SyncStatus.SYNCING),
            error_accounts=sum(1 for s in states if s.status == SyncStatus.ERROR),
            offline_accounts=sum(1 for s in states if s.status == SyncStatus.OFFLINE),
            paused_accounts=sum(1 for s in states if s.status == SyncStatus.PAUSED),
            pending_operations=sum(len(s.pending_operations) for s in states),
            dropped_operations=sum(s.dropped_operations for s in states),
        )

    # Sync

    async def sync_account(self, account_id: str, force: bool = False) -> SyncResult:
        return await self.orchestrator.sync_account(account_id, force=force)

    async def sync_all_accounts(self) -> list[SyncResult]:
        return await self.orchestrator.sync_all_accounts()

    def pause_sync(self, account_id: str | None = None) -> list[str]:
        """Pause one account, or every account when ``account_id`` is None.

        Returns:
            IDs of the accounts that were paused.
        """
        account_ids = [account_id] if account_id else self.registry.ids()
        paused = []
        for target in account_ids:
            try:
                self.orchestrator.pause_account(target)
            except InvalidTransitionError as e:
                logger.info("pause_skipped", account_id=target, reason=str(e))
                continue
            paused.append(target)
        return paused

    async def resume_sync(self, account_id: str | None = None, sync: bool = True) -> list[str]:
        """Resume paused accounts and optionally sync them right away.

        Returns:
            IDs of the accounts that were resumed.
        """
        account_ids = [account_id] if account_id else self.registry.ids()
        resumed = [target for target in account_ids if self.orchestrator.resume_account(target)]
        if sync and resumed and self.connectivity.is_online:
            await self._sync_quietly(resumed)
        return resumed

    async def mark_reauthenticated(self, account_id: str, sync: bool = True) -> None:
        """Clear the re-authentication block of an account."""
        self.orchestrator.mark_reauthenticated(account_id)
        if sync and self.connectivity.is_online:
            await self._sync_quietly([account_id])
            await self.queue.drain(account_id)

    async def set_online(self, online: bool) -> bool:
        """Report a connectivity change.

        Returns:
            True if the flag changed.
        """
        return await self.connectivity.set_online(online)

    async def _sync_quietly(self, account_ids: list[str]) -> None:
        for account_id in account_ids:
            result = await self.orchestrator.sync_account(account_id)
            if not result.success:
                await logger.ainfo(
                    "follow_up_sync_failed", account_id=account_id, error=result.error
                )

    # Operations and views

    async def enqueue_operation(
        self,
        account_id: str,
        operation_type: OperationType | str,
        message_ids: list[str],
        label_id: str | None = None,
    ) -> PendingOperation:
        """Queue a mutating action; it is sent immediately when possible.

        Raises:
            ValueError: If the operation arguments are invalid.
            AccountNotFoundError: If the account is unknown.
            OfflineQueueDisabledError: If it cannot be sent and queuing is off.
        """
        operation = PendingOperation.create(account_id, operation_type, message_ids, label_id)
        await self.queue.enqueue(operation)
        return operation

    def create_pager(
        self,
        account_id: str,
        label_ids: list[str] | None = None,
        query: str | None = None,
        page_size: int | None = None,
    ) -> MessagePager:
        """Create pagination controls for one account view.

        Raises:
            AccountNotFoundError: If the account is unknown.
        """
        self.registry.get(account_id)
        return MessagePager(
            provider=self.provider,
            store=self.store,
            account_id=account_id,
            page_size=page_size or self.config.page_size,
            label_ids=label_ids,
            query=query,
            request_timeout=self.config.request_timeout,
        )

    async def handle_push_notification(self, message_data: str) -> NotificationResult:
        return await self.push.handle_notification(message_data)

    async def close(self) -> None:
        """Stop background tasks and release provider resources."""
        self._unsubscribe_connectivity()
        await self.polling.stop_all()
        await self.push.shutdown()
        await self.orchestrator.shutdown()
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        await logger.ainfo("mail_sync_closed", accounts=len(self.registry))
