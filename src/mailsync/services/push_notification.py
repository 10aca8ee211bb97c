"""Push-based change detection over Gmail watch + Pub/Sub."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from mailsync.sync.errors import AlreadySyncingError, ErrorClassifier
from mailsync.sync.events import SyncEventType
from mailsync.sync.state import PushSubscription, SyncStatus

if TYPE_CHECKING:
    from mailsync.core.config import SyncConfig
    from mailsync.providers.base import MailProvider, WatchRegistration
    from mailsync.sync.connectivity import ConnectivityMonitor
    from mailsync.sync.events import SyncEventBus
    from mailsync.sync.orchestrator import SyncOrchestrator
    from mailsync.sync.retry import RetryPolicy
    from mailsync.sync.state import AccountRegistry

logger = structlog.get_logger(__name__)


class PushNotificationError(Exception):
    """Base exception for push notification errors."""

    pass


class InvalidNotificationError(PushNotificationError):
    """Raised when notification data cannot be decoded."""

    pass


@dataclass
class NotificationData:
    """Decoded Pub/Sub payload.

    Attributes:
        email_address: Mailbox that changed.
        history_id: History ID at the time of the change.
        raw_data: Full decoded payload.
    """

    email_address: str
    history_id: str
    raw_data: dict[str, object] = field(default_factory=dict)


@dataclass
class NotificationResult:
    """Outcome of handling one notification.

    Attributes:
        success: Whether handling completed without error.
        account_id: Account the notification was routed to.
        new_messages: New messages found by the triggered sync.
        skipped: Nothing was synced (duplicate, paused, busy...).
        error: Error message if handling failed.
    """

    success: bool
    account_id: str | None = None
    new_messages: int = 0
    skipped: bool = False
    error: str | None = None


class NotificationDeduplicator:
    """Remembers recently handled notifications.

    Gmail may deliver the same change more than once. Entries expire after
    ``ttl_seconds``; beyond ``max_entries`` the least recently seen entry is
    evicted.
    """

    def __init__(self, ttl_seconds: float = 300, max_entries: int = 1000) -> None:
        self._seen: OrderedDict[str, float] = OrderedDict()
        self._ttl = ttl_seconds
        self._max_entries = max_entries

    def __len__(self) -> int:
        self._expire()
        return len(self._seen)

    def is_duplicate(self, key: str) -> bool:
        self._expire()
        if key in self._seen:
            self._seen.move_to_end(key)
            return True
        return False

    def mark_processed(self, key: str) -> None:
        self._expire()
        self._seen[key] = time.monotonic()
        self._seen.move_to_end(key)
        while len(self._seen) > self._max_entries:
            self._seen.popitem(last=False)

    def _expire(self) -> None:
        cutoff = time.monotonic() - self._ttl
        expired = [key for key, seen_at in self._seen.items() if seen_at < cutoff]
        for key in expired:
            del self._seen[key]


def parse_notification(message_data: str) -> NotificationData:
    """Decode a base64 Pub/Sub message from Gmail.

    Raises:
        InvalidNotificationError: If the payload is not valid base64 JSON or
            lacks ``emailAddress``/``historyId``.
    """
    try:
        decoded = base64.b64decode(message_data, validate=False)
        payload = json.loads(decoded)
    except (binascii.Error, ValueError) as e:
        raise InvalidNotificationError(f"Failed to decode notification: {e}") from e

    if not isinstance(payload, dict):
        raise InvalidNotificationError("Notification payload is not an object")

    email_address = payload.get("emailAddress")
    history_id = payload.get("historyId")
    if not email_address:
        raise InvalidNotificationError("Missing emailAddress in notification")
    if not history_id:
        raise InvalidNotificationError("Missing historyId in notification")

    return NotificationData(
        email_address=str(email_address),
        history_id=str(history_id),
        raw_data=payload,
    )


class PushNotificationBridge:
    """Keeps push subscriptions alive and turns notifications into syncs.

    Registration failures are logged and leave the account on polling
    alone. Each subscription is renewed ``push_renewal_margin`` seconds
    before it expires.

    Typical usage:
        bridge = PushNotificationBridge(registry, provider, orchestrator, events,
                                        connectivity, config, retry_policy)
        await bridge.register("acct-1")
        result = await bridge.handle_notification(pubsub_message_data)
    """

    def __init__(
        self,
        registry: AccountRegistry,
        provider: MailProvider,
        orchestrator: SyncOrchestrator,
        events: SyncEventBus,
        connectivity: ConnectivityMonitor,
        config: SyncConfig,
        retry_policy: RetryPolicy,
        classifier: ErrorClassifier | None = None,
        deduplicator: NotificationDeduplicator | None = None,
    ) -> None:
        self.registry = registry
        self.provider = provider
        self.orchestrator = orchestrator
        self.events = events
        self.connectivity = connectivity
        self.config = config
        self.retry_policy = retry_policy
        self.classifier = classifier or ErrorClassifier()
        self._deduplicator = deduplicator or NotificationDeduplicator()
        self._renewals: dict[str, asyncio.Task[None]] = {}

    def has_renewal(self, account_id: str) -> bool:
        task = self._renewals.get(account_id)
        return task is not None and not task.done()

    async def register(self, account_id: str) -> PushSubscription | None:
        """Register (or renew) the account's push subscription.

        Returns:
            The stored subscription, or None if push is disabled or the
            registration failed.

        Raises:
            AccountNotFoundError: If the account is unknown.
        """
        state = self.registry.get_state(account_id)
        if not self.config.enable_push_notifications:
            return None

        async def watch() -> WatchRegistration:
            return await asyncio.wait_for(
                self.provider.watch(account_id, self.config.push_topic_name),
                timeout=self.config.request_timeout,
            )

        try:
            registration = await self.retry_policy.run(watch, self.classifier)
        except Exception as e:
            classified = self.classifier.classify(e)
            await logger.awarning(
                "push_registration_failed",
                account_id=account_id,
                error=classified.message,
                error_kind=classified.kind.value,
            )
            self._cancel_renewal(account_id)
            state.reset_push_subscription()
            return None

        if account_id not in self.registry:
            return None

        subscription = PushSubscription(
            enabled=True,
            expires_at=registration.expires_at,
            cursor=registration.cursor,
        )
        state.push_subscription = subscription
        self._schedule_renewal(account_id, registration.expires_at)

        await logger.ainfo(
            "push_registered",
            account_id=account_id,
            expires_at=registration.expires_at.isoformat(),
        )
        return subscription

    async def unregister(self, account_id: str) -> None:
        """Stop the account's watch and cancel its renewal."""
        self._cancel_renewal(account_id)
        if account_id not in self.registry:
            return
        state = self.registry.get_state(account_id)
        if not state.push_subscription.enabled:
            return
        try:
            await asyncio.wait_for(
                self.provider.stop_watch(account_id), timeout=self.config.request_timeout
            )
        except Exception as e:
            await logger.awarning("push_stop_failed", account_id=account_id, error=str(e))
        state.reset_push_subscription()
        await logger.ainfo("push_unregistered", account_id=account_id)

    async def renew_expiring(self) -> list[str]:
        """Renew every subscription that expires within the renewal margin.

        Returns:
            IDs of the accounts that were renewed successfully.
        """
        renewed = []
        for account in self.registry:
            subscription = account.state.push_subscription
            if subscription.expires_within(self.config.push_renewal_margin):
                if await self.register(account.id) is not None:
                    renewed.append(account.id)
        return renewed

    def _schedule_renewal(self, account_id: str, expires_at: datetime) -> None:
        self._cancel_renewal(account_id)
        remaining = (expires_at - datetime.now(UTC)).total_seconds()
        # A lifetime shorter than the margin renews halfway instead of at once.
        delay = max(remaining - self.config.push_renewal_margin, remaining / 2, 0.0)
        self._renewals[account_id] = asyncio.create_task(
            self._renew_after(account_id, delay),
            name=f"push-renewal-{account_id}",
        )

    def _cancel_renewal(self, account_id: str) -> None:
        task = self._renewals.pop(account_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _renew_after(self, account_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._renewals.get(account_id) is asyncio.current_task():
            del self._renewals[account_id]
        if account_id in self.registry:
            await logger.ainfo("push_renewing", account_id=account_id)
            await self.register(account_id)

    async def handle_notification(self, message_data: str) -> NotificationResult:
        """Handle one Pub/Sub push message.

        Args:
            message_data: Base64-encoded Pub/Sub message data.

        Returns:
            NotificationResult with the processing outcome.
        """
        try:
            notification = parse_notification(message_data)
        except InvalidNotificationError as e:
            await logger.aerror("invalid_notification", error=str(e))
            return NotificationResult(success=False, error=str(e))

        account = self.registry.find_by_email(notification.email_address)
        if account is None:
            await logger.awarning(
                "account_not_found_for_notification", email=notification.email_address
            )
            return NotificationResult(
                success=False, error=f"Account not found: {notification.email_address}"
            )

        dedup_key = f"{notification.email_address.lower()}:{notification.history_id}"
        if self._deduplicator.is_duplicate(dedup_key):
            await logger.ainfo(
                "duplicate_notification_skipped",
                account_id=account.id,
                history_id=notification.history_id,
            )
            return NotificationResult(success=True, account_id=account.id, skipped=True)
        self._deduplicator.mark_processed(dedup_key)

        self.events.emit(
            SyncEventType.PUSH_NOTIFICATION_RECEIVED,
            account.id,
            history_id=notification.history_id,
        )

        state = account.state
        if (
            state.status in (SyncStatus.PAUSED, SyncStatus.OFFLINE)
            or state.auth_required
            or not self.connectivity.is_online
        ):
            await logger.ainfo(
                "notification_sync_skipped",
                account_id=account.id,
                status=state.status.value,
                auth_required=state.auth_required,
            )
            return NotificationResult(success=True, account_id=account.id, skipped=True)

        try:
            result = await self.orchestrator.sync_account(account.id)
        except AlreadySyncingError:
            # The running pass may have read history before this change.
            requested = self.orchestrator.request_resync(account.id)
            await logger.ainfo(
                "notification_sync_in_progress",
                account_id=account.id,
                resync_requested=requested,
            )
            return NotificationResult(success=True, account_id=account.id, skipped=True)

        if not result.success:
            return NotificationResult(success=False, account_id=account.id, error=result.error)

        await logger.ainfo(
            "notification_processed",
            account_id=account.id,
            new_messages=len(result.new_messages),
        )
        return NotificationResult(
            success=True,
            account_id=account.id,
            new_messages=len(result.new_messages),
        )

    async def handle_notification_batch(self, messages: list[str]) -> list[NotificationResult]:
        """Handle several Pub/Sub messages in order."""
        results = []
        for message_data in messages:
            results.append(await self.handle_notification(message_data))
        return results

    async def shutdown(self) -> None:
        """Cancel every pending renewal."""
        tasks = list(self._renewals.values())
        self._renewals.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
