"""Periodic fallback sync."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from mailsync.sync.errors import AccountNotFoundError, AlreadySyncingError
from mailsync.sync.state import SyncStatus

if TYPE_CHECKING:
    from mailsync.sync.connectivity import ConnectivityMonitor
    from mailsync.sync.orchestrator import SyncOrchestrator
    from mailsync.sync.results import SyncResult
    from mailsync.sync.state import AccountRegistry

logger = structlog.get_logger(__name__)


class PollingScheduler:
    """Runs one polling task per account, independent of push health.

    A poll only fires when the account is idle, connectivity is up and no
    re-authentication is pending, so polls never pile up behind a running
    or failing sync.

    Example:
        scheduler = PollingScheduler(registry, orchestrator, connectivity, interval=300)
        scheduler.start("acct-1")
        await scheduler.stop_all()
    """

    def __init__(
        self,
        registry: AccountRegistry,
        orchestrator: SyncOrchestrator,
        connectivity: ConnectivityMonitor,
        interval: float = 300.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.registry = registry
        self.orchestrator = orchestrator
        self.connectivity = connectivity
        self.interval = interval
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def is_running(self, account_id: str) -> bool:
        task = self._tasks.get(account_id)
        return task is not None and not task.done()

    def start(self, account_id: str) -> None:
        """Start polling an account; a no-op if it is already polled."""
        if self.is_running(account_id):
            return
        self._tasks[account_id] = asyncio.create_task(
            self._loop(account_id), name=f"poll-{account_id}"
        )
        logger.info("polling_started", account_id=account_id, interval=self.interval)

    async def stop(self, account_id: str) -> None:
        task = self._tasks.pop(account_id, None)
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await logger.ainfo("polling_stopped", account_id=account_id)

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def poll_once(self, account_id: str) -> SyncResult | None:
        """Sync the account if it is idle and reachable.

        Returns:
            The sync result, or None if the poll was skipped.
        """
        if account_id not in self.registry:
            return None
        state = self.registry.get_state(account_id)
        if (
            state.status != SyncStatus.IDLE
            or state.auth_required
            or not self.connectivity.is_online
        ):
            await logger.adebug(
                "poll_skipped", account_id=account_id, status=state.status.value
            )
            return None

        try:
            return await self.orchestrator.sync_account(account_id)
        except (AlreadySyncingError, AccountNotFoundError) as e:
            await logger.adebug("poll_skipped", account_id=account_id, reason=str(e))
            return None

    async def _loop(self, account_id: str) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if account_id not in self.registry:
                return
            try:
                await self.poll_once(account_id)
            except Exception:
                await logger.aexception("poll_failed", account_id=account_id)
