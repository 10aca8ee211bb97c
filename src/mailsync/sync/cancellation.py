"""Cooperative cancellation for sync passes."""

from __future__ import annotations

import asyncio

from mailsync.sync.errors import SyncCancelledError


class CancellationToken:
    """One-shot cancellation flag checked at page boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``SyncCancelledError`` if the token has been tripped."""
        if self._event.is_set():
            raise SyncCancelledError(self.reason or "Sync cancelled")

    async def wait(self) -> None:
        await self._event.wait()
