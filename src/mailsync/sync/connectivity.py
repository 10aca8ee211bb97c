"""Global connectivity flag."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

ConnectivityCallback = Callable[[bool], Awaitable[None]]


class ConnectivityMonitor:
    """Holds the online flag and broadcasts its transitions.

    This is the only state shared between accounts. Subscribers are awaited
    in registration order; a failing subscriber is logged and does not stop
    the others.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._subscribers: list[ConnectivityCallback] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def set_online(self, online: bool) -> bool:
        """Update the flag.

        Returns:
            True if the value changed and subscribers were notified.
        """
        if online == self._online:
            return False
        self._online = online
        await logger.ainfo("connectivity_changed", online=online)
        for callback in list(self._subscribers):
            try:
                await callback(online)
            except Exception:
                await logger.aexception("connectivity_subscriber_failed", online=online)
        return True
