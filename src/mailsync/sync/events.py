"""Sync event stream for the presentation layer."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class SyncEventType(str, Enum):
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_ERROR = "sync_error"
    ACCOUNT_UPDATED = "account_updated"
    NEW_MESSAGES = "new_messages"
    MESSAGES_UPDATED = "messages_updated"
    CONNECTION_STATUS_CHANGED = "connection_status_changed"
    PUSH_NOTIFICATION_RECEIVED = "push_notification_received"
    OPERATION_DROPPED = "operation_dropped"


@dataclass(frozen=True)
class SyncEvent:
    """Something the UI may want to react to.

    Attributes:
        type: Event type.
        account_id: Account concerned, or None for global events.
        data: Event payload.
        timestamp: When the event was emitted.
    """

    type: SyncEventType
    account_id: str | None = None
    data: dict[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


SyncEventListener = Callable[[SyncEvent], None]


class SyncEventBus:
    """Fan-out of sync events to listeners and async streams.

    Listeners registered with ``event_type=None`` receive every event. A
    listener that raises is logged and skipped; emission never fails.

    Example:
        bus = SyncEventBus()
        remove = bus.add_listener(lambda e: print(e.type), SyncEventType.SYNC_COMPLETED)
        async for event in bus.stream():
            ...
    """

    def __init__(self, stream_maxsize: int = 1000) -> None:
        self._listeners: dict[SyncEventType | None, list[SyncEventListener]] = {}
        self._queues: set[asyncio.Queue[SyncEvent]] = set()
        self._stream_maxsize = stream_maxsize

    def add_listener(
        self,
        listener: SyncEventListener,
        event_type: SyncEventType | None = None,
    ) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.setdefault(event_type, []).append(listener)
        return lambda: self.remove_listener(listener, event_type)

    def remove_listener(
        self,
        listener: SyncEventListener,
        event_type: SyncEventType | None = None,
    ) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self) -> int:
        return sum(len(listeners) for listeners in self._listeners.values())

    def emit(
        self,
        event_type: SyncEventType,
        account_id: str | None = None,
        **data: object,
    ) -> SyncEvent:
        """Build an event and deliver it to every interested listener."""
        event = SyncEvent(type=event_type, account_id=account_id, data=data)

        targets = [*self._listeners.get(event_type, []), *self._listeners.get(None, [])]
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "event_listener_failed",
                    event_type=event_type.value,
                    account_id=account_id,
                )

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("event_stream_full", event_type=event_type.value)
        return event

    async def stream(self) -> AsyncIterator[SyncEvent]:
        """Yield events emitted after the stream was opened."""
        queue: asyncio.Queue[SyncEvent] = asyncio.Queue(maxsize=self._stream_maxsize)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
