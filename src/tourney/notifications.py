"""
Lifecycle events and where they go.

The service publishes one LifecycleEvent per committed state change. Events
are immutable and safe to pass across async boundaries; to_dict() gives a
JSON-compatible form for the WebSocket endpoint.

Sinks:
- NullNotificationSink: drops everything (default for library use)
- LoggingNotificationSink: logs each event at INFO
- BroadcastHub: fans events out to per-tournament asyncio.Queue subscribers
- CompositeNotificationSink: forwards to several sinks in order

Publishing happens after commit. A sink that raises never undoes or fails
the operation that produced the event; the service logs the failure.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncGenerator, Protocol

from tourney.db.models import utcnow

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    PLAYER_ADDED = "player_added"
    PLAYER_REMOVED = "player_removed"
    TOURNAMENT_STARTED = "tournament_started"
    ROUND_ADVANCED = "round_advanced"
    TOURNAMENT_UPDATED = "tournament_updated"
    WINNER_SET = "winner_set"
    TOURNAMENT_DELETED = "tournament_deleted"


@dataclass(frozen=True)
class LifecycleEvent:
    """A committed change to one tournament."""

    kind: EventKind
    tournament_id: int
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "tournament_id": self.tournament_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class NotificationSink(Protocol):
    async def publish(self, event: LifecycleEvent) -> None: ...


class NullNotificationSink:
    async def publish(self, event: LifecycleEvent) -> None:
        return None


class LoggingNotificationSink:
    async def publish(self, event: LifecycleEvent) -> None:
        logger.info(
            "Tournament %s: %s %s",
            event.tournament_id, event.kind.value, event.payload,
        )


class CompositeNotificationSink:
    """Forward every event to each sink in turn."""

    def __init__(self, *sinks: NotificationSink):
        self.sinks = list(sinks)

    async def publish(self, event: LifecycleEvent) -> None:
        for sink in self.sinks:
            await sink.publish(event)


class BroadcastHub:
    """
    In-process pub/sub keyed by tournament id.

    Each subscriber owns a bounded queue. A subscriber that stops reading
    loses events once its queue is full (logged at WARNING); it never blocks
    the publisher or other subscribers.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[int, set[asyncio.Queue[LifecycleEvent]]] = {}

    def subscriber_count(self, tournament_id: int) -> int:
        return len(self._subscribers.get(tournament_id, ()))

    @asynccontextmanager
    async def subscribe(
        self, tournament_id: int
    ) -> AsyncGenerator[asyncio.Queue[LifecycleEvent], None]:
        """
        Register a queue for one tournament's events for the duration of the block.

        Usage:
            async with hub.subscribe(tournament_id) as queue:
                event = await queue.get()
        """
        queue: asyncio.Queue[LifecycleEvent] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(tournament_id, set()).add(queue)
        logger.debug(
            "Subscriber added for tournament %s (%d total)",
            tournament_id, self.subscriber_count(tournament_id),
        )
        try:
            yield queue
        finally:
            subscribers = self._subscribers.get(tournament_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[tournament_id]

    async def publish(self, event: LifecycleEvent) -> None:
        for queue in list(self._subscribers.get(event.tournament_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping %s event for tournament %s: subscriber queue full",
                    event.kind.value, event.tournament_id,
                )
