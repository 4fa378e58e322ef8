"""Append-only event bus shared by the orchestrator and its agents."""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Protocol

from ..errors import BusStorageError
from ..logging_config import get_logger
from ..models import Event
from ..storage import IStorage

logger = get_logger(__name__)


EventHandler = Callable[[Event], Awaitable[None]]

_TICK = timedelta(microseconds=1)


class IEventBus(Protocol):
    """Ordered log of Events, scoped by cluster."""

    async def publish(
        self,
        cluster_id: str,
        topic: str,
        sender: str,
        content: dict | None = None,
    ) -> Event:
        """Append an event and notify subscribers. Returns the stored event."""
        ...

    def query(
        self,
        cluster_id: str | None = None,
        topic: str | None = None,
        sender: str | None = None,
        since: datetime | None = None,
    ) -> list[Event]:
        """Return matching events in append order."""
        ...


class EventBus:
    """In-memory event log, persisted through Storage.

    Appends are serialized by a lock; queries read a snapshot and never block.
    Ids and timestamps are strictly increasing in append order.
    """

    def __init__(self, storage: IStorage | None = None):
        self._storage = storage
        self._lock = asyncio.Lock()
        self._events: list[Event] = []
        self._by_cluster: dict[str, list[Event]] = {}
        self._next_id = 1
        self._last_ts: datetime | None = None
        self._subscribers: dict[str | None, list[EventHandler]] = {}

    def subscribe(self, handler: EventHandler, topic: str | None = None) -> None:
        """Subscribe a handler to one topic, or to every topic when None."""
        self._subscribers.setdefault(topic, []).append(handler)

    def clock(self) -> datetime:
        """Return a timestamp strictly later than any issued so far."""
        now = datetime.now(timezone.utc)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + _TICK
        self._last_ts = now
        return now

    async def load(self) -> int:
        """Replay the durable log into memory. Returns the number of events."""
        if not self._storage:
            return 0
        try:
            events = await self._storage.get_events()
        except Exception as e:
            raise BusStorageError(f"Failed to load event log: {e}") from e

        async with self._lock:
            self._events = []
            self._by_cluster = {}
            for event in events:
                self._append(event)
            if events:
                self._next_id = events[-1].id + 1
                self._last_ts = max(event.timestamp for event in events)
        logger.info("Replayed %s events from storage", len(events))
        return len(events)

    def reset(self) -> None:
        """Drop the in-memory log. Storage is cleared separately."""
        self._events = []
        self._by_cluster = {}
        self._next_id = 1

    async def publish(
        self,
        cluster_id: str,
        topic: str,
        sender: str,
        content: dict | None = None,
    ) -> Event:
        """Append an event, persist it, then notify subscribers."""
        async with self._lock:
            event = Event(
                id=self._next_id,
                cluster_id=cluster_id,
                topic=topic,
                sender=sender,
                timestamp=self.clock(),
                content=copy.deepcopy(content) if content else {},
            )
            if self._storage:
                try:
                    await self._storage.save_event(event)
                except Exception as e:
                    raise BusStorageError(
                        f"Failed to persist {topic} event for cluster {cluster_id}: {e}"
                    ) from e
            self._append(event)
            self._next_id += 1

        logger.debug(
            "Published %s #%s from %s",
            topic,
            event.id,
            sender,
            extra={"context": {"cluster_id": cluster_id}},
        )
        await self._notify(event)
        return event

    def query(
        self,
        cluster_id: str | None = None,
        topic: str | None = None,
        sender: str | None = None,
        since: datetime | None = None,
    ) -> list[Event]:
        """Return matching events in append order.

        ``since`` is an exclusive lower bound on the event timestamp.
        """
        if cluster_id is not None:
            source = list(self._by_cluster.get(cluster_id, ()))
        else:
            source = list(self._events)

        return [
            event
            for event in source
            if (topic is None or event.topic == topic)
            and (sender is None or event.sender == sender)
            and (since is None or event.timestamp > since)
        ]

    def _append(self, event: Event) -> None:
        self._events.append(event)
        self._by_cluster.setdefault(event.cluster_id, []).append(event)

    async def _notify(self, event: Event) -> None:
        handlers = [
            *self._subscribers.get(event.topic, []),
            *self._subscribers.get(None, []),
        ]
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(
                    "Error in handler %s for %s #%s: %s", i, event.topic, event.id, result
                )
