"""Tests for EventBus."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from agentbus.errors import BusStorageError
from agentbus.event_bus import EventBus
from agentbus.models import Topic


class TestEventBusPublish:
    """Tests for EventBus publishing."""

    @pytest.mark.asyncio
    async def test_publish_assigns_increasing_ids(self, event_bus):
        """Ids and timestamps increase in append order."""
        first = await event_bus.publish("c1", Topic.ISSUE_OPENED, "user", {"text": "a"})
        second = await event_bus.publish("c1", "PLAN_READY", "planner", {"text": "b"})

        assert first.id == 1
        assert second.id == 2
        assert second.timestamp > first.timestamp

    async def test_publish_copies_content(self, event_bus):
        """Mutating the caller's dict does not change the stored event."""
        content = {"text": "hello", "data": {"items": [1, 2]}}
        event = await event_bus.publish("c1", "T", "a", content)

        content["data"]["items"].append(3)
        content["text"] = "changed"

        assert event.content == {"text": "hello", "data": {"items": [1, 2]}}
        assert event_bus.query(cluster_id="c1")[0].content["data"]["items"] == [1, 2]

    async def test_publish_without_content(self, event_bus):
        """Content defaults to an empty object."""
        event = await event_bus.publish("c1", "T", "a")
        assert event.content == {}
        assert event.text is None
        assert event.data is None

    async def test_concurrent_publishes_are_totally_ordered(self, event_bus):
        """Concurrent publishers get unique ids and monotonic timestamps."""
        events = await asyncio.gather(
            *[event_bus.publish("c1", "T", f"agent-{i}", {"text": str(i)}) for i in range(50)]
        )

        stored = event_bus.query(cluster_id="c1")
        assert sorted(e.id for e in events) == list(range(1, 51))
        assert [e.id for e in stored] == list(range(1, 51))
        for earlier, later in zip(stored, stored[1:]):
            assert later.timestamp > earlier.timestamp

    async def test_storage_failure_leaves_no_event(self):
        """A failed persist raises BusStorageError and appends nothing."""
        storage = Mock()
        storage.save_event = AsyncMock(side_effect=RuntimeError("disk full"))
        bus = EventBus(storage)

        with pytest.raises(BusStorageError, match="disk full"):
            await bus.publish("c1", "T", "a", {"text": "lost"})

        assert bus.query() == []


class TestEventBusSubscribe:
    """Tests for subscriber notification."""

    async def test_topic_subscriber_only_sees_its_topic(self, event_bus):
        """Handlers subscribed to a topic ignore other topics."""
        calls = []

        async def handler(event):
            calls.append(event.topic)

        event_bus.subscribe(handler, topic="A")
        await event_bus.publish("c1", "A", "x")
        await event_bus.publish("c1", "B", "x")

        assert calls == ["A"]

    async def test_wildcard_subscriber_sees_everything(self, event_bus):
        """A handler without a topic receives every event."""
        calls = []

        async def handler(event):
            calls.append(event.id)

        event_bus.subscribe(handler)
        await event_bus.publish("c1", "A", "x")
        await event_bus.publish("c2", "B", "y")

        assert calls == [1, 2]

    async def test_handler_error_does_not_break_publish(self, event_bus):
        """A failing handler is logged; other handlers and the caller continue."""
        calls = []

        async def failing(event):
            raise RuntimeError("boom")

        async def working(event):
            calls.append(event.id)

        event_bus.subscribe(failing)
        event_bus.subscribe(working)

        event = await event_bus.publish("c1", "A", "x")

        assert calls == [event.id]
        assert len(event_bus.query()) == 1

    async def test_handler_may_query_the_new_event(self, event_bus):
        """The event is visible to queries by the time handlers run."""
        seen = []

        async def handler(event):
            seen.append([e.id for e in event_bus.query(cluster_id=event.cluster_id)])

        event_bus.subscribe(handler)
        await event_bus.publish("c1", "A", "x")

        assert seen == [[1]]


class TestEventBusQuery:
    """Tests for EventBus queries."""

    async def test_query_filters(self, event_bus):
        """Cluster, topic and sender filters combine."""
        await event_bus.publish("c1", "A", "alice")
        await event_bus.publish("c1", "B", "bob")
        await event_bus.publish("c2", "A", "alice")
        await event_bus.publish("c1", "A", "bob")

        assert [e.id for e in event_bus.query(cluster_id="c1")] == [1, 2, 4]
        assert [e.id for e in event_bus.query(cluster_id="c1", topic="A")] == [1, 4]
        assert [e.id for e in event_bus.query(topic="A", sender="alice")] == [1, 3]
        assert event_bus.query(cluster_id="unknown") == []

    async def test_query_since_is_exclusive(self, event_bus):
        """Events stamped exactly at ``since`` are excluded."""
        first = await event_bus.publish("c1", "A", "x")
        second = await event_bus.publish("c1", "A", "x")

        result = event_bus.query(cluster_id="c1", since=first.timestamp)

        assert [e.id for e in result] == [second.id]

    async def test_query_returns_snapshot(self, event_bus):
        """Later publishes do not change an earlier query result."""
        await event_bus.publish("c1", "A", "x")
        snapshot = event_bus.query(cluster_id="c1")
        await event_bus.publish("c1", "A", "x")

        assert len(snapshot) == 1

    async def test_clock_is_strictly_increasing(self, event_bus):
        """clock() never repeats a timestamp."""
        stamps = [event_bus.clock() for _ in range(100)]
        assert all(b > a for a, b in zip(stamps, stamps[1:]))


class TestEventBusReplay:
    """Tests for loading the durable log."""

    async def test_load_replays_storage(self, storage):
        """A new bus over the same storage sees the same history."""
        bus = EventBus(storage)
        await bus.publish("c1", "A", "x", {"text": "one"})
        await bus.publish("c1", "B", "y", {"data": {"n": 2}})

        replayed = EventBus(storage)
        count = await replayed.load()

        assert count == 2
        events = replayed.query(cluster_id="c1")
        assert [e.topic for e in events] == ["A", "B"]
        assert events[1].data == {"n": 2}

        # Ids and timestamps continue after the replayed log
        next_event = await replayed.publish("c1", "C", "z")
        assert next_event.id == 3
        assert next_event.timestamp > events[-1].timestamp

    async def test_load_without_storage(self):
        """A bus without storage has nothing to replay."""
        assert await EventBus().load() == 0

    async def test_load_failure_raises_bus_storage_error(self):
        """Read failures surface as BusStorageError."""
        storage = Mock()
        storage.get_events = AsyncMock(side_effect=RuntimeError("corrupt"))

        with pytest.raises(BusStorageError):
            await EventBus(storage).load()
