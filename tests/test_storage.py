"""Tests for Storage."""

from datetime import datetime, timezone

import pytest

from agentbus.models import Event
from agentbus.storage import ClusterRecord, Storage


def make_event(event_id: int, cluster_id: str = "c1", topic: str = "T") -> Event:
    return Event(
        id=event_id,
        cluster_id=cluster_id,
        topic=topic,
        sender="tester",
        timestamp=datetime(2026, 1, 1, 12, 0, event_id, tzinfo=timezone.utc),
        content={"text": f"event {event_id}", "data": {"n": event_id}},
    )


class TestStorageInit:
    """Tests for Storage initialization."""

    async def test_init_creates_tables(self, storage):
        """Test that init creates all tables."""
        async with storage._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ) as cursor:
            tables = [row[0] for row in await cursor.fetchall()]
            assert "events" in tables
            assert "clusters" in tables

    async def test_requires_init(self):
        """Using storage before init raises."""
        st = Storage(":memory:")
        with pytest.raises(RuntimeError, match="not initialized"):
            await st.get_events()

    async def test_file_database_creates_parent_dir(self, tmp_path):
        """A file path gets its parent directory created."""
        db_path = tmp_path / "nested" / "bus.db"
        st = Storage(db_path)
        await st.init()
        await st.save_event(make_event(1))
        await st.close()

        reopened = Storage(db_path)
        await reopened.init()
        assert [e.id for e in await reopened.get_events()] == [1]
        await reopened.close()


class TestStorageEvents:
    """Tests for the event log."""

    async def test_events_round_trip_in_order(self, storage):
        """Events come back in id order with content and timestamp intact."""
        for event_id in (1, 2, 3):
            await storage.save_event(make_event(event_id))

        events = await storage.get_events()

        assert [e.id for e in events] == [1, 2, 3]
        assert events[1].content == {"text": "event 2", "data": {"n": 2}}
        assert events[1].timestamp == make_event(2).timestamp

    async def test_get_events_by_cluster(self, storage):
        """Filter by cluster id."""
        await storage.save_event(make_event(1, "c1"))
        await storage.save_event(make_event(2, "c2"))
        await storage.save_event(make_event(3, "c1"))

        assert [e.id for e in await storage.get_events("c1")] == [1, 3]
        assert [e.id for e in await storage.get_events("c2")] == [2]

    async def test_duplicate_id_rejected(self, storage):
        """The log is append-only; ids cannot be reused."""
        await storage.save_event(make_event(1))
        with pytest.raises(Exception):
            await storage.save_event(make_event(1))


class TestStorageClusters:
    """Tests for cluster records."""

    async def test_save_and_get_cluster(self, storage):
        created = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await storage.save_cluster(
            ClusterRecord(id="c1", state="pending", config={"agents": []}, created_at=created)
        )

        record = await storage.get_cluster("c1")

        assert record.state == "pending"
        assert record.config == {"agents": []}
        assert record.created_at == created

    async def test_save_cluster_updates_existing(self, storage):
        """Saving the same id updates the state."""
        created = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await storage.save_cluster(ClusterRecord("c1", "pending", {}, created))
        await storage.save_cluster(ClusterRecord("c1", "running", {}, created))

        records = await storage.get_clusters()

        assert len(records) == 1
        assert records[0].state == "running"

    async def test_get_missing_cluster(self, storage):
        assert await storage.get_cluster("nope") is None

    async def test_clear(self, storage):
        """clear() removes events and clusters."""
        await storage.save_event(make_event(1))
        await storage.save_cluster(
            ClusterRecord("c1", "pending", {}, datetime.now(timezone.utc))
        )

        await storage.clear()

        assert await storage.get_events() == []
        assert await storage.get_clusters() == []
