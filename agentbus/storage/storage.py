"""SQLite storage implementation."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import Event


@dataclass
class ClusterRecord:
    """Persisted view of a cluster."""

    id: str
    state: str
    config: dict
    created_at: datetime


class IStorage(Protocol):
    """Durable, ordered, replayable log of bus events plus cluster records."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Events
    async def save_event(self, event: Event) -> None:
        """Append an event to the log."""
        ...

    async def get_events(self, cluster_id: str | None = None) -> list[Event]:
        """Get events in append order, optionally for one cluster."""
        ...

    # Clusters
    async def save_cluster(self, record: ClusterRecord) -> None:
        """Insert or update a cluster record."""
        ...

    async def get_cluster(self, cluster_id: str) -> ClusterRecord | None:
        """Get a cluster record by id."""
        ...

    async def get_clusters(self) -> list[ClusterRecord]:
        """Get all cluster records (oldest first)."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    # Events
    async def save_event(self, event: Event) -> None:
        """Append an event to the log."""
        conn = self._require_conn()

        await conn.execute(
            """
            INSERT INTO events (id, cluster_id, topic, sender, content, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.cluster_id,
                event.topic,
                event.sender,
                json.dumps(event.content, default=str),
                event.timestamp.isoformat(),
            ),
        )
        await conn.commit()

    async def get_events(self, cluster_id: str | None = None) -> list[Event]:
        """Get events in append order, optionally for one cluster."""
        conn = self._require_conn()

        if cluster_id:
            cursor = await conn.execute(
                """
                SELECT id, cluster_id, topic, sender, content, timestamp
                FROM events
                WHERE cluster_id = ?
                ORDER BY id ASC
                """,
                (cluster_id,),
            )
        else:
            cursor = await conn.execute(
                """
                SELECT id, cluster_id, topic, sender, content, timestamp
                FROM events
                ORDER BY id ASC
                """
            )
        rows = await cursor.fetchall()

        return [
            Event(
                id=row[0],
                cluster_id=row[1],
                topic=row[2],
                sender=row[3],
                content=json.loads(row[4]),
                timestamp=_parse_ts(row[5]),
            )
            for row in rows
        ]

    # Clusters
    async def save_cluster(self, record: ClusterRecord) -> None:
        """Insert or update a cluster record."""
        conn = self._require_conn()

        await conn.execute(
            """
            INSERT OR REPLACE INTO clusters (id, state, config, created_at, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            """,
            (
                record.id,
                record.state,
                json.dumps(record.config),
                record.created_at.isoformat(),
            ),
        )
        await conn.commit()

    async def get_cluster(self, cluster_id: str) -> ClusterRecord | None:
        """Get a cluster record by id."""
        conn = self._require_conn()

        cursor = await conn.execute(
            """
            SELECT id, state, config, created_at
            FROM clusters
            WHERE id = ?
            """,
            (cluster_id,),
        )
        row = await cursor.fetchone()

        if not row:
            return None

        return ClusterRecord(
            id=row[0],
            state=row[1],
            config=json.loads(row[2]),
            created_at=_parse_ts(row[3]),
        )

    async def get_clusters(self) -> list[ClusterRecord]:
        """Get all cluster records (oldest first)."""
        conn = self._require_conn()

        cursor = await conn.execute(
            """
            SELECT id, state, config, created_at
            FROM clusters
            ORDER BY created_at ASC
            """
        )
        rows = await cursor.fetchall()

        return [
            ClusterRecord(
                id=row[0],
                state=row[1],
                config=json.loads(row[2]),
                created_at=_parse_ts(row[3]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require_conn()

        for table in ["events", "clusters"]:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()
