"""DuckDB primary backend for single-host deployments."""

import asyncio
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional

from kairo.memory.backends.base import MemoryBackend
from kairo.memory.schema import MemoryRecord, RecordFilter

_COLUMNS = (
    "id, agent_id, user_id, kind, input, output, summary, context, "
    "relevance, frequency, tags, created_at, last_accessed, metadata"
)


def _to_naive_utc(value: datetime) -> datetime:
    """DuckDB TIMESTAMP columns hold naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DuckDBBackend(MemoryBackend):
    """Memory records in a DuckDB table."""

    name = "duckdb"

    def __init__(self, db_path: Path, table: str = "memory_records"):
        """Initialize the backend.

        Args:
            db_path: Path to DuckDB database file
            table: Table name for records
        """
        try:
            import duckdb
        except ImportError as e:
            raise ImportError("duckdb is required for the DuckDB backend. Install with: pip install duckdb") from e

        self.db_path = db_path
        self.table = table
        self._lock = threading.Lock()

        # Ensure directory exists
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conn = duckdb.connect(str(db_path))
        self._init_schema()

    def _init_schema(self) -> None:
        """Create table and indexes if they don't exist."""
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id VARCHAR PRIMARY KEY,
                agent_id VARCHAR NOT NULL,
                user_id VARCHAR,
                kind VARCHAR NOT NULL,
                input VARCHAR NOT NULL,
                output VARCHAR,
                summary VARCHAR,
                context VARCHAR,
                relevance DOUBLE,
                frequency INTEGER DEFAULT 1,
                tags VARCHAR[],
                created_at TIMESTAMP NOT NULL,
                last_accessed TIMESTAMP NOT NULL,
                metadata JSON DEFAULT '{{}}'
            )
        """)
        self.conn.execute(f"CREATE INDEX IF NOT EXISTS {self.table}_agent_idx ON {self.table} (agent_id)")

    def _row_to_record(self, row) -> MemoryRecord:
        return MemoryRecord(
            id=row[0],
            agent_id=row[1],
            user_id=row[2],
            kind=row[3],
            input=row[4],
            output=row[5] or "",
            summary=row[6] or "",
            context=row[7],
            relevance=row[8],
            frequency=row[9] or 1,
            tags=row[10] or [],
            created_at=row[11],
            last_accessed=row[12],
            metadata=json.loads(row[13]) if row[13] else {},
        )

    def _insert_sync(self, record: MemoryRecord) -> None:
        with self._lock:
            self.conn.execute(
                f"INSERT INTO {self.table} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    record.id,
                    record.agent_id,
                    record.user_id,
                    record.kind.value,
                    record.input,
                    record.output,
                    record.summary,
                    record.context,
                    record.relevance,
                    record.frequency,
                    list(record.tags),
                    _to_naive_utc(record.created_at),
                    _to_naive_utc(record.last_accessed),
                    json.dumps(record.metadata),
                ],
            )

    def _select_sync(self, record_filter: RecordFilter) -> List[MemoryRecord]:
        where_clauses = ["agent_id = ?"]
        params: List[Any] = [record_filter.agent_id]

        if record_filter.user_id is not None:
            where_clauses.append("user_id = ?")
            params.append(record_filter.user_id)

        if record_filter.kinds is not None:
            if not record_filter.kinds:
                return []
            placeholders = ", ".join("?" for _ in record_filter.kinds)
            where_clauses.append(f"kind IN ({placeholders})")
            params.extend(kind.value for kind in record_filter.kinds)

        if record_filter.time_range is not None:
            where_clauses.append("created_at >= ? AND created_at <= ?")
            params.append(_to_naive_utc(record_filter.time_range.start))
            params.append(_to_naive_utc(record_filter.time_range.end))

        sql = f"""
            SELECT {_COLUMNS}
            FROM {self.table}
            WHERE {" AND ".join(where_clauses)}
            ORDER BY last_accessed DESC
        """
        if record_filter.limit is not None:
            sql += " LIMIT ?"
            params.append(record_filter.limit)

        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _touch_sync(self, agent_id: str, record_ids: List[str], when: datetime) -> int:
        if not record_ids:
            return 0
        placeholders = ", ".join("?" for _ in record_ids)
        with self._lock:
            rows = self.conn.execute(
                f"""
                UPDATE {self.table} SET last_accessed = ?
                WHERE agent_id = ? AND id IN ({placeholders}) AND last_accessed < ?
                RETURNING id
            """,
                [_to_naive_utc(when), agent_id, *record_ids, _to_naive_utc(when)],
            ).fetchall()
        return len(rows)

    def _delete_sync(self, agent_id: str, record_ids: List[str]) -> int:
        if not record_ids:
            return 0
        placeholders = ", ".join("?" for _ in record_ids)
        with self._lock:
            rows = self.conn.execute(
                f"DELETE FROM {self.table} WHERE agent_id = ? AND id IN ({placeholders}) RETURNING id",
                [agent_id, *record_ids],
            ).fetchall()
        return len(rows)

    def _count_sync(self, agent_id: Optional[str]) -> int:
        with self._lock:
            if agent_id is not None:
                result = self.conn.execute(
                    f"SELECT COUNT(*) FROM {self.table} WHERE agent_id = ?", [agent_id]
                ).fetchone()
            else:
                result = self.conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()
        return result[0] if result else 0

    async def insert(self, record: MemoryRecord) -> None:
        await asyncio.to_thread(self._insert_sync, record)

    async def select(self, record_filter: RecordFilter) -> List[MemoryRecord]:
        return await asyncio.to_thread(self._select_sync, record_filter)

    async def touch(self, agent_id: str, record_ids: Iterable[str], when: datetime) -> int:
        return await asyncio.to_thread(self._touch_sync, agent_id, list(record_ids), when)

    async def delete(self, agent_id: str, record_ids: Iterable[str]) -> int:
        return await asyncio.to_thread(self._delete_sync, agent_id, list(record_ids))

    async def count(self, agent_id: Optional[str] = None) -> int:
        return await asyncio.to_thread(self._count_sync, agent_id)

    async def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
