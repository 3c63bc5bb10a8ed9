"""Local JSON file backend, one record array per agent."""

import asyncio
import json
import logging
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

import portalocker

from kairo.memory.backends.base import MemoryBackend
from kairo.memory.schema import MemoryRecord, RecordFilter

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS_PER_AGENT = 1000
LOCK_TIMEOUT_SECONDS = 5


def _safe_name(agent_id: str) -> str:
    return re.sub(r"[^\w-]", "_", agent_id)


class FileBackend(MemoryBackend):
    """Stores ``entries/{agent}_memories.json`` under a root directory.

    Writes take an exclusive portalocker lock on a sidecar lock file and
    replace the array atomically, so concurrent processes never see a
    half-written file.
    """

    name = "file"

    def __init__(self, root_dir: Path, max_records_per_agent: int = DEFAULT_MAX_RECORDS_PER_AGENT):
        self.root_dir = root_dir
        self.entries_dir = root_dir / "entries"
        self.max_records_per_agent = max_records_per_agent
        self._lock = threading.Lock()

    def _path(self, agent_id: str) -> Path:
        return self.entries_dir / f"{_safe_name(agent_id)}_memories.json"

    def _lock_path(self, agent_id: str) -> Path:
        return self.entries_dir / f"{_safe_name(agent_id)}_memories.lock"

    def _read(self, agent_id: str) -> List[MemoryRecord]:
        path = self._path(agent_id)
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("Corrupt memory file %s: %s", path, e)
            return []

        records = []
        for row in raw:
            try:
                records.append(MemoryRecord.from_row(row))
            except ValueError as e:
                logger.warning("Skipping malformed record in %s: %s", path, e)
        return records

    def _write(self, agent_id: str, records: List[MemoryRecord]) -> None:
        path = self._path(agent_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps([r.to_row() for r in records], indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(str(tmp), str(path))

    def _modify(self, agent_id: str, change) -> int:
        """Apply ``change(records) -> (records, affected)`` under both locks."""
        self.entries_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with portalocker.Lock(str(self._lock_path(agent_id)), mode="a", timeout=LOCK_TIMEOUT_SECONDS):
                records, affected = change(self._read(agent_id))
                if affected:
                    self._write(agent_id, records)
                return affected

    def _insert_sync(self, record: MemoryRecord) -> None:
        def change(records):
            records.append(record)
            # Oldest records fall off once the per-agent cap is reached
            overflow = len(records) - self.max_records_per_agent
            if overflow > 0:
                records.sort(key=lambda r: r.created_at)
                del records[:overflow]
            return records, 1

        self._modify(record.agent_id, change)

    def _select_sync(self, record_filter: RecordFilter) -> List[MemoryRecord]:
        with self._lock:
            records = [r for r in self._read(record_filter.agent_id) if record_filter.matches(r)]
        records.sort(key=lambda r: r.last_accessed, reverse=True)
        if record_filter.limit is not None:
            records = records[: record_filter.limit]
        return records

    def _touch_sync(self, agent_id: str, record_ids: List[str], when: datetime) -> int:
        wanted = set(record_ids)

        def change(records):
            updated = 0
            for i, record in enumerate(records):
                if record.id in wanted and when > record.last_accessed:
                    records[i] = record.touched(when)
                    updated += 1
            return records, updated

        if not self._path(agent_id).exists():
            return 0
        return self._modify(agent_id, change)

    def _delete_sync(self, agent_id: str, record_ids: List[str]) -> int:
        doomed = set(record_ids)

        def change(records):
            kept = [r for r in records if r.id not in doomed]
            return kept, len(records) - len(kept)

        if not self._path(agent_id).exists():
            return 0
        return self._modify(agent_id, change)

    def _count_sync(self, agent_id: Optional[str]) -> int:
        agent_ids = [agent_id] if agent_id is not None else self._agent_ids()
        with self._lock:
            return sum(len(self._read(a)) for a in agent_ids)

    def _agent_ids(self) -> List[str]:
        """Agent ids with a records file.

        File names are sanitized, so ids are read back from the records themselves.
        """
        if not self.entries_dir.exists():
            return []
        agent_ids = []
        for path in sorted(self.entries_dir.glob("*_memories.json")):
            try:
                rows = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                continue
            if rows:
                agent_ids.append(rows[0].get("agent_id", path.stem[: -len("_memories")]))
        return agent_ids

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
