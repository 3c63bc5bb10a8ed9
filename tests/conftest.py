"""Test configuration and fixtures."""

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from kairo.memory.backends.base import MemoryBackend
from kairo.memory.backends.file import FileBackend
from kairo.memory.breaker import CircuitBreaker
from kairo.memory.schema import MemoryRecord, RecordFilter
from kairo.memory.store import MemoryStore, StorageMode


class InMemoryBackend(MemoryBackend):
    """Primary backend double. Set ``fail`` to make every call raise."""

    name = "in-memory"

    def __init__(self):
        self.rows: Dict[str, MemoryRecord] = {}
        self.fail = False
        self.calls: List[str] = []
        self.closed = False

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.fail:
            raise ConnectionError(f"primary down during {op}")

    async def insert(self, record: MemoryRecord) -> None:
        self._check("insert")
        self.rows[record.id] = record

    async def select(self, record_filter: RecordFilter) -> List[MemoryRecord]:
        self._check("select")
        rows = [r for r in self.rows.values() if record_filter.matches(r)]
        rows.sort(key=lambda r: r.last_accessed, reverse=True)
        return rows[: record_filter.limit] if record_filter.limit is not None else rows

    async def touch(self, agent_id: str, record_ids: Iterable[str], when: datetime) -> int:
        self._check("touch")
        updated = 0
        for record_id in record_ids:
            record = self.rows.get(record_id)
            if record is not None and record.agent_id == agent_id and when > record.last_accessed:
                self.rows[record_id] = record.touched(when)
                updated += 1
        return updated

    async def delete(self, agent_id: str, record_ids: Iterable[str]) -> int:
        self._check("delete")
        deleted = 0
        for record_id in list(record_ids):
            record = self.rows.get(record_id)
            if record is not None and record.agent_id == agent_id:
                del self.rows[record_id]
                deleted += 1
        return deleted

    async def count(self, agent_id: Optional[str] = None) -> int:
        self._check("count")
        return sum(1 for r in self.rows.values() if agent_id is None or r.agent_id == agent_id)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def memory_dir(tmp_path) -> Path:
    return tmp_path / "memory"


@pytest.fixture
def file_backend(memory_dir) -> FileBackend:
    return FileBackend(memory_dir)


@pytest.fixture
def primary() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def file_store(file_backend) -> MemoryStore:
    """Memory store in file mode."""
    return MemoryStore(file_backend)


@pytest.fixture
def hybrid_store(file_backend, primary) -> MemoryStore:
    """Memory store preferring the in-memory primary."""
    return MemoryStore(
        file_backend,
        primary=primary,
        mode=StorageMode.HYBRID,
        breaker=CircuitBreaker(failure_threshold=3, reset_timeout=30),
        primary_timeout=1.0,
    )


@pytest.fixture
def cli_runner():
    """Create a CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def config_file(tmp_path) -> Path:
    """kairo.yaml keeping all state under tmp_path."""
    path = tmp_path / "kairo.yaml"
    path.write_text(
        f"memory:\n"
        f"  mode: file\n"
        f"  file_dir: {tmp_path / 'data'}\n"
        f"error_log: {tmp_path / 'errors.jsonl'}\n"
    )
    return path
