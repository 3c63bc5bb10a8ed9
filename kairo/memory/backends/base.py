"""Backend interface for memory record persistence."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from kairo.memory.schema import MemoryRecord, RecordFilter


class MemoryBackend(ABC):
    """Row store holding MemoryRecord rows.

    Implementations raise on I/O failure; the store decides whether to
    degrade to another backend.
    """

    name: str = "backend"

    @abstractmethod
    async def insert(self, record: MemoryRecord) -> None:
        """Persist a new record."""

    @abstractmethod
    async def select(self, record_filter: RecordFilter) -> List[MemoryRecord]:
        """Return records matching the filter, most recently accessed first."""

    @abstractmethod
    async def touch(self, agent_id: str, record_ids: Iterable[str], when: datetime) -> int:
        """Move ``last_accessed`` forward for the given ids of one agent.

        Returns:
            Number of rows updated
        """

    @abstractmethod
    async def delete(self, agent_id: str, record_ids: Iterable[str]) -> int:
        """Delete records owned by ``agent_id``.

        Returns:
            Number of rows deleted (unknown ids are ignored)
        """

    @abstractmethod
    async def count(self, agent_id: Optional[str] = None) -> int:
        """Count records. Used as the lightweight health probe."""

    async def close(self) -> None:
        """Release connections. Default is a no-op."""
