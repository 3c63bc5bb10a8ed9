"""Memory store: persistence, recall and maintenance of interaction records."""

import asyncio
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import portalocker

from kairo.error_log import ErrorCategory, ErrorSink
from kairo.exceptions import BackendUnavailable, RecordNotFound
from kairo.memory.backends.base import MemoryBackend
from kairo.memory.backends.file import FileBackend
from kairo.memory.breaker import CircuitBreaker
from kairo.memory.patterns import PatternDetector
from kairo.memory.schema import (
    KIND_PRIORS,
    MemoryKind,
    MemoryRecord,
    MemoryStats,
    RecallOptions,
    RecallResult,
    RecordFilter,
    generate_record_id,
    utcnow,
)
from kairo.memory.scoring import extract_tags, generate_summary, score

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PRIMARY_TIMEOUT = 3.0
RECENT_ACTIVITY_COUNT = 5
TOP_PATTERN_COUNT = 5

# Local file failures the store absorbs outside primary-only mode
_FILE_ERRORS = (OSError, portalocker.exceptions.LockException)


class StorageMode(str, Enum):
    PRIMARY = "primary"
    FILE = "file"
    HYBRID = "hybrid"


class MemoryStore:
    """Stores interaction records and recalls the most relevant ones for a query.

    Modes:
        primary: only the primary backend; its errors reach the caller
        file: only the local file backend
        hybrid: primary preferred, each failed primary call falls back to
            the file backend for that call. Reads merge both backends,
            since the file backend holds whatever was written while the
            primary was down.

    The store owns its PatternDetector and tracks the background tasks that
    move ``last_accessed`` forward after recall. Call ``close()`` (or
    ``flush()``) to wait for them.
    """

    def __init__(
        self,
        file_backend: FileBackend,
        primary: Optional[MemoryBackend] = None,
        mode: StorageMode = StorageMode.FILE,
        patterns: Optional[PatternDetector] = None,
        breaker: Optional[CircuitBreaker] = None,
        primary_timeout: float = DEFAULT_PRIMARY_TIMEOUT,
        error_sink: Optional[ErrorSink] = None,
        patterns_path: Optional[Path] = None,
    ):
        mode = StorageMode(mode)
        if mode is not StorageMode.FILE and primary is None:
            raise ValueError(f"Storage mode '{mode.value}' requires a primary backend")

        self.file_backend = file_backend
        self.primary = primary
        self.mode = mode
        self.patterns = patterns or PatternDetector()
        self.breaker = breaker or CircuitBreaker()
        self.primary_timeout = primary_timeout
        self.error_sink = error_sink or ErrorSink()
        self.patterns_path = patterns_path
        self._pending: set[asyncio.Task] = set()

        if patterns_path is not None:
            loaded = self.patterns.load(patterns_path)
            if loaded:
                logger.info("Loaded %d pattern(s) from %s", loaded, patterns_path)

    # Backend plumbing

    @property
    def uses_primary(self) -> bool:
        return self.mode is not StorageMode.FILE

    async def probe_primary(self) -> bool:
        """Run the count() health probe and update the breaker.

        Returns:
            True if the primary backend answered
        """
        if self.primary is None:
            return False
        try:
            await asyncio.wait_for(self.primary.count(), timeout=self.primary_timeout)
        except Exception as e:
            logger.warning("Primary backend health probe failed: %s", e)
            self.breaker.trip()
            return False
        self.breaker.record_success()
        return True

    async def _call_primary(self, call: Callable[[], Awaitable[T]]) -> T:
        """Run one primary call under the breaker and the timeout.

        Raises:
            BackendUnavailable: If the breaker is open or the call fails
        """
        if self.breaker.needs_probe():
            await self.probe_primary()
        if not self.breaker.allows_request():
            raise BackendUnavailable("Primary backend is marked unavailable", backend=self.primary.name)

        try:
            result = await asyncio.wait_for(call(), timeout=self.primary_timeout)
        except asyncio.TimeoutError as e:
            self.breaker.record_failure()
            raise BackendUnavailable(
                f"Primary backend timed out after {self.primary_timeout}s", backend=self.primary.name
            ) from e
        except BackendUnavailable:
            self.breaker.record_failure()
            raise
        except Exception as e:
            self.breaker.record_failure()
            raise BackendUnavailable(f"Primary backend error: {e}", backend=self.primary.name) from e

        self.breaker.record_success()
        return result

    async def _degraded(self, operation: str, error: BaseException, agent_id: str, **context: Any) -> None:
        await self.error_sink.report(
            ErrorCategory.MEMORY,
            f"Memory {operation} degraded to file backend",
            error=error,
            agent_id=agent_id,
            operation=operation,
            **context,
        )

    async def _gather(self, record_filter: RecordFilter) -> Dict[str, Tuple[MemoryRecord, MemoryBackend]]:
        """Candidate records keyed by id, with the backend holding each one."""
        found: Dict[str, Tuple[MemoryRecord, MemoryBackend]] = {}

        if self.uses_primary:
            try:
                rows = await self._call_primary(lambda: self.primary.select(record_filter))
            except BackendUnavailable as e:
                if self.mode is StorageMode.PRIMARY:
                    raise
                await self._degraded("read", e, record_filter.agent_id)
            else:
                for record in rows:
                    if record_filter.matches(record):
                        found[record.id] = (record, self.primary)

        if self.mode is not StorageMode.PRIMARY:
            try:
                rows = await self.file_backend.select(record_filter)
            except _FILE_ERRORS as e:
                await self.error_sink.report(
                    ErrorCategory.MEMORY, "File backend read failed", error=e, agent_id=record_filter.agent_id
                )
                rows = []
            for record in rows:
                if record.id not in found and record_filter.matches(record):
                    found[record.id] = (record, self.file_backend)

        return found

    async def _delete_grouped(self, agent_id: str, groups: Dict[MemoryBackend, List[str]]) -> int:
        deleted = 0
        for backend, ids in groups.items():
            if backend is self.primary:
                try:
                    deleted += await self._call_primary(lambda ids=ids: self.primary.delete(agent_id, ids))
                except BackendUnavailable as e:
                    if self.mode is StorageMode.PRIMARY:
                        raise
                    await self._degraded("delete", e, agent_id, record_count=len(ids))
            else:
                deleted += await backend.delete(agent_id, ids)
        return deleted

    # Public operations

    def build_record(
        self,
        agent_id: str,
        input: str,
        output: str,
        user_id: Optional[str] = None,
        context: Optional[str] = None,
        kind: MemoryKind = MemoryKind.LOG,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        summary: Optional[str] = None,
    ) -> MemoryRecord:
        """Record for one exchange, not yet persisted.

        Summary, tags and the relevance prior are derived when not given.
        """
        kind = MemoryKind(kind)
        now = utcnow()
        return MemoryRecord(
            id=generate_record_id(kind),
            agent_id=agent_id,
            user_id=user_id,
            kind=kind,
            input=input,
            output=output,
            summary=summary if summary is not None else generate_summary(input, output),
            context=context,
            relevance=KIND_PRIORS[kind],
            tags=list(tags) if tags is not None else extract_tags(input, output),
            created_at=now,
            last_accessed=now,
            metadata=dict(metadata or {}),
        )

    async def save(self, record: MemoryRecord) -> bool:
        """Persist a built record and feed it to the pattern detector.

        Outside primary-only mode storage errors are reported, not raised.

        Returns:
            False if no backend accepted the record

        Raises:
            BackendUnavailable: In primary-only mode, when the write fails
        """
        if not await self._write(record):
            return False
        # Progress records repeat an input already counted by its log record
        if record.kind is not MemoryKind.GOAL_PROGRESS:
            self.patterns.observe(record, now=record.created_at)
        return True

    async def store(self, agent_id: str, input: str, output: str, **fields: Any) -> MemoryRecord:
        """Build and persist one exchange.

        Raises:
            BackendUnavailable: In primary-only mode, when the write fails
        """
        record = self.build_record(agent_id, input, output, **fields)
        await self.save(record)
        return record

    async def _write(self, record: MemoryRecord) -> bool:
        if self.uses_primary:
            try:
                await self._call_primary(lambda: self.primary.insert(record))
                return True
            except BackendUnavailable as e:
                if self.mode is StorageMode.PRIMARY:
                    raise
                await self._degraded("write", e, record.agent_id, record_id=record.id)

        try:
            await self.file_backend.insert(record)
        except _FILE_ERRORS as e:
            await self.error_sink.report(
                ErrorCategory.MEMORY,
                "File backend write failed, record not persisted",
                error=e,
                agent_id=record.agent_id,
                input=record.input,
                record_id=record.id,
            )
            return False
        return True

    async def recall(
        self,
        agent_id: str,
        query: str,
        user_id: Optional[str] = None,
        options: Optional[RecallOptions] = None,
        now: Optional[datetime] = None,
    ) -> RecallResult:
        """Records most relevant to ``query``, best first.

        Every candidate is re-scored against the live query; the stored
        relevance prior plays no part. Returned records carry their score
        and the new ``last_accessed``; the backends are updated in the
        background.

        Raises:
            BackendUnavailable: In primary-only mode, when the read fails
        """
        options = options or RecallOptions()
        now = now or utcnow()
        record_filter = RecordFilter(
            agent_id=agent_id,
            user_id=user_id,
            kinds=options.kinds,
            time_range=options.time_range,
        )
        candidates = await self._gather(record_filter)

        scored = []
        for record, backend in candidates.values():
            value = score(query, record, now=now)
            if value >= options.min_relevance:
                scored.append((value, record, backend))
        scored.sort(key=lambda item: (item[0], item[1].last_accessed), reverse=True)

        selected = scored[: options.limit]
        entries = [record.touched(now).with_score(value) for value, record, _ in selected]

        touches: Dict[MemoryBackend, List[str]] = defaultdict(list)
        for _, record, backend in selected:
            touches[backend].append(record.id)
        for backend, ids in touches.items():
            self._spawn(self._touch(backend, agent_id, ids, now))

        average = sum(e.score for e in entries) / len(entries) if entries else 0.0
        patterns = self.patterns.relevant_patterns(query) if options.include_patterns else []
        return RecallResult(entries=entries, total_matches=len(scored), average_relevance=average, patterns=patterns)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _touch(self, backend: MemoryBackend, agent_id: str, ids: List[str], when: datetime) -> None:
        try:
            if backend is self.primary:
                await self._call_primary(lambda: self.primary.touch(agent_id, ids, when))
            else:
                await backend.touch(agent_id, ids, when)
        except (BackendUnavailable, *_FILE_ERRORS) as e:
            logger.warning("Failed to update last_accessed for %d record(s) on %s: %s", len(ids), backend.name, e)

    async def flush(self) -> None:
        """Wait for background last_accessed updates."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def get(self, agent_id: str, record_id: str) -> MemoryRecord:
        """Fetch one record.

        Raises:
            RecordNotFound: If no backend holds the id
        """
        found = await self._gather(RecordFilter(agent_id=agent_id))
        if record_id not in found:
            raise RecordNotFound(record_id)
        return found[record_id][0]

    async def stats(self, agent_id: str, user_id: Optional[str] = None) -> MemoryStats:
        merged = await self._gather(RecordFilter(agent_id=agent_id, user_id=user_id))
        records = [record for record, _ in merged.values()]
        if not records:
            return MemoryStats(top_patterns=self.patterns.top_patterns(TOP_PATTERN_COUNT))

        by_kind = Counter(record.kind.value for record in records)
        recent = sorted(records, key=lambda r: r.last_accessed, reverse=True)[:RECENT_ACTIVITY_COUNT]
        return MemoryStats(
            total_entries=len(records),
            by_kind=dict(by_kind),
            average_relevance=sum(r.relevance for r in records) / len(records),
            top_patterns=self.patterns.top_patterns(TOP_PATTERN_COUNT),
            recent_activity=recent,
        )

    async def delete(self, agent_id: str, record_id: str) -> bool:
        """Delete one record from whichever backend holds it.

        Returns:
            False if the id is unknown
        """
        try:
            record, backend = (await self._gather(RecordFilter(agent_id=agent_id)))[record_id]
        except KeyError:
            logger.debug("Delete of unknown record %s for agent %s", record_id, agent_id)
            return False
        return await self._delete_grouped(agent_id, {backend: [record.id]}) > 0

    async def cleanup(
        self,
        agent_id: str,
        max_age_days: int = 90,
        min_relevance: float = 0.1,
        max_entries: int = 1000,
        now: Optional[datetime] = None,
    ) -> int:
        """Two-phase purge of an agent's records.

        Phase 1 drops records older than ``max_age_days`` or with a prior
        below ``min_relevance``. Phase 2 trims whatever still exceeds
        ``max_entries``, lowest frequency first, then oldest.

        Returns:
            Total number of records deleted
        """
        now = now or utcnow()
        cutoff = now - timedelta(days=max_age_days)
        found = await self._gather(RecordFilter(agent_id=agent_id))

        expired: Dict[MemoryBackend, List[str]] = defaultdict(list)
        remaining: List[Tuple[MemoryRecord, MemoryBackend]] = []
        for record, backend in found.values():
            if record.created_at < cutoff or record.relevance < min_relevance:
                expired[backend].append(record.id)
            else:
                remaining.append((record, backend))

        deleted = await self._delete_grouped(agent_id, expired) if expired else 0

        overflow = len(remaining) - max_entries
        if overflow > 0:
            remaining.sort(key=lambda item: (item[0].frequency, item[0].created_at))
            trimmed: Dict[MemoryBackend, List[str]] = defaultdict(list)
            for record, backend in remaining[:overflow]:
                trimmed[backend].append(record.id)
            deleted += await self._delete_grouped(agent_id, trimmed)

        if deleted:
            logger.info("Cleaned up %d memory record(s) for agent %s", deleted, agent_id)
        return deleted

    async def learn_from_correction(
        self,
        agent_id: str,
        original_input: str,
        original_output: str,
        correction: str,
        user_id: Optional[str] = None,
    ) -> MemoryRecord:
        """Store a correction record and attach it to the input's pattern."""
        record = await self.store(
            agent_id,
            original_input,
            correction,
            user_id=user_id,
            context=f"Original response: {original_output}",
            kind=MemoryKind.CORRECTION,
            tags=extract_tags(original_input, correction),
            summary=f"Correction: {correction}",
        )
        self.patterns.record_correction(original_input, correction)
        return record

    def save_patterns(self) -> None:
        if self.patterns_path is not None:
            self.patterns.save(self.patterns_path)

    async def close(self) -> None:
        await self.flush()
        self.save_patterns()
        if self.primary is not None:
            await self.primary.close()
