"""Background timer: session sweep and primary backend re-probe."""

import asyncio
import logging
from typing import Optional

from kairo.memory.store import MemoryStore
from kairo.routing.state import RoutingStateManager

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0


class Maintenance:
    """Runs housekeeping on a fixed interval, decoupled from request handling.

    Each tick evicts expired routing sessions and, when the memory store's
    circuit breaker is waiting for a probe, re-probes the primary backend.
    """

    def __init__(
        self, state: RoutingStateManager, memory: Optional[MemoryStore] = None, interval: float = DEFAULT_INTERVAL
    ):
        self.state = state
        self.memory = memory
        self.interval = interval
        self._running = False
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run_once(self) -> None:
        evicted = self.state.cleanup_expired_sessions()
        if evicted:
            logger.debug("Maintenance evicted %d session(s)", evicted)

        if self.memory is not None and self.memory.uses_primary and self.memory.breaker.needs_probe():
            healthy = await self.memory.probe_primary()
            logger.info("Primary backend re-probe: %s", "healthy" if healthy else "unavailable")

    async def _main_loop(self) -> None:
        while self._running:
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if not self._running:
                break
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Maintenance tick failed: %s", e)

    def start(self) -> asyncio.Task:
        """Start the loop as a background task on the running event loop."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._main_loop())
            logger.info("Maintenance started (interval=%ss)", self.interval)
        return self._task

    async def stop(self) -> None:
        self._running = False
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Maintenance stopped")
