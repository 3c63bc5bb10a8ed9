"""Structured error sink for degraded fallbacks and dispatch failures."""

import asyncio
import json
import logging
import threading
import uuid
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import portalocker
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MAX_INPUT_PREVIEW = 200


class ErrorCategory(str, Enum):
    MEMORY = "memory"
    AGENT = "agent"
    SYSTEM = "system"


class ErrorEvent(BaseModel):
    """One reported failure."""

    id: str = Field(default_factory=lambda: f"err_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    category: ErrorCategory
    message: str
    error: Optional[str] = None
    agent_id: Optional[str] = None
    session_id: Optional[str] = None
    input: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


def _preview(text: Optional[str]) -> Optional[str]:
    if text is None or len(text) <= MAX_INPUT_PREVIEW:
        return text
    return text[:MAX_INPUT_PREVIEW] + "..."


class ErrorSink:
    """Reports failures to the log and, optionally, a JSONL file.

    Reporting never raises: a sink that cannot write its file logs the
    problem and keeps going. The file append runs in a worker thread so
    the event loop never waits on the file lock.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._lock = threading.Lock()

    async def report(
        self,
        category: ErrorCategory,
        message: str,
        error: Optional[BaseException] = None,
        agent_id: Optional[str] = None,
        session_id: Optional[str] = None,
        input: Optional[str] = None,
        **context: Any,
    ) -> ErrorEvent:
        event = ErrorEvent(
            category=category,
            message=message,
            error=f"{type(error).__name__}: {error}" if error is not None else None,
            agent_id=agent_id,
            session_id=session_id,
            input=_preview(input),
            context=context,
        )

        level = logging.ERROR if category is ErrorCategory.AGENT else logging.WARNING
        logger.log(
            level,
            "%s (category=%s agent=%s session=%s): %s",
            message,
            category.value,
            agent_id,
            session_id,
            event.error,
        )

        if self.path is not None:
            await asyncio.to_thread(self._append, event)
        return event

    def _append(self, event: ErrorEvent) -> None:
        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                with open(self.path, "a", encoding="utf-8") as f:
                    portalocker.lock(f, portalocker.LOCK_EX)
                    try:
                        f.write(line + "\n")
                        f.flush()
                    finally:
                        portalocker.unlock(f)
        except (OSError, portalocker.exceptions.LockException) as e:
            logger.error("Failed to write error event to %s: %s", self.path, e)

    def recent(self, limit: int = 20) -> List[ErrorEvent]:
        """Most recent events from the JSONL file, newest first."""
        if self.path is None or not self.path.exists():
            return []

        events = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(ErrorEvent.model_validate_json(line))
                except ValueError:
                    logger.debug("Skipping unreadable error event line in %s", self.path)
        events.reverse()
        return events[:limit]

    def stats(self) -> Dict[str, Any]:
        """Event counts by category and by agent."""
        events = self.recent(limit=10_000)
        return {
            "total": len(events),
            "by_category": dict(Counter(e.category.value for e in events)),
            "by_agent": dict(Counter(e.agent_id for e in events if e.agent_id)),
        }
