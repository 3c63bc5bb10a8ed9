"""Memory data structures."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class MemoryKind(str, Enum):
    """Kind of stored interaction. Determines the relevance prior."""

    LOG = "log"
    SUMMARY = "summary"
    PATTERN = "pattern"
    CORRECTION = "correction"
    GOAL = "goal"
    GOAL_PROGRESS = "goal_progress"
    SESSION_SUMMARY = "session_summary"
    SESSION_DECISION = "session_decision"


# Corrections and goals outrank plain logs
KIND_PRIORS: Dict[MemoryKind, float] = {
    MemoryKind.LOG: 0.8,
    MemoryKind.SUMMARY: 1.0,
    MemoryKind.PATTERN: 1.0,
    MemoryKind.CORRECTION: 1.2,
    MemoryKind.GOAL: 1.2,
    MemoryKind.GOAL_PROGRESS: 1.1,
    MemoryKind.SESSION_SUMMARY: 1.0,
    MemoryKind.SESSION_DECISION: 1.1,
}

MAX_RELEVANCE_PRIOR = 1.5


def generate_record_id(kind: MemoryKind) -> str:
    """Generate a unique record id, e.g. ``log_3f2a...``."""
    return f"{kind.value}_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryRecord(BaseModel):
    """A persisted interaction.

    Records are immutable: recall hands out copies with an updated
    ``last_accessed`` and a populated ``score``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., description="Unique record identifier")
    agent_id: str = Field(..., description="Owning agent")
    user_id: Optional[str] = Field(default=None, description="Session/user scope (None = global)")
    kind: MemoryKind = Field(default=MemoryKind.LOG)
    input: str = Field(..., description="User input that produced this record")
    output: str = Field(default="", description="Response that produced this record")
    summary: str = Field(default="", description="Extractive digest of the output")
    context: Optional[str] = Field(default=None, description="Free text linking to related records")
    relevance: float = Field(default=1.0, ge=0.0, le=MAX_RELEVANCE_PRIOR, description="Relevance prior")
    frequency: int = Field(default=1, ge=1)
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_accessed: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: Optional[float] = Field(default=None, exclude=True, description="Populated during recall")

    @field_validator("created_at", "last_accessed", mode="before")
    @classmethod
    def parse_datetime(cls, v):
        """Parse ISO strings and treat naive datetimes as UTC."""
        if isinstance(v, str):
            v = datetime.fromisoformat(v.replace("Z", "+00:00"))
        if isinstance(v, datetime) and v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_access_order(self):
        if self.last_accessed < self.created_at:
            raise ValueError("last_accessed cannot precede created_at")
        return self

    def to_row(self) -> Dict[str, Any]:
        """Serialize for storage (JSON-safe, without the recall score)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MemoryRecord":
        return cls.model_validate(row)

    def touched(self, when: datetime) -> "MemoryRecord":
        """Copy with ``last_accessed`` moved forward to ``when``."""
        if when <= self.last_accessed:
            return self
        return self.model_copy(update={"last_accessed": when})

    def with_score(self, score: float) -> "MemoryRecord":
        return self.model_copy(update={"score": score})


@dataclass
class Pattern:
    """A recurring input shape tracked across stored records."""

    signature: str
    frequency: int = 1
    last_seen: datetime = field(default_factory=utcnow)
    examples: List[str] = field(default_factory=list)
    corrections: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "frequency": self.frequency,
            "last_seen": self.last_seen.isoformat(),
            "examples": list(self.examples),
            "corrections": list(self.corrections),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pattern":
        last_seen = datetime.fromisoformat(data["last_seen"]) if data.get("last_seen") else utcnow()
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)
        return cls(
            signature=data["signature"],
            frequency=int(data.get("frequency", 1)),
            last_seen=last_seen,
            examples=list(data.get("examples", [])),
            corrections=list(data.get("corrections", [])),
        )


@dataclass
class TimeRange:
    """Inclusive creation-time window."""

    start: datetime
    end: datetime

    def contains(self, when: datetime) -> bool:
        return self.start <= when <= self.end


@dataclass
class RecallOptions:
    """Controls which records recall considers and returns."""

    limit: int = 10
    min_relevance: float = 0.3
    include_patterns: bool = True
    kinds: Optional[List[MemoryKind]] = None  # None = all kinds
    time_range: Optional[TimeRange] = None


@dataclass
class RecallResult:
    """Records relevant to a query, best first."""

    entries: List[MemoryRecord] = field(default_factory=list)
    total_matches: int = 0
    average_relevance: float = 0.0
    patterns: List[Pattern] = field(default_factory=list)


@dataclass
class MemoryStats:
    """Aggregate view over every record in a scope."""

    total_entries: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)
    average_relevance: float = 0.0
    top_patterns: List[Pattern] = field(default_factory=list)
    recent_activity: List[MemoryRecord] = field(default_factory=list)


@dataclass
class RecordFilter:
    """Filters passed to a backend's select.

    Backends may return a superset; the store re-checks every field.
    """

    agent_id: str
    user_id: Optional[str] = None
    kinds: Optional[List[MemoryKind]] = None
    time_range: Optional[TimeRange] = None
    limit: Optional[int] = None

    def matches(self, record: MemoryRecord) -> bool:
        if record.agent_id != self.agent_id:
            return False
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.kinds is not None and record.kind not in self.kinds:
            return False
        if self.time_range is not None and not self.time_range.contains(record.created_at):
            return False
        return True
