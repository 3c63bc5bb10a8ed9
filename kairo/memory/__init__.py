"""Relevance-scored interaction memory."""

from kairo.memory.breaker import BreakerState, CircuitBreaker
from kairo.memory.context import build_memory_context
from kairo.memory.goals import GoalProgress, GoalStatus, detect_goal_progress
from kairo.memory.patterns import PatternDetector
from kairo.memory.schema import (
    MemoryKind,
    MemoryRecord,
    MemoryStats,
    Pattern,
    RecallOptions,
    RecallResult,
    TimeRange,
)
from kairo.memory.scoring import score
from kairo.memory.store import MemoryStore, StorageMode

__all__ = [
    "BreakerState",
    "CircuitBreaker",
    "GoalProgress",
    "GoalStatus",
    "MemoryKind",
    "MemoryRecord",
    "MemoryStats",
    "MemoryStore",
    "Pattern",
    "PatternDetector",
    "RecallOptions",
    "RecallResult",
    "StorageMode",
    "TimeRange",
    "build_memory_context",
    "detect_goal_progress",
    "score",
]
