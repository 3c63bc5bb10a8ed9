"""Goal progress detection from user input."""

import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kairo.memory.schema import MemoryKind, MemoryRecord

logger = logging.getLogger(__name__)

MIN_INPUT_LENGTH = 8
MIN_CONFIDENCE = 0.5
PATTERN_SCORE = 0.6
KEYWORD_SCORE = 0.4
CONTEXT_BOOST = 0.2
MAX_ACTIVE_GOALS = 5
RELATED_GOAL_OVERLAP = 0.1


class GoalStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


CLOSED_STATUSES = (GoalStatus.COMPLETED.value, GoalStatus.ABANDONED.value)


@dataclass(frozen=True)
class ProgressRule:
    """Scores one status.

    A rule earns ``0.6 * weight`` if any pattern matches the whole input
    and ``0.4 * weight`` per keyword present.
    """

    status: GoalStatus
    patterns: Tuple["re.Pattern[str]", ...]
    keywords: Tuple[str, ...]
    weight: float
    reason: str

    def evaluate(self, text: str) -> Tuple[float, List[str]]:
        total = 0.0
        if any(pattern.search(text) for pattern in self.patterns):
            total += PATTERN_SCORE * self.weight
        hits = [kw for kw in self.keywords if re.search(rf"\b{re.escape(kw)}\b", text)]
        total += len(hits) * KEYWORD_SCORE * self.weight
        return total, hits


# Ordered: on equal scores the earlier rule wins
PROGRESS_RULES: Tuple[ProgressRule, ...] = (
    ProgressRule(
        status=GoalStatus.COMPLETED,
        patterns=(
            re.compile(r"^(it's|its|i've|ive)\s+(done|finished|complete|completed|ready|working|live)$"),
            re.compile(
                r"^(i\s+)?(finished|completed|done with|wrapped up|launched|deployed|shipped)"
                r"(\s+the|\s+it|\s+this|\s+that)?$"
            ),
            re.compile(r"^(all\s+)?(done|finished|complete|sorted|working|ready)(\s+now|\s+finally)?[!.]?$"),
            re.compile(
                r"^(thanks|thank you|great|perfect|awesome),?\s+(all\s+)?(done|finished|sorted|complete|working)$"
            ),
            re.compile(r"^(success|successfully|got it working|it works|working now|up and running)[!.]?$"),
        ),
        keywords=(
            "finished", "completed", "done", "launched", "deployed", "shipped", "ready", "working", "live",
            "success", "successfully", "accomplished", "achieved", "wrapped up", "all set", "sorted",
            "complete", "finalized",
        ),
        weight=1.2,
        reason="User indicated task completion",
    ),
    ProgressRule(
        status=GoalStatus.IN_PROGRESS,
        patterns=(
            re.compile(r"^(i\s+)?(finished|completed|done with)\s+(the\s+)?(first|second|third|next|\d+\w*)\s+"
                       r"(part|step|stage|phase)$"),
            re.compile(r"^(i've|ive)\s+(now|just|already)\s+(set up|configured|installed|created|built)(\s+the)?$"),
            re.compile(r"^(making\s+)?(good\s+)?progress(\s+on|\s+with)?(\s+the|\s+this|\s+it)?$"),
            re.compile(r"^(got|have)\s+(the\s+)?(first|initial|basic)\s+(part|version|setup)\s+(done|working)$"),
            re.compile(r"^(halfway|partway|almost)\s+(done|there|finished)$"),
        ),
        keywords=(
            "progress", "halfway", "partway", "continuing", "working on", "in the middle", "next step",
            "moving forward", "making headway", "getting there", "ongoing", "currently working",
            "just finished the", "completed part", "done with the first",
        ),
        weight=1.0,
        reason="User reported partial completion",
    ),
    ProgressRule(
        status=GoalStatus.ABANDONED,
        patterns=(
            re.compile(r"^(i've|ive)\s+(decided|chosen)\s+(not\s+to|against)(\s+continue|\s+proceeding|\s+doing)"
                       r"(\s+this|\s+it|\s+that)?$"),
            re.compile(r"^(not\s+)?(relevant|needed|important|priority)\s+(anymore|any\s+more|now)$"),
            re.compile(r"^(gave\s+up|giving\s+up|stopped\s+working)\s+(on\s+)?(this|it|that)$"),
            re.compile(r"^(different\s+)?(approach|direction|priority|focus)\s+(now|instead)$"),
            re.compile(r"^(shelving|postponing|pausing|putting\s+on\s+hold)\s+(this|it|that)(\s+for\s+now)?$"),
        ),
        keywords=(
            "gave up", "giving up", "stopped", "not relevant", "different approach", "changed mind",
            "not needed", "shelving", "postponing", "putting on hold", "decided against", "no longer",
            "different priority", "abandoned", "cancelled", "not pursuing", "different direction",
        ),
        weight=1.1,
        reason="User decided to discontinue",
    ),
)


@dataclass
class GoalProgress:
    status: GoalStatus
    confidence: float
    reason: str
    indicators: List[str] = field(default_factory=list)
    goal_id: Optional[str] = None


def active_goals(records: Iterable[MemoryRecord]) -> List[MemoryRecord]:
    """Open goal records, most recently accessed first."""
    goals = [
        r
        for r in records
        if r.kind in (MemoryKind.GOAL, MemoryKind.GOAL_PROGRESS)
        and r.metadata.get("goal_id")
        and r.metadata.get("goal_status") not in CLOSED_STATUSES
    ]
    goals.sort(key=lambda r: r.last_accessed, reverse=True)
    return goals[:MAX_ACTIVE_GOALS]


def related_goal(text: str, goals: List[MemoryRecord]) -> Optional[MemoryRecord]:
    """Goal sharing the most words with ``text``; the most recent one otherwise."""
    if not goals:
        return None

    words = text.lower().split()
    best, best_score = None, 0.0
    for goal in goals:
        goal_words = " ".join((goal.metadata.get("goal_summary", ""), goal.summary, goal.input)).lower().split()
        overlap = sum(1 for w in words if len(w) > 3 and any(w in g or g in w for g in goal_words))
        value = overlap / max(len(words), len(goal_words), 1)
        if value > best_score:
            best, best_score = goal, value
    return best if best_score > RELATED_GOAL_OVERLAP else goals[0]


def detect_goal_progress(
    text: str, records: Iterable[MemoryRecord] = (), rules: Tuple[ProgressRule, ...] = PROGRESS_RULES
) -> Optional[GoalProgress]:
    """Detect a goal status update in ``text``.

    Recalled goal records add a small context boost and supply the goal
    the update belongs to.

    Returns:
        The best-scoring status update, or None below 0.5 confidence
    """
    lowered = text.strip().lower()
    if len(lowered) < MIN_INPUT_LENGTH:
        return None

    goals = active_goals(records)
    best: Optional[GoalProgress] = None
    best_score = 0.0
    for rule in rules:
        value, hits = rule.evaluate(lowered)
        if value > 0 and goals:
            value += CONTEXT_BOOST
        if value > best_score:
            best_score = value
            best = GoalProgress(rule.status, min(value, 1.0), rule.reason, hits)

    if best is None or best.confidence < MIN_CONFIDENCE:
        return None

    related = related_goal(text, goals)
    if related is not None:
        best.goal_id = related.metadata["goal_id"]
    logger.debug("Goal progress for %r: %s (%.2f)", text[:50], best.status.value, best.confidence)
    return best


def progress_record_fields(progress: GoalProgress, agent_id: str) -> Dict[str, Any]:
    """Keyword arguments for ``MemoryStore.build_record`` describing ``progress``."""
    goal_id = progress.goal_id or f"goal_{uuid.uuid4().hex[:12]}"
    return {
        "kind": MemoryKind.GOAL_PROGRESS,
        "summary": f"Goal {progress.status.value}: {progress.reason}",
        "context": f"Progress update detected: {', '.join(progress.indicators) or 'status change'}",
        "tags": ["goal_tracking", f"status_{progress.status.value}", agent_id, "progress_update"],
        "metadata": {
            "goal_id": goal_id,
            "goal_status": progress.status.value,
            "goal_summary": f"Goal tracked by {agent_id}",
            "confidence": round(progress.confidence, 4),
        },
    }
