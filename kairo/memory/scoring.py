"""Relevance scoring and derived record fields.

Everything here is pure: no I/O, no global state, and the clock is passed in.
"""

from collections import Counter
from datetime import datetime
from typing import List, Optional

from kairo.memory.schema import MemoryKind, MemoryRecord, utcnow
from kairo.text import extract_key_terms, unique_terms

SUMMARY_TERM_WEIGHT = 0.4
INPUT_TERM_WEIGHT = 0.3
TAG_TERM_WEIGHT = 0.2
FREQUENCY_STEP = 0.1
FREQUENCY_CAP = 0.3
RECENCY_MAX = 0.2
RECENCY_DECAY_PER_DAY = 0.01
KIND_BONUS = {MemoryKind.CORRECTION: 0.3, MemoryKind.PATTERN: 0.2}

MAX_SUMMARY_CHARS = 200
DEFAULT_TAG_COUNT = 5


def score(query: str, record: MemoryRecord, now: Optional[datetime] = None) -> float:
    """Score a record against a live query.

    Args:
        query: Free-text query
        record: Candidate record (its stored relevance prior is ignored)
        now: Reference time for the recency bonus (defaults to current UTC time)

    Returns:
        Score in [0, 1]
    """
    now = now or utcnow()
    query_terms = unique_terms(query)
    summary_terms = set(extract_key_terms(record.summary))
    input_terms = set(extract_key_terms(record.input))
    tags = {tag.lower() for tag in record.tags}

    total = 0.0
    total += sum(1 for term in query_terms if term in summary_terms) * SUMMARY_TERM_WEIGHT
    total += sum(1 for term in query_terms if term in input_terms) * INPUT_TERM_WEIGHT
    total += sum(1 for term in query_terms if term in tags) * TAG_TERM_WEIGHT

    total += min(record.frequency * FREQUENCY_STEP, FREQUENCY_CAP)

    days_since_access = max(0.0, (now - record.last_accessed).total_seconds() / 86400)
    total += max(0.0, RECENCY_MAX - days_since_access * RECENCY_DECAY_PER_DAY)

    total += KIND_BONUS.get(record.kind, 0.0)

    return min(total, 1.0)


def generate_summary(input_text: str, output_text: str) -> str:
    """Pick the output line sharing the most key terms with the input.

    Falls back to the first non-empty line. Long lines are cut at 200 chars.
    """
    input_terms = set(extract_key_terms(input_text))
    lines = [line.strip() for line in output_text.splitlines() if line.strip()]
    if not lines:
        best = output_text.strip()[:100]
    else:
        best = lines[0]
        best_score = 0
        for line in lines:
            overlap = len(input_terms.intersection(extract_key_terms(line)))
            if overlap > best_score:
                best_score = overlap
                best = line

    if len(best) > MAX_SUMMARY_CHARS:
        return best[:MAX_SUMMARY_CHARS] + "..."
    return best


def extract_tags(input_text: str, output_text: str, limit: int = DEFAULT_TAG_COUNT) -> List[str]:
    """Most frequent key terms across input and output (ties keep first appearance)."""
    counts = Counter(extract_key_terms(f"{input_text} {output_text}"))
    return [term for term, _ in counts.most_common(limit)]
