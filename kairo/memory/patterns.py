"""Recurring input pattern detection."""

import json
import logging
import os
import re
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from kairo.memory.schema import MemoryRecord, Pattern, utcnow
from kairo.text import extract_key_terms

logger = logging.getLogger(__name__)

MAX_EXAMPLES = 5
MAX_CORRECTIONS = 3
FREQUENT_PATTERN_THRESHOLD = 3
MAX_RELEVANT_PATTERNS = 3

# Ordered (name, regex) rules; first match wins and the matched text becomes the signature
SIGNATURE_RULES: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("question", re.compile(r"^(help|how|what|why|when|where|which|can|could|would|should)\s+", re.IGNORECASE)),
    ("action", re.compile(r"create|build|make|generate|write", re.IGNORECASE)),
    ("explanation", re.compile(r"explain|describe|tell me about", re.IGNORECASE)),
    ("troubleshooting", re.compile(r"fix|debug|solve|troubleshoot", re.IGNORECASE)),
    ("analysis", re.compile(r"analyze|review|check|evaluate", re.IGNORECASE)),
)


def _snapshot(pattern: Pattern) -> Pattern:
    return replace(pattern, examples=list(pattern.examples), corrections=list(pattern.corrections))


def extract_signature(text: str) -> Optional[str]:
    """Return the normalized shape of an input, or None when no rule matches."""
    for _name, rule in SIGNATURE_RULES:
        match = rule.search(text)
        if match:
            return match.group(0).lower().strip()
    return None


class PatternDetector:
    """Tracks input signatures by frequency and recency.

    Shared by every request in the process, so all access goes through a lock.
    """

    def __init__(self):
        self._patterns: Dict[str, Pattern] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)

    def observe(self, record: MemoryRecord, now: Optional[datetime] = None) -> Optional[Pattern]:
        """Count a stored record against its input signature.

        Returns:
            The updated pattern, or None when the input has no recognizable shape
        """
        signature = extract_signature(record.input)
        if signature is None:
            return None

        now = now or utcnow()
        with self._lock:
            pattern = self._patterns.get(signature)
            if pattern is None:
                pattern = Pattern(signature=signature, frequency=1, last_seen=now, examples=[record.input])
                self._patterns[signature] = pattern
            else:
                pattern.frequency += 1
                pattern.last_seen = now
                pattern.examples.append(record.input)
                del pattern.examples[:-MAX_EXAMPLES]
            return _snapshot(pattern)

    def record_correction(self, input_text: str, correction: str) -> bool:
        """Attach a correction to the pattern matching ``input_text``.

        Returns:
            True if a tracked pattern received the correction
        """
        signature = extract_signature(input_text)
        if signature is None:
            return False

        with self._lock:
            pattern = self._patterns.get(signature)
            if pattern is None:
                return False
            pattern.corrections.append(correction)
            del pattern.corrections[:-MAX_CORRECTIONS]
            return True

    def relevant_patterns(self, query: str) -> List[Pattern]:
        """Patterns sharing a term with the query, or seen more than three times."""
        query_terms = set(extract_key_terms(query))
        with self._lock:
            matches = [
                _snapshot(pattern)
                for pattern in self._patterns.values()
                if query_terms.intersection(extract_key_terms(pattern.signature))
                or pattern.frequency > FREQUENT_PATTERN_THRESHOLD
            ]
        matches.sort(key=lambda p: p.frequency, reverse=True)
        return matches[:MAX_RELEVANT_PATTERNS]

    def top_patterns(self, limit: int = 5) -> List[Pattern]:
        with self._lock:
            patterns = [_snapshot(p) for p in self._patterns.values()]
        patterns.sort(key=lambda p: p.frequency, reverse=True)
        return patterns[:limit]

    def get(self, signature: str) -> Optional[Pattern]:
        with self._lock:
            pattern = self._patterns.get(signature)
            return _snapshot(pattern) if pattern else None

    def save(self, path: Path) -> None:
        """Write all patterns to a JSON file (atomic replace)."""
        with self._lock:
            data = {sig: pattern.to_dict() for sig, pattern in self._patterns.items()}
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(str(tmp), str(path))

    def load(self, path: Path) -> int:
        """Merge patterns from a JSON file written by save().

        Returns:
            Number of patterns loaded (0 if the file is missing or unreadable)
        """
        if not path.exists():
            return 0
        try:
            data = json.loads(path.read_text())
            loaded = {sig: Pattern.from_dict(raw) for sig, raw in data.items()}
        except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
            logger.error("Failed to load patterns from %s: %s", path, e)
            return 0

        with self._lock:
            self._patterns.update(loaded)
        return len(loaded)
