"""Shared text helpers for term extraction and input similarity."""

import re
from typing import List

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "is", "are", "was", "were", "be", "been", "have", "has", "had", "do", "does", "did",
        "will", "would", "could", "should",
    }
)

MAX_KEY_TERMS = 20

_NON_WORD = re.compile(r"[^\w\s]")


def extract_key_terms(text: str, limit: int = MAX_KEY_TERMS) -> List[str]:
    """Extract lowercase key terms from text.

    Punctuation is replaced by spaces, stop words and terms of two characters
    or fewer are dropped. Order of first appearance is kept and repeats are
    preserved, so callers can count frequencies.

    Args:
        text: Text to tokenize
        limit: Maximum number of terms to return

    Returns:
        List of key terms, at most ``limit`` long
    """
    words = _NON_WORD.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS][:limit]


def unique_terms(text: str, limit: int = MAX_KEY_TERMS) -> List[str]:
    """Like extract_key_terms but without repeats (first occurrence wins)."""
    seen = set()
    terms = []
    for term in extract_key_terms(text, limit=10_000):
        if term not in seen:
            seen.add(term)
            terms.append(term)
        if len(terms) >= limit:
            break
    return terms


def fingerprint(text: str) -> str:
    """Normalize input for near-duplicate comparison."""
    return " ".join(_NON_WORD.sub("", text.lower()).split())


def string_similarity(first: str, second: str) -> float:
    """Token overlap ratio: 2 * |common| / (|A| + |B|) over tokens longer than 2 chars.

    Identical strings score 1.0. Empty against non-empty scores 0.0.
    """
    first = first.lower().strip()
    second = second.lower().strip()
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0

    words1 = [w for w in first.split() if len(w) > 2]
    words2 = [w for w in second.split() if len(w) > 2]
    if not words1 or not words2:
        return 0.0

    vocabulary = set(words2)
    common = [w for w in words1 if w in vocabulary]
    return min(1.0, (len(common) * 2) / (len(words1) + len(words2)))
