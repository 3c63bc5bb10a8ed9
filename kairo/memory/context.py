"""Render recalled memory as a text block for agent input."""

from kairo.memory.schema import MemoryKind, RecallResult

HIGH_RELEVANCE = 0.8
MEDIUM_RELEVANCE = 0.6


def _marker(score: float) -> str:
    if score > HIGH_RELEVANCE:
        return "[high]"
    if score > MEDIUM_RELEVANCE:
        return "[medium]"
    return "[low]"


def build_memory_context(result: RecallResult) -> str:
    """Format recalled entries and patterns for injection into an agent prompt.

    Returns an empty string when nothing was recalled.
    """
    if not result.entries:
        return ""

    lines = ["", "--- Memory Context ---"]
    for entry in result.entries:
        lines.append(f"{_marker(entry.score or 0.0)} [{entry.kind.value.upper()}] {entry.summary}")
        if entry.kind is MemoryKind.CORRECTION and entry.context:
            lines.append(f"   Previous mistake: {entry.context}")

    if result.patterns:
        lines.append("")
        lines.append("Detected patterns:")
        for pattern in result.patterns:
            lines.append(f"   - {pattern.signature} (seen {pattern.frequency}x)")
            if pattern.corrections:
                lines.append(f"     Common corrections: {', '.join(pattern.corrections)}")

    lines.append("--- End Memory Context ---")
    lines.append("")
    return "\n".join(lines)
