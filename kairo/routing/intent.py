"""Heuristic intent analysis: weighted regex and keyword rules."""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from kairo.routing.agents import AgentId, AgentRegistry

logger = logging.getLogger(__name__)

PATTERN_SCORE = 0.4
KEYWORD_SCORE = 0.3
CLEAR_INTENT = 0.7

GREETINGS = ("hi", "hello", "hey", "greetings", "good morning", "good afternoon", "good evening")

ONBOARDING_PHRASES = (
    "welcome", "start", "begin", "help", "how to use", "getting started",
    "what can you do", "what are you", "introduction", "tour", "guide me",
    "show me around", "new here", "first time", "explain this", "how does this work",
)


@dataclass(frozen=True)
class IntentBoost:
    pattern: "re.Pattern[str]"
    boost: float
    reason: str


@dataclass(frozen=True)
class IntentRule:
    """Scores one agent.

    A rule earns ``0.4 * weight`` if any pattern matches, ``0.3 * weight``
    per keyword present, plus the first matching boost.
    """

    agent: AgentId
    patterns: Tuple["re.Pattern[str]", ...]
    keywords: Tuple[str, ...]
    weight: float = 1.0
    boosts: Tuple[IntentBoost, ...] = ()

    def evaluate(self, text: str) -> Tuple[float, List[str], str]:
        """Score lowercased ``text``.

        Returns:
            (score, match details, match key). The key names the pattern
            and boost that fired and ignores which keywords were hit.
        """
        total = 0.0
        details: List[str] = []
        key: List[str] = []

        if any(pattern.search(text) for pattern in self.patterns):
            total += PATTERN_SCORE * self.weight
            details.append("pattern match")
            key.append("pattern")

        hits = [kw for kw in self.keywords if re.search(rf"\b{re.escape(kw)}\b", text)]
        if hits:
            total += len(hits) * KEYWORD_SCORE * self.weight
            details.append(f"keywords: {', '.join(hits)}")

        for boost in self.boosts:
            if boost.pattern.search(text):
                total += boost.boost
                details.append(boost.reason)
                key.append(boost.reason)
                break

        return total, details, "+".join(key) or "keywords"


def _re(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


def _boost(pattern: str, boost: float, reason: str) -> IntentBoost:
    return IntentBoost(re.compile(pattern), boost, reason)


# Ordered: on equal scores the earlier rule wins
DEFAULT_RULES: Tuple[IntentRule, ...] = (
    IntentRule(
        agent=AgentId.RESEARCH,
        patterns=(
            _re(
                r"^(what|who|when|where|why|how|tell me about|explain"
                r"|research|find|investigate|analy[sz]e|study|explore)\b"
            ),
            _re(r"^help me (plan|start|outline|research|understand|learn)\b"),
            _re(r"\b(plan|planning|outline|strategy|approach|framework|methodology)\b"),
            _re(r"\b(learn|understand|information|facts|evidence|statistics|trends|comparison)\b"),
            _re(r"\b(research|investigate|analy[sz]e|study|explore|examine|compare|evaluate)\b"),
            _re(r"\b(teach me|how to|how do i|show me how|tutorial|walkthrough)\b"),
        ),
        keywords=(
            "plan", "planning", "outline", "strategy", "approach", "framework", "methodology", "research",
            "analysis", "python", "javascript", "java", "programming", "coding", "code", "development",
            "software", "technology", "science", "market", "data", "study", "course", "training", "project",
            "algorithm", "database", "library", "api", "web development", "machine learning",
        ),
        weight=1.5,
        boosts=(
            _boost(r"\b(help me plan a|planning a|plan for)\b", 0.9, "direct planning request"),
            _boost(r"\bhelp me (plan|start|outline|research|understand)\b", 0.8, "planning assistance"),
            _boost(r"\b(plan|planning|outline|strategy|approach)\b", 0.7, "planning and strategy"),
            _boost(r"\b(i want to learn|teach me|explain|what is|how does)\b", 0.4, "learning intent"),
            _boost(r"\b(project|framework|methodology)\b", 0.4, "project research"),
            _boost(r"\b(statistics|data|evidence|facts|information)\b", 0.3, "information seeking"),
            _boost(r"\b(compare|versus|vs|difference between)\b", 0.3, "comparison request"),
        ),
    ),
    IntentRule(
        agent=AgentId.CREATIVE,
        patterns=(
            _re(r"^(create|generate|brainstorm|design|imagine|write|come up with|think of)\b"),
            _re(r"\b(ideas|creative|story|name|concept|design|inspiration|innovative|original)\b"),
            _re(r"\b(brainstorm|ideate|conceptualize|visualize|craft|compose)\b"),
        ),
        keywords=("story", "name", "brand", "creative", "ideas", "design", "concept", "brainstorm"),
        weight=1.0,
        boosts=(
            _boost(r"\b(name for|names for|title for|brand|creative name)\b", 0.4, "naming request"),
            _boost(r"\b(brainstorm|ideas for|suggestions for)\b", 0.4, "ideation request"),
            _boost(r"\b(story|novel|character|plot|writing)\b", 0.3, "creative writing"),
        ),
    ),
    IntentRule(
        agent=AgentId.AUTOMATION,
        patterns=(
            _re(r"^(automate|optimi[sz]e|build a script|create a template|systematize)\b"),
            _re(r"\b(automation|workflow optimization|streamline this process|systematize|mechanize)\b"),
            _re(r"\b(build me a (script|template|tool|bot)|make this (efficient|faster|automated))\b"),
        ),
        keywords=(
            "automate", "automation", "optimize", "streamline", "systematize", "mechanize",
            "script", "template", "tool", "bot", "integration", "workflow", "efficient",
        ),
        weight=0.8,
        boosts=(
            _boost(
                r"\bhelp me (automate|optimi[sz]e|streamline|systematize)\b", 0.6, "automation assistance"
            ),
            _boost(
                r"\b(automate this|automation for|streamline this process|systematize this)\b",
                0.5,
                "automation focus",
            ),
            _boost(r"\b(build a (script|template|tool|bot)|create an automated)\b", 0.4, "efficiency tools"),
            _boost(
                r"\b(save time by automating|make this faster|more efficient workflow)\b", 0.4, "efficiency seeking"
            ),
            _boost(r"^(automate|optimi[sz]e|streamline)\b", 0.3, "leading automation verb"),
        ),
    ),
)


@dataclass
class IntentResult:
    """Best candidate agent for an input.

    ``agent`` is None when no rule or profile keyword matched. The
    ``signature`` identifies the kind of intent for repeat damping.
    """

    agent: Optional[AgentId]
    confidence: float
    reason: str
    signature: str
    scores: dict = field(default_factory=dict)


def is_greeting(text: str) -> bool:
    lowered = text.lower().strip().rstrip("!.?")
    return any(lowered == greeting or lowered.startswith(greeting + " ") for greeting in GREETINGS)


def is_onboarding_query(text: str) -> bool:
    lowered = text.lower().strip()
    return any(phrase in lowered for phrase in ONBOARDING_PHRASES)


class IntentAnalyzer:
    """Maps input text to (candidate agent, confidence, reason).

    A rule score above 0.7 is a clear intent. Otherwise greetings go to
    the welcome agent, and failing that the profile keywords in the
    registry pick the candidate, keeping the (low) rule confidence.
    """

    def __init__(self, registry: AgentRegistry, rules: Tuple[IntentRule, ...] = DEFAULT_RULES):
        self.registry = registry
        self.rules = rules

    def score_rules(self, text: str) -> Tuple[Optional[AgentId], float, str, str, dict]:
        """Best rule for ``text`` as (agent, confidence, reason, match key, scores)."""
        lowered = text.lower().strip()
        best_agent: Optional[AgentId] = None
        best_score = 0.0
        best_reason = ""
        best_key = ""
        scores = {}
        for rule in self.rules:
            value, details, key = rule.evaluate(lowered)
            scores[rule.agent.value] = round(value, 4)
            if value > best_score:
                best_agent, best_score, best_reason, best_key = rule.agent, value, ", ".join(details), key
        return best_agent, min(best_score, 1.0), best_reason, best_key, scores

    def analyze(self, text: str) -> IntentResult:
        agent, confidence, reason, key, scores = self.score_rules(text)

        if agent is not None and confidence > CLEAR_INTENT:
            result = IntentResult(agent, confidence, reason, f"{agent.value}:{key}", scores)
        elif is_greeting(text):
            result = IntentResult(AgentId.WELCOME, confidence, "greeting", "welcome:greeting", scores)
        else:
            fallback = self.registry.best_keyword_match(text)
            if fallback is None:
                result = IntentResult(None, confidence, "no clear intent", "none", scores)
            else:
                result = IntentResult(
                    fallback, confidence, f"profile keywords ({fallback.value})", f"{fallback.value}:keywords", scores
                )

        logger.debug(
            "Intent for %r: agent=%s confidence=%.2f reason=%s",
            text[:50],
            result.agent.value if result.agent else None,
            result.confidence,
            result.reason,
        )
        return result
