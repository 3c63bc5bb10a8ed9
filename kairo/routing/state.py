"""Per-session routing state and the routing decision function."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from kairo.config import RoutingThresholds, RoutingTimings
from kairo.routing.agents import AgentId
from kairo.text import fingerprint, string_similarity

logger = logging.getLogger(__name__)

RESET_PATTERNS = (
    re.compile(r"^(start over|reset|begin again|new conversation|fresh start)"),
    re.compile(r"^(clear|restart|go back)"),
    re.compile(r"\b(start from scratch|begin anew|fresh topic)\b"),
)


def is_reset_request(text: str) -> bool:
    lowered = text.lower().strip()
    return any(pattern.search(lowered) for pattern in RESET_PATTERNS)


@dataclass
class IntentEntry:
    signature: str
    agent_id: AgentId
    confidence: float
    timestamp: float
    input_fingerprint: str


@dataclass
class RoutingState:
    """Routing history of one session. Timestamps are clock seconds."""

    current_thread: AgentId
    last_routed_agent: AgentId
    session_start_time: float
    last_activity: float
    last_routed_time: float = 0.0
    routing_count: int = 0
    last_user_input: str = ""
    last_input_time: float = 0.0
    recent_intents: List[IntentEntry] = field(default_factory=list)
    pending_route: Optional[AgentId] = None

    @property
    def active_thread(self) -> AgentId:
        """Thread the session is in, counting a handoff still being dispatched."""
        return self.pending_route or self.current_thread


@dataclass
class RoutingDecision:
    should_route: bool
    target_agent: AgentId
    confidence: float
    reason: str
    suppress_intro: bool
    damping_applied: float = 0.0


class RoutingStateManager:
    """Holds one RoutingState per session and decides whether to hand off.

    The decision and update methods are synchronous and touch only the
    session's state. Concurrent requests for the same session must hold
    ``session_lock(session_id)`` around them; the lock is never meant to
    be held across memory I/O or agent dispatch.
    """

    def __init__(
        self,
        thresholds: Optional[RoutingThresholds] = None,
        timings: Optional[RoutingTimings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.thresholds = thresholds or RoutingThresholds()
        self.timings = timings or RoutingTimings()
        self._clock = clock
        self._sessions: Dict[str, RoutingState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def get_state(self, session_id: str, current_agent: Optional[AgentId] = None) -> RoutingState:
        """Session state, created on first use.

        A ``current_agent`` from the caller overrides the stored thread.
        """
        now = self._clock()
        state = self._sessions.get(session_id)
        if state is None:
            start = AgentId(current_agent) if current_agent else AgentId.ROUTER
            state = RoutingState(
                current_thread=start, last_routed_agent=start, session_start_time=now, last_activity=now
            )
            self._sessions[session_id] = state
        elif current_agent and AgentId(current_agent) is not state.current_thread:
            state.current_thread = AgentId(current_agent)
        return state

    def evaluate_routing(
        self,
        session_id: str,
        target_agent: AgentId,
        base_confidence: float,
        input: str,
        intent_signature: str,
        current_agent: Optional[AgentId] = None,
    ) -> RoutingDecision:
        """Decide whether ``target_agent`` should take over the session."""
        target_agent = AgentId(target_agent)
        state = self.get_state(session_id, current_agent)
        now = self._clock()
        th, tm = self.thresholds, self.timings
        input_print = fingerprint(input)

        # Another request for this session is mid-handoff
        if state.pending_route is not None:
            return RoutingDecision(
                should_route=False,
                target_agent=state.pending_route,
                confidence=base_confidence,
                reason=f"Handoff to {state.pending_route.value} already in progress",
                suppress_intro=True,
            )

        # Already in the target's thread
        reentry = False
        if target_agent is state.current_thread:
            if is_reset_request(input):
                return RoutingDecision(
                    should_route=True,
                    target_agent=target_agent,
                    confidence=base_confidence,
                    reason="Reset request within same agent",
                    suppress_intro=False,
                )
            if base_confidence < th.reset_override:
                return RoutingDecision(
                    should_route=False,
                    target_agent=state.current_thread,
                    confidence=base_confidence,
                    reason="Already in target agent thread",
                    suppress_intro=True,
                )
            reentry = True

        # Anti-flicker
        since_route = now - state.last_routed_time
        if (
            state.last_routed_agent is target_agent
            and since_route < tm.anti_flicker
            and base_confidence < th.anti_flicker_override
        ):
            return RoutingDecision(
                should_route=False,
                target_agent=state.current_thread,
                confidence=base_confidence,
                reason=f"Recent routing to same agent (< {tm.anti_flicker:g}s)",
                suppress_intro=True,
            )

        # Damping for repeated intents
        confidence = base_confidence
        damping = 0.0
        for entry in state.recent_intents:
            if (
                entry.signature == intent_signature
                and entry.agent_id is target_agent
                and now - entry.timestamp < tm.damping_window
                and string_similarity(input_print, entry.input_fingerprint) > th.intent_similarity
            ):
                damping = th.damping
                confidence = max(th.damping_floor, base_confidence - damping)
                break

        # Repetition guard
        if (
            state.last_user_input
            and now - state.last_input_time < tm.repeat_window
            and string_similarity(input, state.last_user_input) > th.repeat_similarity
        ):
            return RoutingDecision(
                should_route=False,
                target_agent=state.current_thread,
                confidence=confidence,
                reason="Repetitive input detected",
                suppress_intro=True,
                damping_applied=damping,
            )

        suppress_intro = self._should_suppress_intro(state, target_agent, now)

        should_route = confidence >= th.route and (target_agent is not state.current_thread or reentry)
        if should_route:
            reason = f"Routing confidence: {confidence:.2f}" + (" (damped)" if damping else "")
        else:
            reason = "Confidence too low after evaluation"

        decision = RoutingDecision(
            should_route=should_route,
            target_agent=target_agent,
            confidence=confidence,
            reason=reason,
            suppress_intro=suppress_intro,
            damping_applied=damping,
        )
        logger.debug("Routing decision for session %s: %s", session_id, decision)
        return decision

    def _should_suppress_intro(self, state: RoutingState, target_agent: AgentId, now: float) -> bool:
        recently_visited = any(
            entry.agent_id is target_agent and now - entry.timestamp < self.timings.intro_window
            for entry in state.recent_intents
        )
        continuation = now - state.session_start_time > self.timings.continuation_after and state.routing_count > 0
        return recently_visited or continuation

    def claim_route(self, session_id: str, target_agent: AgentId) -> None:
        """Mark a handoff as in flight until ``release_route``.

        Requests evaluated meanwhile stay with ``target_agent`` instead of
        routing again.
        """
        self.get_state(session_id).pending_route = AgentId(target_agent)

    def release_route(self, session_id: str) -> None:
        state = self._sessions.get(session_id)
        if state is not None:
            state.pending_route = None

    def update_routing_state(
        self,
        session_id: str,
        target_agent: AgentId,
        input: str,
        intent_signature: str,
        confidence: float,
        was_routed: bool,
    ) -> None:
        target_agent = AgentId(target_agent)
        state = self.get_state(session_id)
        now = self._clock()

        if was_routed:
            state.last_routed_agent = target_agent
            state.last_routed_time = now
            state.routing_count += 1
            state.current_thread = target_agent

        state.last_user_input = input
        state.last_input_time = now
        state.last_activity = now

        state.recent_intents.append(
            IntentEntry(
                signature=intent_signature,
                agent_id=target_agent,
                confidence=confidence,
                timestamp=now,
                input_fingerprint=fingerprint(input),
            )
        )
        horizon = now - self.timings.intent_horizon
        state.recent_intents = [e for e in state.recent_intents if e.timestamp > horizon][
            -self.timings.max_recent_intents :
        ]

    def cleanup_expired_sessions(self) -> int:
        """Drop sessions idle longer than the session TTL.

        Returns:
            Number of sessions removed
        """
        cutoff = self._clock() - self.timings.session_ttl
        expired = [sid for sid, state in self._sessions.items() if state.last_activity < cutoff]
        for session_id in expired:
            del self._sessions[session_id]
            lock = self._locks.get(session_id)
            if lock is not None and not lock.locked():
                del self._locks[session_id]
        if expired:
            logger.info("Evicted %d expired routing session(s)", len(expired))
        return len(expired)

    def get_routing_analytics(self, session_id: str) -> Optional[Dict[str, Any]]:
        state = self._sessions.get(session_id)
        if state is None:
            return None
        now = self._clock()
        return {
            "current_thread": state.current_thread.value,
            "routing_count": state.routing_count,
            "session_duration": now - state.session_start_time,
            "recent_intents": len(state.recent_intents),
            "last_routed_agent": state.last_routed_agent.value,
            "time_since_last_route": now - state.last_routed_time if state.last_routed_time else None,
        }
