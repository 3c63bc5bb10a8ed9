"""Tests for per-session routing state and the routing decision."""

import pytest

from kairo.config import RoutingTimings
from kairo.routing.agents import AgentId
from kairo.routing.state import RoutingStateManager, is_reset_request

RESEARCH = AgentId.RESEARCH
CREATIVE = AgentId.CREATIVE


class FakeClock:
    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(clock):
    return RoutingStateManager(clock=clock)


def route_to(manager, session_id, agent, text, signature="sig", confidence=0.8):
    manager.update_routing_state(session_id, agent, text, signature, confidence, was_routed=True)


class TestResetDetection:
    @pytest.mark.parametrize(
        "text",
        ["start over", "Reset please", "clear the board", "let's start from scratch", "new conversation"],
    )
    def test_reset_phrases(self, text):
        assert is_reset_request(text)

    @pytest.mark.parametrize("text", ["please reset", "tell me about restarts", "what is new"])
    def test_non_reset_phrases(self, text):
        assert not is_reset_request(text)


class TestSessionState:
    def test_new_session_starts_with_router(self, manager):
        state = manager.get_state("s1")
        assert state.current_thread is AgentId.ROUTER
        assert state.routing_count == 0
        assert len(manager) == 1

    def test_current_agent_overrides_thread(self, manager):
        manager.get_state("s1")
        state = manager.get_state("s1", AgentId.AUTOMATION)
        assert state.current_thread is AgentId.AUTOMATION

    def test_update_records_route(self, manager, clock):
        route_to(manager, "s1", RESEARCH, "find papers on climate")
        state = manager.get_state("s1")

        assert state.current_thread is RESEARCH
        assert state.last_routed_agent is RESEARCH
        assert state.last_routed_time == clock.now
        assert state.routing_count == 1
        assert len(state.recent_intents) == 1

    def test_update_without_route_keeps_thread(self, manager):
        manager.update_routing_state("s1", RESEARCH, "maybe research", "sig", 0.4, was_routed=False)
        state = manager.get_state("s1")

        assert state.current_thread is AgentId.ROUTER
        assert state.routing_count == 0
        assert state.last_user_input == "maybe research"

    def test_recent_intents_capped(self, manager, clock):
        for i in range(15):
            manager.update_routing_state("s1", RESEARCH, f"query number {i}", f"sig{i}", 0.5, was_routed=False)
            clock.advance(1)

        intents = manager.get_state("s1").recent_intents
        assert len(intents) == 10
        assert intents[-1].signature == "sig14"

    def test_recent_intents_expire_after_horizon(self, manager, clock):
        manager.update_routing_state("s1", RESEARCH, "old query", "old", 0.5, was_routed=False)
        clock.advance(301)
        manager.update_routing_state("s1", CREATIVE, "new query", "new", 0.5, was_routed=False)

        assert [e.signature for e in manager.get_state("s1").recent_intents] == ["new"]


class TestEvaluateRouting:
    def test_clear_intent_routes_from_router(self, manager):
        decision = manager.evaluate_routing("s1", RESEARCH, 0.85, "compare python frameworks", "research:x")

        assert decision.should_route
        assert decision.target_agent is RESEARCH
        assert decision.confidence == 0.85
        assert not decision.suppress_intro
        assert decision.damping_applied == 0.0

    def test_low_confidence_stays(self, manager):
        decision = manager.evaluate_routing("s1", RESEARCH, 0.5, "something vague", "research:x")

        assert not decision.should_route
        assert decision.reason == "Confidence too low after evaluation"

    def test_already_in_thread(self, manager):
        route_to(manager, "s1", RESEARCH, "find papers")
        decision = manager.evaluate_routing("s1", RESEARCH, 0.9, "more on that topic", "research:x")

        assert not decision.should_route
        assert decision.target_agent is RESEARCH
        assert decision.suppress_intro
        assert decision.reason == "Already in target agent thread"

    def test_reset_within_same_thread_reroutes_fresh(self, manager):
        route_to(manager, "s1", RESEARCH, "find papers")
        decision = manager.evaluate_routing("s1", RESEARCH, 0.2, "start over", "none")

        assert decision.should_route
        assert decision.target_agent is RESEARCH
        assert not decision.suppress_intro
        assert "Reset" in decision.reason

    def test_very_high_confidence_reenters_current_thread(self, manager, clock):
        route_to(manager, "s1", RESEARCH, "find papers")
        clock.advance(5)
        decision = manager.evaluate_routing("s1", RESEARCH, 0.97, "research quantum computing trends", "research:y")

        assert decision.should_route
        assert decision.suppress_intro

    def test_anti_flicker_blocks_quick_return(self, manager, clock):
        route_to(manager, "s1", RESEARCH, "find papers on climate")
        clock.advance(10)

        decision = manager.evaluate_routing(
            "s1", RESEARCH, 0.8, "analyze ocean temperature data", "research:z", current_agent=AgentId.ROUTER
        )

        assert not decision.should_route
        assert decision.target_agent is AgentId.ROUTER
        assert "Recent routing" in decision.reason

    def test_anti_flicker_overridden_by_high_confidence(self, manager, clock):
        route_to(manager, "s1", RESEARCH, "find papers on climate")
        clock.advance(10)

        decision = manager.evaluate_routing(
            "s1", RESEARCH, 0.92, "analyze ocean temperature data", "research:z", current_agent=AgentId.ROUTER
        )

        assert decision.should_route

    def test_anti_flicker_expires(self, manager, clock):
        route_to(manager, "s1", RESEARCH, "find papers on climate")
        clock.advance(31)

        decision = manager.evaluate_routing(
            "s1", RESEARCH, 0.8, "analyze ocean temperature data", "research:z", current_agent=AgentId.ROUTER
        )

        assert decision.should_route

    def test_repeated_intent_is_damped(self, manager, clock):
        manager.update_routing_state("s1", RESEARCH, "find papers on climate", "research:p", 0.85, was_routed=False)
        clock.advance(70)

        decision = manager.evaluate_routing("s1", RESEARCH, 0.85, "find papers on climate", "research:p")

        assert decision.damping_applied == pytest.approx(0.2)
        assert decision.confidence == pytest.approx(0.65)
        assert not decision.should_route

    def test_damping_respects_floor(self, manager, clock):
        manager.update_routing_state("s1", RESEARCH, "find papers on climate", "research:p", 0.25, was_routed=False)
        clock.advance(70)

        decision = manager.evaluate_routing("s1", RESEARCH, 0.25, "find papers on climate", "research:p")

        assert decision.confidence == pytest.approx(0.1)

    def test_damping_window_expires(self, manager, clock):
        manager.update_routing_state("s1", RESEARCH, "find papers on climate", "research:p", 0.85, was_routed=False)
        clock.advance(121)

        decision = manager.evaluate_routing("s1", RESEARCH, 0.85, "find papers on climate", "research:p")

        assert decision.damping_applied == 0.0
        assert decision.should_route

    def test_repetition_guard(self, manager, clock):
        manager.update_routing_state("s1", RESEARCH, "find papers on climate", "research:p", 0.85, was_routed=False)
        clock.advance(10)

        decision = manager.evaluate_routing("s1", RESEARCH, 0.85, "find papers on climate", "research:p")

        assert not decision.should_route
        assert decision.reason == "Repetitive input detected"
        assert decision.damping_applied == pytest.approx(0.2)
        assert decision.confidence == pytest.approx(0.65)

    def test_intro_suppressed_for_recent_visit(self, manager, clock):
        route_to(manager, "s1", RESEARCH, "find papers on climate")
        clock.advance(40)
        route_to(manager, "s1", CREATIVE, "brainstorm names")
        clock.advance(40)

        decision = manager.evaluate_routing("s1", RESEARCH, 0.85, "compare ocean datasets", "research:q")

        assert decision.should_route
        assert decision.suppress_intro

    def test_intro_suppressed_for_continuation(self, manager, clock):
        timings = RoutingTimings(intro_window=10)
        manager = RoutingStateManager(timings=timings, clock=clock)
        route_to(manager, "s1", CREATIVE, "brainstorm names")
        clock.advance(61)

        decision = manager.evaluate_routing("s1", RESEARCH, 0.85, "compare ocean datasets", "research:q")

        assert decision.suppress_intro

class TestHandoffClaims:
    def test_pending_handoff_blocks_second_route(self, manager):
        manager.claim_route("s1", CREATIVE)

        decision = manager.evaluate_routing("s1", CREATIVE, 0.9, "brainstorm names", "creative:pattern")

        assert not decision.should_route
        assert decision.target_agent is CREATIVE
        assert decision.suppress_intro
        assert "already in progress" in decision.reason

    def test_pending_handoff_wins_over_other_targets(self, manager):
        manager.claim_route("s1", CREATIVE)

        decision = manager.evaluate_routing("s1", RESEARCH, 1.0, "plan a trip", "research:pattern")

        assert not decision.should_route
        assert decision.target_agent is CREATIVE

    def test_active_thread_counts_pending_handoff(self, manager):
        state = manager.get_state("s1")
        manager.claim_route("s1", CREATIVE)

        assert state.active_thread is CREATIVE
        assert state.current_thread is AgentId.ROUTER

        manager.release_route("s1")
        assert state.active_thread is AgentId.ROUTER

    def test_release_restores_normal_evaluation(self, manager):
        manager.claim_route("s1", CREATIVE)
        manager.release_route("s1")

        decision = manager.evaluate_routing("s1", CREATIVE, 0.9, "brainstorm names", "creative:pattern")
        assert decision.should_route

    def test_release_unknown_session_is_noop(self, manager):
        manager.release_route("missing")
        assert len(manager) == 0


class TestSessionLifecycle:
    def test_cleanup_expired_sessions(self, manager, clock):
        manager.get_state("old")
        clock.advance(3000)
        manager.get_state("fresh")
        clock.advance(601)

        assert manager.cleanup_expired_sessions() == 1
        assert manager.get_routing_analytics("old") is None
        assert manager.get_routing_analytics("fresh") is not None

    def test_activity_keeps_session_alive(self, manager, clock):
        manager.get_state("s1")
        clock.advance(3000)
        manager.update_routing_state("s1", RESEARCH, "still here", "sig", 0.5, was_routed=False)
        clock.advance(3000)

        assert manager.cleanup_expired_sessions() == 0

    def test_session_lock_is_per_session(self, manager):
        assert manager.session_lock("a") is manager.session_lock("a")
        assert manager.session_lock("a") is not manager.session_lock("b")

    def test_analytics(self, manager, clock):
        manager.get_state("s1")
        clock.advance(20)
        route_to(manager, "s1", RESEARCH, "find papers")
        clock.advance(5)

        analytics = manager.get_routing_analytics("s1")

        assert analytics == {
            "current_thread": "research",
            "routing_count": 1,
            "session_duration": 25,
            "recent_intents": 1,
            "last_routed_agent": "research",
            "time_since_last_route": 5,
        }

    def test_analytics_before_any_route(self, manager):
        manager.get_state("s1")
        assert manager.get_routing_analytics("s1")["time_since_last_route"] is None

    def test_analytics_unknown_session(self, manager):
        assert manager.get_routing_analytics("missing") is None
