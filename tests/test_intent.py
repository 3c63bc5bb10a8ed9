"""Tests for intent analysis and the agent registry."""

import pytest

from kairo.exceptions import DispatchFailure
from kairo.routing.agents import DEFAULT_PROFILES, AgentId, AgentProfile, AgentRegistry, TemplateAgent
from kairo.routing.intent import IntentAnalyzer, is_greeting, is_onboarding_query


@pytest.fixture
def registry():
    return AgentRegistry.with_templates()


@pytest.fixture
def analyzer(registry):
    return IntentAnalyzer(registry)


class TestIntentAnalyzer:
    def test_automation_request(self, analyzer):
        result = analyzer.analyze("automate my onboarding")

        assert result.agent is AgentId.AUTOMATION
        assert result.confidence == pytest.approx(0.86)
        assert "leading automation verb" in result.reason
        assert result.signature == "automation:pattern+leading automation verb"

    def test_signature_ignores_extra_keywords(self, analyzer):
        """One more keyword hit changes the reason but not the signature."""
        short = analyzer.analyze("automate my onboarding")
        longer = analyzer.analyze("automate my onboarding workflow")

        assert longer.confidence == 1.0
        assert longer.reason != short.reason
        assert longer.signature == short.signature

    def test_planning_request_goes_to_research(self, analyzer):
        result = analyzer.analyze("Help me plan a trip to Japan")

        assert result.agent is AgentId.RESEARCH
        assert result.confidence == 1.0

    def test_naming_request_goes_to_creative(self, analyzer):
        result = analyzer.analyze("brainstorm names for my bakery")

        assert result.agent is AgentId.CREATIVE
        assert result.confidence > 0.7

    def test_greeting_goes_to_welcome(self, analyzer):
        result = analyzer.analyze("hi")

        assert result.agent is AgentId.WELCOME
        assert result.confidence == 0.0
        assert result.signature == "welcome:greeting"

    def test_clear_intent_beats_greeting(self, analyzer):
        result = analyzer.analyze("hello there, can you analyze sales data")
        assert result.agent is AgentId.RESEARCH

    def test_keyword_fallback_keeps_low_confidence(self, analyzer):
        result = analyzer.analyze("write a script")

        assert result.agent is AgentId.AUTOMATION
        assert result.confidence == pytest.approx(0.4)
        assert result.signature == "automation:keywords"
        assert result.scores["creative"] == pytest.approx(0.4)

    def test_no_candidate(self, analyzer):
        result = analyzer.analyze("yes continue")

        assert result.agent is None
        assert result.signature == "none"
        assert result.reason == "no clear intent"

    def test_keywords_match_whole_words_only(self, analyzer):
        # "scripture" must not count as the "script" keyword
        _, confidence, _, _, scores = analyzer.score_rules("scripture")
        assert scores["automation"] == 0.0
        assert confidence == 0.0

    def test_scores_reported_for_every_rule(self, analyzer):
        result = analyzer.analyze("anything at all")
        assert set(result.scores) == {"research", "creative", "automation"}


class TestPhraseDetection:
    @pytest.mark.parametrize("text", ["hi", "Hello!", "hey there", "good morning"])
    def test_greetings(self, text):
        assert is_greeting(text)

    @pytest.mark.parametrize("text", ["history lesson", "they said hi", "high five"])
    def test_not_greetings(self, text):
        assert not is_greeting(text)

    def test_onboarding_queries(self):
        assert is_onboarding_query("What can you do?")
        assert is_onboarding_query("I'm new here")
        assert not is_onboarding_query("compare databases")


class TestAgentRegistry:
    def test_with_templates_registers_specialists(self, registry):
        assert not registry.has(AgentId.ROUTER)
        assert [p.id for p in registry.specialists()] == [
            AgentId.RESEARCH,
            AgentId.CREATIVE,
            AgentId.AUTOMATION,
            AgentId.WELCOME,
        ]

    def test_get_unregistered_raises(self, registry):
        with pytest.raises(DispatchFailure) as exc_info:
            registry.get(AgentId.ROUTER)
        assert exc_info.value.agent_id == "router"

    def test_best_keyword_match_prefers_whole_words(self, registry):
        assert registry.best_keyword_match("write a script") is AgentId.AUTOMATION
        assert registry.best_keyword_match("brainstorm story ideas") is AgentId.CREATIVE

    def test_best_keyword_match_never_returns_router(self, registry):
        assert registry.best_keyword_match("general chat help") is None

    def test_rank_for_orders_by_overlap(self, registry):
        ranked = registry.rank_for("brainstorm story ideas for a data project")
        assert ranked[0].id is AgentId.CREATIVE
        assert AgentId.RESEARCH in [p.id for p in ranked]

    def test_rank_for_without_overlap_returns_all(self, registry):
        assert len(registry.rank_for("zzz")) == 4

    def test_relevance_to(self):
        profile = DEFAULT_PROFILES[AgentId.CREATIVE]
        # three keywords plus "idea" from the description
        assert profile.relevance_to("brainstorm story ideas") == 3.5

    @pytest.mark.asyncio
    async def test_template_agent(self):
        agent = TemplateAgent(DEFAULT_PROFILES[AgentId.RESEARCH])
        reply = await agent.process_input("compare databases")

        assert reply.success
        assert reply.message == "Research Agent here. Working on: compare databases"

    def test_register_custom_profile(self, registry):
        custom = AgentProfile(
            id=AgentId.RESEARCH, name="Deep Diver", description="Long-form research"
        )
        registry.register(AgentId.RESEARCH, TemplateAgent(custom), profile=custom)
        assert registry.profile(AgentId.RESEARCH).name == "Deep Diver"
