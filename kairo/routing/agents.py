"""Agent identities, profiles and the dispatch registry."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, runtime_checkable

from kairo.exceptions import DispatchFailure


class AgentId(str, Enum):
    """The closed set of agents a request can be dispatched to."""

    ROUTER = "router"
    RESEARCH = "research"
    CREATIVE = "creative"
    AUTOMATION = "automation"
    WELCOME = "welcome"


@dataclass
class AgentReply:
    success: bool
    message: str


@runtime_checkable
class Agent(Protocol):
    """Anything that can answer a user message."""

    async def process_input(self, input: str, user_id: Optional[str] = None) -> AgentReply: ...


@dataclass
class AgentProfile:
    """Static description of an agent, used for clarification and handoffs."""

    id: AgentId
    name: str
    description: str
    keywords: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def relevance_to(self, text: str) -> float:
        """Keyword hits count 1, description words (longer than 3 chars) count 0.5."""
        lowered = text.lower()
        total = float(sum(1 for keyword in self.keywords if keyword in lowered))
        for word in set(re.findall(r"\w+", self.description.lower())):
            if len(word) > 3 and word in lowered:
                total += 0.5
        return total


DEFAULT_PROFILES: Dict[AgentId, AgentProfile] = {
    AgentId.ROUTER: AgentProfile(
        id=AgentId.ROUTER,
        name="General Chat",
        description="General conversation and task routing",
        keywords=["general", "chat", "help", "route", "connect"],
    ),
    AgentId.RESEARCH: AgentProfile(
        id=AgentId.RESEARCH,
        name="Research Agent",
        description="Deep research and analysis tasks",
        keywords=["research", "find", "search", "investigate", "analyze", "study", "explore", "examine", "data"],
        suggestions=[
            "Find detailed information and analysis",
            "Research and investigate the topic thoroughly",
            "Analyze data and provide comprehensive insights",
        ],
    ),
    AgentId.CREATIVE: AgentProfile(
        id=AgentId.CREATIVE,
        name="Creative Agent",
        description="Idea generation, naming, and writing prompts",
        keywords=["brainstorm", "ideas", "name", "creative", "story", "imagine", "design", "concept", "inspiration"],
        suggestions=[
            "Brainstorm innovative ideas and concepts",
            "Generate creative names or titles",
            "Develop story ideas and creative content",
        ],
    ),
    AgentId.AUTOMATION: AgentProfile(
        id=AgentId.AUTOMATION,
        name="Automation Agent",
        description="Prompt writing, scripting, and workflow automation",
        keywords=["automate", "script", "prompt", "template", "build", "optimize", "streamline", "workflow"],
        suggestions=[
            "Build workflows and automated processes",
            "Create tools and scripts to save time",
            "Optimize and streamline your tasks",
        ],
    ),
    AgentId.WELCOME: AgentProfile(
        id=AgentId.WELCOME,
        name="Welcome Agent",
        description="Guides new users and explains how to get started",
        keywords=["welcome", "onboarding", "getting started", "tutorial", "guide"],
        suggestions=["Get a quick tour of what each agent can do"],
    ),
}


class TemplateAgent:
    """Answers from a fixed template. Used when no real agent is registered."""

    def __init__(self, profile: AgentProfile, template: Optional[str] = None):
        self.profile = profile
        self.template = template or "{name} here. Working on: {input}"

    async def process_input(self, input: str, user_id: Optional[str] = None) -> AgentReply:
        return AgentReply(success=True, message=self.template.format(name=self.profile.name, input=input))


WELCOME_TEMPLATE = (
    "Welcome! I'm the {name}. I can introduce you to the research, creative and "
    "automation agents, or you can just tell me what you'd like to do."
)


class AgentRegistry:
    """Maps each AgentId to an implementation and a profile."""

    def __init__(self, profiles: Optional[Dict[AgentId, AgentProfile]] = None):
        self._profiles: Dict[AgentId, AgentProfile] = dict(profiles or DEFAULT_PROFILES)
        self._agents: Dict[AgentId, Agent] = {}

    @classmethod
    def with_templates(cls) -> "AgentRegistry":
        """Registry where every specialist is a TemplateAgent."""
        registry = cls()
        for agent_id, profile in registry._profiles.items():
            if agent_id is AgentId.ROUTER:
                continue
            template = WELCOME_TEMPLATE if agent_id is AgentId.WELCOME else None
            registry.register(agent_id, TemplateAgent(profile, template))
        return registry

    def register(self, agent_id: AgentId, agent: Agent, profile: Optional[AgentProfile] = None) -> None:
        agent_id = AgentId(agent_id)
        self._agents[agent_id] = agent
        if profile is not None:
            self._profiles[agent_id] = profile

    def has(self, agent_id: AgentId) -> bool:
        return AgentId(agent_id) in self._agents

    def get(self, agent_id: AgentId) -> Agent:
        """Look up a registered agent.

        Raises:
            DispatchFailure: If nothing is registered for the id
        """
        agent_id = AgentId(agent_id)
        try:
            return self._agents[agent_id]
        except KeyError:
            raise DispatchFailure(f"No agent registered for '{agent_id.value}'", agent_id=agent_id.value) from None

    def profile(self, agent_id: AgentId) -> AgentProfile:
        agent_id = AgentId(agent_id)
        return self._profiles.get(agent_id) or AgentProfile(id=agent_id, name="Specialist Agent", description="")

    def specialists(self) -> List[AgentProfile]:
        """Profiles of every registered agent except the router, in enum order."""
        return [self.profile(a) for a in AgentId if a is not AgentId.ROUTER and a in self._agents]

    def rank_for(self, text: str) -> List[AgentProfile]:
        """Specialists ordered by keyword/description overlap with ``text``.

        Agents with no overlap are dropped; if none overlap, every
        specialist is returned in registry order.
        """
        specialists = self.specialists()
        scored = [(profile.relevance_to(text), profile) for profile in specialists]
        ranked = [profile for value, profile in sorted(scored, key=lambda item: item[0], reverse=True) if value > 0]
        return ranked or specialists

    def best_keyword_match(self, text: str) -> Optional[AgentId]:
        """Agent whose profile keywords best match ``text``.

        Whole-word hits count 3, substring hits 1. The router is never
        returned; None means nothing matched.
        """
        lowered = text.lower()
        words = set(lowered.split())
        best: Optional[AgentId] = None
        best_score = 0
        for agent_id, profile in self._profiles.items():
            if agent_id is AgentId.ROUTER:
                continue
            total = 0
            for keyword in profile.keywords:
                if keyword in words:
                    total += 3
                elif keyword in lowered:
                    total += 1
            if total > best_score:
                best, best_score = agent_id, total
        return best
