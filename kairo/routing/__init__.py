"""Routing decision engine."""

from kairo.routing.agents import Agent, AgentId, AgentProfile, AgentRegistry, AgentReply, TemplateAgent
from kairo.routing.intent import IntentAnalyzer, IntentResult, IntentRule
from kairo.routing.maintenance import Maintenance
from kairo.routing.router import Router, RouterResponse, RoutingInfo
from kairo.routing.state import RoutingDecision, RoutingState, RoutingStateManager

__all__ = [
    "Agent",
    "AgentId",
    "AgentProfile",
    "AgentRegistry",
    "AgentReply",
    "IntentAnalyzer",
    "IntentResult",
    "IntentRule",
    "Maintenance",
    "Router",
    "RouterResponse",
    "RoutingDecision",
    "RoutingInfo",
    "RoutingState",
    "RoutingStateManager",
    "TemplateAgent",
]
