"""Request orchestration: intent, memory, routing decision, dispatch."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from kairo.config import RoutingThresholds, RoutingTimings
from kairo.error_log import ErrorCategory, ErrorSink
from kairo.exceptions import BackendUnavailable, DispatchFailure
from kairo.memory.context import build_memory_context
from kairo.memory.goals import detect_goal_progress, progress_record_fields
from kairo.memory.schema import MemoryKind, RecallOptions, RecallResult
from kairo.memory.store import MemoryStore
from kairo.routing.agents import AgentId, AgentRegistry
from kairo.routing.intent import IntentAnalyzer, IntentResult, is_onboarding_query
from kairo.routing.state import RoutingDecision, RoutingStateManager
from kairo.text import string_similarity

logger = logging.getLogger(__name__)

ROUTER_MEMORY_ID = AgentId.ROUTER.value
RECALL_LIMIT = 10
REPEATED_TOPIC_SIMILARITY = 0.7
MAX_CLARIFY_OPTIONS = 3
MIN_CLARIFY_OPTIONS = 2

APOLOGY = "I'm sorry, something went wrong while handling your request. Please try again in a moment."


@dataclass
class RoutingInfo:
    target_agent: AgentId
    confidence: float
    reasoning: str


@dataclass
class RouterResponse:
    """Outcome of one request.

    ``routing`` is set only when the request was handed off to a new
    agent. ``handled_by`` is the agent that produced the message.
    """

    success: bool
    message: str
    handled_by: AgentId
    routing: Optional[RoutingInfo] = None
    memory_updated: bool = False


class Router:
    """Handles one inbound message end to end.

    Flow: recall memory, analyze intent, evaluate routing under the
    session lock, then dispatch, clarify or answer directly. The exchange
    is stored as a ``log`` record and the session state updated afterwards;
    that final step is shielded so a cancelled caller doesn't leave it
    half done.
    """

    def __init__(
        self,
        memory: MemoryStore,
        registry: AgentRegistry,
        state: Optional[RoutingStateManager] = None,
        analyzer: Optional[IntentAnalyzer] = None,
        thresholds: Optional[RoutingThresholds] = None,
        timings: Optional[RoutingTimings] = None,
        error_sink: Optional[ErrorSink] = None,
        recall_options: Optional[RecallOptions] = None,
    ):
        self.memory = memory
        self.registry = registry
        self.thresholds = thresholds or RoutingThresholds()
        self.timings = timings or RoutingTimings()
        self.state = state or RoutingStateManager(self.thresholds, self.timings)
        self.analyzer = analyzer or IntentAnalyzer(registry)
        self.error_sink = error_sink or memory.error_sink
        self.recall_options = recall_options or RecallOptions(limit=RECALL_LIMIT)
        self._inflight: set[asyncio.Task] = set()

    async def process(
        self, input: str, session_id: str, current_agent: Optional[AgentId] = None
    ) -> RouterResponse:
        try:
            return await self._process(input, session_id, AgentId(current_agent) if current_agent else None)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unhandled error while routing session %s", session_id)
            await self.error_sink.report(
                ErrorCategory.SYSTEM,
                "Router failed",
                error=e,
                agent_id=ROUTER_MEMORY_ID,
                session_id=session_id,
                input=input,
            )
            return RouterResponse(success=False, message=APOLOGY, handled_by=AgentId.ROUTER)

    async def _process(self, input: str, session_id: str, current_agent: Optional[AgentId]) -> RouterResponse:
        memory_context = await self._recall(input, session_id)
        intent = self.analyzer.analyze(input)

        async with self.state.session_lock(session_id):
            state = self.state.get_state(session_id, current_agent)
            target = intent.agent or state.active_thread
            decision = self.state.evaluate_routing(
                session_id, target, intent.confidence, input, intent.signature, current_agent
            )
            current_thread = state.active_thread
            claimed = self._hands_off(decision)
            if claimed:
                self.state.claim_route(session_id, decision.target_agent)

        try:
            response = await self._respond(input, session_id, intent, decision, current_thread, memory_context)
        except BaseException:
            if claimed:
                self.state.release_route(session_id)
            raise

        task = asyncio.ensure_future(
            self._record_exchange(input, session_id, intent, decision, response, memory_context, claimed)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        response.memory_updated = await asyncio.shield(task)
        return response

    def _hands_off(self, decision: RoutingDecision) -> bool:
        return decision.should_route and decision.confidence >= self.thresholds.route

    async def _recall(self, input: str, session_id: str) -> RecallResult:
        try:
            return await self.memory.recall(ROUTER_MEMORY_ID, input, user_id=session_id, options=self.recall_options)
        except BackendUnavailable as e:
            await self.error_sink.report(
                ErrorCategory.MEMORY, "Memory recall failed", error=e, agent_id=ROUTER_MEMORY_ID, session_id=session_id
            )
            return RecallResult()

    async def _respond(
        self,
        input: str,
        session_id: str,
        intent: IntentResult,
        decision: RoutingDecision,
        current_thread: AgentId,
        memory_context: RecallResult,
    ) -> RouterResponse:
        th = self.thresholds

        if self._hands_off(decision):
            preamble = "" if decision.suppress_intro else self._handoff_preamble(input, decision, memory_context)
            response = await self._dispatch(decision.target_agent, input, session_id, preamble)
            if response.success:
                response.routing = RoutingInfo(decision.target_agent, decision.confidence, decision.reason)
            return response

        stays = not decision.should_route and decision.target_agent is current_thread
        if stays and current_thread is not AgentId.ROUTER:
            return await self._dispatch(current_thread, input, session_id)

        if th.clarify <= decision.confidence < th.route:
            return self._clarify(input, intent)

        if intent.agent is AgentId.WELCOME and (is_onboarding_query(input) or decision.confidence < th.clarify):
            if self.registry.has(AgentId.WELCOME):
                return await self._dispatch(AgentId.WELCOME, input, session_id)

        return self._direct_response(input, memory_context)

    async def _dispatch(self, agent_id: AgentId, input: str, session_id: str, preamble: str = "") -> RouterResponse:
        try:
            agent = self.registry.get(agent_id)
            try:
                reply = await asyncio.wait_for(
                    agent.process_input(input, session_id), timeout=self.timings.dispatch_timeout
                )
            except asyncio.TimeoutError as e:
                raise DispatchFailure(
                    f"Agent timed out after {self.timings.dispatch_timeout:g}s", agent_id=agent_id.value
                ) from e
            except DispatchFailure:
                raise
            except Exception as e:
                raise DispatchFailure(f"Agent raised {type(e).__name__}: {e}", agent_id=agent_id.value) from e
        except DispatchFailure as e:
            await self.error_sink.report(
                ErrorCategory.AGENT,
                "Agent dispatch failed",
                error=e,
                agent_id=e.agent_id,
                session_id=session_id,
                input=input,
            )
            return RouterResponse(success=False, message=APOLOGY, handled_by=agent_id)

        message = f"{preamble}{reply.message}" if preamble else reply.message
        return RouterResponse(success=reply.success, message=message, handled_by=agent_id)

    def _handoff_preamble(self, input: str, decision: RoutingDecision, memory_context: RecallResult) -> str:
        """Handoff line graded by confidence and prior discussion."""
        name = self.registry.profile(decision.target_agent).name
        has_memory = bool(memory_context.entries)
        repeated_topic = any(
            string_similarity(input, entry.input) > REPEATED_TOPIC_SIMILARITY for entry in memory_context.entries
        )

        if decision.confidence > self.thresholds.handoff_full:
            if has_memory and repeated_topic:
                return f"I see you're continuing our {name.lower()} discussion. Let me connect you back.\n\n"
            if has_memory:
                return (
                    f"Based on what we've discussed before, the {name} can help you best with this. "
                    "Connecting you now.\n\n"
                )
            return f"I can see you need {name.lower()} expertise. Connecting you right away.\n\n"
        if decision.confidence > self.thresholds.handoff_brief:
            return f"I'll hand you over to the {name} to help with that.\n\n"
        return ""

    def _clarify(self, input: str, intent: IntentResult) -> RouterResponse:
        ranked = self.registry.rank_for(input)
        if len(ranked) < MIN_CLARIFY_OPTIONS:
            ranked += [p for p in self.registry.specialists() if p not in ranked]
        options = ranked[:MAX_CLARIFY_OPTIONS]

        lines = [f'I can help with that! "{input}" could be handled in a few ways:', ""]
        for profile in options:
            suggestion = profile.suggestions[0] if profile.suggestions else profile.description
            lines.append(f"- {profile.name}: {suggestion}")
        lines.append("")
        if intent.agent is not None and intent.agent is not AgentId.ROUTER:
            lines.append(f"My recommendation: {self.registry.profile(intent.agent).name}.")
        lines.append("Let me know which direction sounds right, or rephrase with more detail.")
        return RouterResponse(success=True, message="\n".join(lines), handled_by=AgentId.ROUTER)

    def _direct_response(self, input: str, memory_context: RecallResult) -> RouterResponse:
        lines = ["I'm your routing assistant. I can connect you to specialized agents:", ""]
        for profile in self.registry.specialists():
            lines.append(f"- {profile.name}: {profile.description}")
        lines.append("")
        lines.append(
            f'Tell me what you need help with and I\'ll get you to the right specialist. Your request: "{input}"'
        )
        context = build_memory_context(memory_context)
        if context:
            lines.append(context)
        return RouterResponse(success=True, message="\n".join(lines), handled_by=AgentId.ROUTER)

    async def _record_exchange(
        self,
        input: str,
        session_id: str,
        intent: IntentResult,
        decision: RoutingDecision,
        response: RouterResponse,
        memory_context: RecallResult,
        claimed: bool = False,
    ) -> bool:
        """Store the exchange and commit the routing state update.

        A goal status update in the input is stored as a second,
        ``goal_progress`` record.

        Returns:
            True if every memory record was written
        """
        was_routed = claimed and response.success
        try:
            records = [
                self.memory.build_record(
                    ROUTER_MEMORY_ID,
                    input,
                    response.message,
                    user_id=session_id,
                    context=f"ROUTING_HANDOFF: {decision.target_agent.value} (confidence: {intent.confidence:.2f})",
                    kind=MemoryKind.LOG,
                    metadata={
                        "session_id": session_id,
                        "target_agent": decision.target_agent.value,
                        "handled_by": response.handled_by.value,
                        "confidence": round(decision.confidence, 4),
                        "routed": was_routed,
                        "intent_signature": intent.signature,
                    },
                )
            ]
            progress = detect_goal_progress(input, memory_context.entries)
            if progress is not None:
                fields = progress_record_fields(progress, ROUTER_MEMORY_ID)
                records.append(self.memory.build_record(ROUTER_MEMORY_ID, input, "", user_id=session_id, **fields))

            memory_updated = True
            for record in records:
                try:
                    memory_updated = await self.memory.save(record) and memory_updated
                except BackendUnavailable as e:
                    memory_updated = False
                    await self.error_sink.report(
                        ErrorCategory.MEMORY,
                        "Memory store failed",
                        error=e,
                        agent_id=ROUTER_MEMORY_ID,
                        session_id=session_id,
                        record_id=record.id,
                    )
        finally:
            async with self.state.session_lock(session_id):
                self.state.update_routing_state(
                    session_id, decision.target_agent, input, intent.signature, decision.confidence, was_routed
                )
                if claimed:
                    self.state.release_route(session_id)
        return memory_updated

    async def close(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
