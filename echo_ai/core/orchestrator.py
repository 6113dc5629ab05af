"""
Orchestrator - routes a message to one agent and owns research augmentation

Each request runs through the LangGraph request graph (see core/graph.py):
prefix rules -> follow-up research -> intent classification (or fallback
chain) -> agent -> at most one research pass that re-invokes the same agent
with the findings. Every request runs under a timeout and never raises to
the caller.
"""

import asyncio
import re
import uuid
from typing import Any, Dict, Mapping, Optional
import logging

from langgraph.graph import END
from langsmith import traceable

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.conversation import ConversationAgent
from echo_ai.agents.knowledge import KnowledgeAgent
from echo_ai.agents.research import ResearchAgent
from echo_ai.agents.router import IntentClassifier
from echo_ai.core.graph import build_graph
from echo_ai.core.guardrails import sanitize_user_message
from echo_ai.core.helpers import spawn_background
from echo_ai.core.metrics import PerformanceMetrics
from echo_ai.core.state import AgentResponse, Category, ErrorKind, Message, RequestState
from echo_ai.settings import settings
from echo_ai.tools.base import MetricsSink

logger = logging.getLogger(__name__)

# First agent whose can_handle() accepts the message wins; conversation always does
FALLBACK_CHAIN = (
    Category.TICKET,
    Category.SUPPORT,
    Category.CODE,
    Category.KNOWLEDGE,
    Category.RESEARCH,
    Category.CONVERSATION,
)

_RESEARCH_PREFIX = re.compile(r"^\s*research:\s*", re.IGNORECASE)
SAVE_PHRASE = "save this as:"

# Agent that receives refined research, keyed by the original intent of the conversation
FOLLOW_UP_AGENTS = {
    "knowledge": Category.KNOWLEDGE,
    "support": Category.SUPPORT,
}
_FOLLOW_UP_KEYS = {"needs_research", "previous_response", "original_intent"}

PERSONA_PATTERNS = (
    "who are you",
    "what are you",
    "tell me about yourself",
    "your name",
    "your personality",
    "your character",
    "mascot",
    "do you like",
    "what do you think of",
    "how do you feel about",
    "your favorite",
    "opinion on",
)

INTERNAL_ERROR_MESSAGE = "I'm sorry, something went wrong while handling your request. Please try again in a moment."
TIMEOUT_MESSAGE = "I'm sorry, that took longer than expected and I had to stop. Please try again, or ask a simpler question."


def is_persona_query(message: str, bot_name: Optional[str] = None) -> bool:
    msg = (message or "").lower()
    name = (bot_name or settings.bot_name).lower()
    patterns = PERSONA_PATTERNS + (f"who is {name}", f"what is {name}")
    return any(pattern in msg for pattern in patterns)


def _previous_search_query(previous: Any) -> Optional[str]:
    if isinstance(previous, AgentResponse):
        return previous.search_query
    if isinstance(previous, Mapping):
        return previous.get("search_query") or previous.get("searchQuery")
    return None


def _previous_content(previous: Any) -> str:
    if isinstance(previous, AgentResponse):
        return previous.content
    if isinstance(previous, Mapping):
        return str(previous.get("content") or "")
    return str(previous or "")


class Orchestrator:
    def __init__(
        self,
        classifier: IntentClassifier,
        agents: Mapping[Category, BaseAgent],
        metrics: Optional[MetricsSink] = None,
        request_timeout: Optional[float] = None,
        bot_name: Optional[str] = None,
        background_research: Optional[bool] = None,
    ):
        missing = [c.value for c in Category if c not in agents]
        if missing:
            raise ValueError(f"Orchestrator is missing agents for: {', '.join(missing)}")
        self.classifier = classifier
        self.agents: Dict[Category, BaseAgent] = dict(agents)
        self.metrics = metrics if metrics is not None else PerformanceMetrics()
        self.request_timeout = request_timeout if request_timeout is not None else settings.request_timeout_seconds
        self.bot_name = bot_name or settings.bot_name
        self.background_research = (
            background_research if background_research is not None else settings.background_research
        )
        self.graph = build_graph(self)

    @property
    def research_agent(self) -> ResearchAgent:
        return self.agents[Category.RESEARCH]

    @property
    def knowledge_agent(self) -> KnowledgeAgent:
        return self.agents[Category.KNOWLEDGE]

    @property
    def conversation_agent(self) -> ConversationAgent:
        return self.agents[Category.CONVERSATION]

    @traceable(name="Orchestrator", metadata={"agent": "Orchestrator", "tags": ["orchestrator", "routing"]})
    async def handle(self, message: Message, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        """Produce exactly one response for ``message``. Never raises."""
        request_id = uuid.uuid4().hex[:12]
        self.metrics.record_request()
        if isinstance(self.metrics, PerformanceMetrics):
            self.metrics.start_tracking(request_id, user_id=message.sender_id)
        logger.info(f"[{request_id}] Request from {message.sender_id}: {sanitize_user_message(message.text)[:100]}")

        initial = {
            "request_id": request_id,
            "user_id": message.sender_id,
            "text": message.text,
            "context": {**(message.guild_context or {}), **(context or {})},
        }
        try:
            final = await asyncio.wait_for(self.graph.ainvoke(initial), timeout=self.request_timeout)
            response = final["response"]
        except asyncio.TimeoutError:
            logger.error(f"[{request_id}] Request timed out after {self.request_timeout}s")
            response = AgentResponse.failure(TIMEOUT_MESSAGE, ErrorKind.TIMEOUT)
        except Exception as e:  # noqa: BLE001
            logger.exception(f"[{request_id}] Unhandled error while processing request: {e}")
            response = AgentResponse.failure(INTERNAL_ERROR_MESSAGE, ErrorKind.INTERNAL)

        duration_ms = None
        if isinstance(self.metrics, PerformanceMetrics):
            duration_ms = self.metrics.end_tracking(request_id)
        if response.error:
            kind = response.error_kind or ErrorKind.INTERNAL
            self.metrics.record_error(kind.value)

        response.metadata.setdefault("request_id", request_id)
        if duration_ms is not None:
            response.metadata.setdefault("duration_ms", round(duration_ms, 2))
            logger.info(f"[{request_id}] Response generated in {duration_ms:.2f}ms")
        return response

    # Graph nodes

    async def prefix_rules_node(self, state: RequestState) -> Dict[str, Any]:
        text, user_id, ctx = state.text, state.user_id, state.context

        match = _RESEARCH_PREFIX.match(text)
        if match:
            query = text[match.end():].strip()
            agent = self.research_agent
            response = await agent.process(query, user_id, {**ctx, "query": query, "is_direct_research": True})
            category = Category.RESEARCH
        elif SAVE_PHRASE in text.lower():
            agent = self.knowledge_agent
            response = await agent.handle_save_request(text, user_id, ctx)
            category = Category.KNOWLEDGE
        elif is_persona_query(text, self.bot_name):
            agent = self.conversation_agent
            response = await agent.persona_reply(text, user_id, ctx)
            category = Category.CONVERSATION
        else:
            return {}

        response.metadata.setdefault("agent", agent.name)
        return {"category": category, "route_source": "prefix", "response": response}

    async def follow_up_node(self, state: RequestState) -> Dict[str, Any]:
        """Continue a research conversation: refine the previous query or start over."""
        previous = state.context.get("previous_response")
        previous_query = _previous_search_query(previous)
        base_context = {k: v for k, v in state.context.items() if k not in _FOLLOW_UP_KEYS}

        if not await self.research_agent.is_refinement(previous_query, state.text):
            logger.info(f"[{state.request_id}] Follow-up is a new question")
            return {"context": base_context}

        category = FOLLOW_UP_AGENTS.get(state.context.get("original_intent"), Category.CONVERSATION)
        agent = self.agents[category]
        query = " ".join(part for part in (previous_query, state.text) if part)
        logger.info(f"[{state.request_id}] Refining research for {agent.name}: '{query}'")

        research = await self.research_agent.process(query, state.user_id, {"query": query})
        if research.error:
            research.metadata.setdefault("augmenting", agent.name)
            research.metadata.setdefault("agent", agent.name)
            return {"category": category, "route_source": "follow_up", "research": research, "response": research}

        return {
            "category": category,
            "route_source": "follow_up",
            "research": research,
            "research_augmented": True,
            "context": {
                **base_context,
                "research_results": research.content,
                "source_results": research.source_results,
                "previous_response": _previous_content(previous),
                "is_refined_research": True,
            },
        }

    async def classify_node(self, state: RequestState) -> Dict[str, Any]:
        try:
            result = await self.classifier.classify_detailed(state.text)
        except Exception as e:  # noqa: BLE001
            logger.error(f"[{state.request_id}] Classification failed, using fallback chain: {e}")
            return {"category": None, "route_source": "fallback"}

        if result.inconclusive:
            return {"category": None, "route_source": "fallback"}
        return {"category": result.category, "route_source": result.source}

    async def fallback_chain_node(self, state: RequestState) -> Dict[str, Any]:
        for category in FALLBACK_CHAIN:
            if await self.agents[category].can_handle(state.text):
                return {"category": category}
        return {"category": Category.CONVERSATION}

    async def agent_node(self, state: RequestState) -> Dict[str, Any]:
        agent = self.agents[state.category]
        if state.category == Category.CONVERSATION and not state.research_augmented:
            await self._research_in_background(state)

        logger.info(f"[{state.request_id}] Dispatching to {agent.name} ({state.route_source})")
        response = await agent.process(state.text, state.user_id, state.context)

        if state.research_augmented:
            response.metadata.setdefault("research_augmented", True)
            if not response.source_results and state.research is not None:
                response.source_results = list(state.research.source_results)
        response.metadata.setdefault("agent", agent.name)
        return {"response": response}

    async def research_augment_node(self, state: RequestState) -> Dict[str, Any]:
        agent = self.agents[state.category]
        first = state.response
        query = (first.search_query or "").strip() or state.text
        logger.info(f"[{state.request_id}] {agent.name} needs research: '{query}'")

        research = await self.research_agent.process(query, state.user_id, {"query": query})
        if research.error:
            logger.warning(f"[{state.request_id}] Research augmentation failed for {agent.name}")
            research.metadata.setdefault("augmenting", agent.name)
            research.metadata.setdefault("agent", agent.name)
            return {"research": research, "response": research}

        return {
            "research": research,
            "research_augmented": True,
            "context": {
                **state.context,
                "research_results": research.content,
                "source_results": research.source_results,
                "previous_response": first.content,
            },
        }

    # Routing decisions

    def after_prefix_rules(self, state: RequestState) -> str:
        if state.response is not None:
            return END
        if state.context.get("needs_research") is True and state.context.get("previous_response"):
            return "follow_up"
        return "classify"

    def after_follow_up(self, state: RequestState) -> str:
        if state.response is not None:
            return END
        if state.research_augmented:
            return "agent"
        return "classify"

    def after_classify(self, state: RequestState) -> str:
        return "agent" if state.category is not None else "fallback_chain"

    def after_agent(self, state: RequestState) -> str:
        # Research runs at most once per request
        if (
            state.response.needs_research
            and not state.research_augmented
            and state.category != Category.RESEARCH
        ):
            return "research_augment"
        return END

    def after_research(self, state: RequestState) -> str:
        return END if state.research.error else "agent"

    async def _research_in_background(self, state: RequestState) -> None:
        if not self.background_research:
            return
        if not await self.research_agent.should_research_in_background(state.text):
            return
        logger.info(f"[{state.request_id}] Starting background research for {state.user_id}")
        spawn_background(
            self.research_agent.process(state.text, state.user_id, {"query": state.text}),
            f"background research for {state.user_id}",
        )
