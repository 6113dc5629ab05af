import asyncio

import pytest

from echo_ai.agents.research import research_cache_key
from echo_ai.core.builder import build_orchestrator
from echo_ai.core.errors import SearchError, SearchErrorKind
from echo_ai.core.helpers import drain_background_tasks
from echo_ai.core.metrics import PerformanceMetrics
from echo_ai.core.orchestrator import (
    INTERNAL_ERROR_MESSAGE,
    TIMEOUT_MESSAGE,
    Orchestrator,
    is_persona_query,
)
from echo_ai.core.state import AgentResponse, Category, ClassificationResult, ErrorKind, Message
from echo_ai.settings import Settings

LONG_AMBIGUOUS = "I have been thinking about the upcoming community event and wanted your take on it"
KNOWLEDGE_QUESTION = "what is a docker volume and how do named volumes differ"
SAVE_CONTENT = (
    "Named volumes are managed by Docker and survive container removal. Create one with "
    "docker volume create and mount it with -v name:/path."
)


def responder(prompt):
    if prompt.startswith("Optimize this search query"):
        return "docker named volumes guide"
    if "Research question:" in prompt:
        return "Volumes persist data [1]."
    if "answering from the community knowledge base" in prompt:
        return "Named volumes persist data across containers [1]."
    return "OK"


class FakeAgent:
    """Duck-typed agent used to drive orchestrator edge cases."""

    def __init__(self, name, reply=None, delay=0.0, error=None):
        self.name = name
        self.reply = reply
        self.delay = delay
        self.error = error
        self.messages = []
        self.contexts = []

    async def can_handle(self, message):
        return True

    async def process(self, message, user_id, context=None):
        self.messages.append(message)
        self.contexts.append(context or {})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply.model_copy(deep=True)


@pytest.fixture
def metrics():
    return PerformanceMetrics()


@pytest.fixture
def orchestrator(backend, search_client, history, knowledge_store, ticket_store, gateway, limiter, metrics):
    backend.default = responder
    return build_orchestrator(
        config=Settings(),
        backend=backend,
        search_client=search_client,
        history=history,
        knowledge_store=knowledge_store,
        ticket_store=ticket_store,
        gateway=gateway,
        metrics=metrics,
        limiter=limiter,
    )


def handle(orchestrator, text, **kwargs):
    return asyncio.run(orchestrator.handle(Message(text=text, sender_id="u1", **kwargs)))


def test_research_prefix_goes_straight_to_research(orchestrator, backend, search_client):
    response = handle(orchestrator, "Research: docker named volumes")
    assert response.content.startswith('## Research Results for: "docker named volumes"')
    assert response.metadata["agent"] == "ResearchAgent"
    assert response.metadata["is_direct_research"] is True
    assert search_client.queries == ["docker named volumes guide"]
    assert len(backend.calls) == 2
    assert response.metadata["request_id"]
    assert "duration_ms" in response.metadata


def test_thin_knowledge_is_augmented_with_research(orchestrator, search_client):
    response = handle(orchestrator, KNOWLEDGE_QUESTION)
    assert response.error is False
    assert response.content == "Named volumes persist data across containers [1]."
    assert response.metadata["agent"] == "KnowledgeAgent"
    assert response.metadata["research_augmented"] is True
    assert response.metadata["research_backed"] is True
    assert len(response.source_results) == 2
    assert search_client.queries == ["docker named volumes guide"]


def test_second_research_request_is_final(orchestrator, search_client):
    needy = FakeAgent(
        "KnowledgeAgent", AgentResponse(content="still unsure", needs_research=True, search_query="docker")
    )
    orchestrator.agents[Category.KNOWLEDGE] = needy

    response = handle(orchestrator, KNOWLEDGE_QUESTION)

    assert len(needy.contexts) == 2
    second = needy.contexts[1]
    assert second["research_results"] == "Volumes persist data [1]."
    assert second["previous_response"] == "still unsure"
    assert len(second["source_results"]) == 2
    assert search_client.queries == ["docker"]
    assert response.needs_research is True
    assert response.metadata["research_augmented"] is True


def test_failed_augmentation_returns_research_failure(orchestrator, search_client, metrics):
    search_client.error = SearchError(SearchErrorKind.RATE_LIMITED, "slow down", 429)
    response = handle(orchestrator, KNOWLEDGE_QUESTION)
    assert response.error is True
    assert response.error_kind == ErrorKind.SEARCH
    assert response.metadata["augmenting"] == "KnowledgeAgent"
    assert metrics.summary()["errors"] == {"search": 1}


def test_inconclusive_classification_walks_fallback_chain(orchestrator, backend):
    response = handle(orchestrator, LONG_AMBIGUOUS)
    assert response.error is False
    assert response.metadata["agent"] == "ConversationAgent"
    assert LONG_AMBIGUOUS in backend.calls[0]["prompt"]


def test_classifier_crash_uses_fallback_chain(orchestrator):
    async def broken(message):
        raise RuntimeError("classifier down")

    orchestrator.classifier.classify_detailed = broken
    response = handle(orchestrator, "my deploy keeps hitting an error on startup")
    assert response.metadata["agent"] == "SupportAgent"


def test_save_prefix_goes_to_knowledge(orchestrator, knowledge_store):
    response = handle(orchestrator, "Save this as: Docker named volume basics\n" + SAVE_CONTENT)
    assert response.error is False
    assert response.metadata["agent"] == "KnowledgeAgent"
    entry = asyncio.run(knowledge_store.get(response.metadata["entry_id"]))
    assert entry.title == "Docker named volume basics"


def test_persona_questions_bypass_classification(orchestrator, backend):
    response = handle(orchestrator, "Who are you, exactly?")
    assert response.metadata["agent"] == "ConversationAgent"
    assert response.metadata["persona"] is True
    assert len(backend.calls) == 1
    assert "Someone is asking about you" in backend.calls[0]["prompt"]


def test_guild_context_reaches_the_agent(orchestrator, backend):
    handle(orchestrator, "hey there friend", guild_context={"is_dm": True})
    assert "chatting privately" in backend.calls[-1]["prompt"]


def test_slow_agent_times_out(orchestrator, metrics):
    orchestrator.agents[Category.CODE] = FakeAgent("CodeAnalysisAgent", AgentResponse(content="late"), delay=1.0)
    orchestrator.request_timeout = 0.05

    response = handle(orchestrator, "const x = 5")

    assert response.error_kind == ErrorKind.TIMEOUT
    assert response.content == TIMEOUT_MESSAGE
    summary = metrics.summary()
    assert summary["errors"] == {"timeout": 1}
    assert summary["in_flight"] == 0
    assert summary["requests"] == 1


def test_agent_exception_becomes_internal_error(orchestrator, metrics):
    orchestrator.agents[Category.CODE] = FakeAgent("CodeAnalysisAgent", error=RuntimeError("boom"))
    response = handle(orchestrator, "const x = 5")
    assert response.error_kind == ErrorKind.INTERNAL
    assert response.content == INTERNAL_ERROR_MESSAGE
    assert metrics.summary()["errors"] == {"internal": 1}


def test_orchestrator_requires_every_category(orchestrator):
    agents = dict(orchestrator.agents)
    del agents[Category.TICKET]
    with pytest.raises(ValueError):
        Orchestrator(orchestrator.classifier, agents)


def test_persona_detection():
    assert is_persona_query("what is echo up to", "Echo")
    assert is_persona_query("Tell me about yourself")
    assert not is_persona_query("do you know python")
    assert not is_persona_query("are you able to fix this")


def test_graph_is_compiled_with_every_node(orchestrator):
    nodes = set(orchestrator.graph.get_graph().nodes)
    assert {"prefix_rules", "follow_up", "classify", "fallback_chain", "agent", "research_augment"} <= nodes


def test_message_text_reaches_the_agent_unchanged(orchestrator):
    code = FakeAgent("CodeAnalysisAgent", AgentResponse(content="looks fine"))
    orchestrator.agents[Category.CODE] = code
    text = "const total = calculate_monthly_subscription_revenue_total(x) // https://example.com/?utm_source=chat"

    response = handle(orchestrator, text)

    assert response.content == "looks fine"
    assert code.messages == [text]


def test_refined_follow_up_researches_for_the_original_agent(orchestrator, backend, search_client):
    backend.replies.append("refinement")
    context = {
        "needs_research": True,
        "previous_response": {"search_query": "docker volumes", "content": "Let me research it for you."},
        "original_intent": "knowledge",
    }

    response = asyncio.run(
        orchestrator.handle(Message(text="only the named ones please", sender_id="u1"), context)
    )

    assert 'Previous query: "docker volumes"' in backend.calls[0]["prompt"]
    assert 'docker volumes only the named ones please' in backend.calls[1]["prompt"]
    assert search_client.queries == ["docker named volumes guide"]
    assert response.content == "Named volumes persist data across containers [1]."
    assert response.metadata["agent"] == "KnowledgeAgent"
    assert response.metadata["research_augmented"] is True
    assert len(response.source_results) == 2


def test_refined_follow_up_defaults_to_conversation(orchestrator, backend):
    backend.replies.append("refinement")
    context = {"needs_research": True, "previous_response": AgentResponse(search_query="docker volume permissions")}

    response = asyncio.run(orchestrator.handle(Message(text="and for windows hosts?", sender_id="u1"), context))

    assert response.metadata["agent"] == "ConversationAgent"
    assert response.metadata["is_refined_research"] is True
    assert "Research findings" in backend.calls[-1]["prompt"]
    assert "Volumes persist data [1]." in backend.calls[-1]["prompt"]


def test_new_question_after_research_is_classified_normally(orchestrator, backend, search_client):
    backend.replies.append("new_question")
    context = {"needs_research": True, "previous_response": {"search_query": "docker volumes"}, "original_intent": "knowledge"}

    response = asyncio.run(orchestrator.handle(Message(text=LONG_AMBIGUOUS, sender_id="u1"), context))

    assert backend.calls[0]["prompt"].startswith("Determine if this is a refinement")
    assert response.metadata["agent"] == "ConversationAgent"
    assert search_client.queries == []


def test_failed_follow_up_research_is_returned(orchestrator, backend, search_client):
    backend.replies.append("refinement")
    search_client.error = SearchError(SearchErrorKind.TIMEOUT, "slow", None)
    context = {"needs_research": True, "previous_response": {"search_query": "docker"}, "original_intent": "support"}

    response = asyncio.run(orchestrator.handle(Message(text="with compose", sender_id="u1"), context))

    assert response.error_kind == ErrorKind.SEARCH
    assert response.metadata["augmenting"] == "SupportAgent"


def route_to_conversation(orchestrator):
    async def classify(message):
        return ClassificationResult(category=Category.CONVERSATION, source="backend")

    orchestrator.classifier.classify_detailed = classify


def test_conversation_question_warms_research_cache(orchestrator, search_client):
    route_to_conversation(orchestrator)
    question = "how to back up a docker volume"

    async def scenario():
        first = await orchestrator.handle(Message(text=question, sender_id="u1"))
        await drain_background_tasks()
        second = await orchestrator.handle(Message(text=f"research: {question}", sender_id="u1"))
        return first, second

    first, second = asyncio.run(scenario())

    assert first.metadata["agent"] == "ConversationAgent"
    assert orchestrator.research_agent.cache.get(research_cache_key(question)) is not None
    assert second.content.startswith(f'## Research Results for: "{question}"')
    assert search_client.queries == ["docker named volumes guide"]


def test_long_conversation_question_needs_backend_confirmation(orchestrator, backend, search_client):
    route_to_conversation(orchestrator)
    question = "can you explain why my team keeps arguing about tabs versus spaces every week"

    async def scenario():
        response = await orchestrator.handle(Message(text=question, sender_id="u1"))
        await drain_background_tasks()
        return response

    response = asyncio.run(scenario())

    assert response.metadata["agent"] == "ConversationAgent"
    assert backend.calls[0]["prompt"].startswith("Quick check: would this message benefit")
    assert search_client.queries == []
