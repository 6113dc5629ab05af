import asyncio

import pytest

from echo_ai.agents.knowledge import KnowledgeAgent
from echo_ai.core.errors import BackendError, RateLimitExceeded, ValidationError
from echo_ai.core.helpers import drain_background_tasks
from echo_ai.core.state import ErrorKind
from echo_ai.tools.knowledge_base import InMemoryKnowledgeStore, KnowledgeEntry

CONTENT = (
    "Named volumes are managed by Docker and survive container removal. Create one with "
    "docker volume create and mount it with -v name:/path."
)


def make_agent(backend, prompts, store, limiter):
    return KnowledgeAgent(backend, prompts, store, limiter, bot_name="Echo")


def verified_store():
    return InMemoryKnowledgeStore(
        [
            KnowledgeEntry(title="Configure Docker volumes", content=CONTENT, is_verified=True, use_count=3),
            KnowledgeEntry(
                title="Volume drivers",
                content="How to configure volume drivers for remote storage backends.",
                is_verified=True,
                tags=["docker"],
            ),
            KnowledgeEntry(title="Configure unverified thing", content="draft notes", is_verified=False),
        ]
    )


def test_knowledge_save_round_trip(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)

    async def run():
        entry = await agent.save_entry("Docker named volume basics", CONTENT, "technical", ["docker", "volumes"], "u1")
        assert entry.id.startswith("KB-")
        assert entry.is_verified is False
        assert await agent.search_entries("named volume") == []
        assert [e.id for e in await agent.search_entries("named volume", verified_only=False)] == [entry.id]

        await agent.verify_entry(entry.id, "mod1", authorized=True)
        found = await agent.search_entries("named volume")
        assert [e.id for e in found] == [entry.id]
        assert found[0].verified_by == "mod1"

        await agent.rate_entry(entry.id, 4, "u2")
        rated = await agent.rate_entry(entry.id, 2, "u3")
        assert rated.rating == pytest.approx(3.0)
        assert rated.rating_count == 2

    asyncio.run(run())


def test_save_entry_validation_errors(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    with pytest.raises(ValidationError) as exc:
        asyncio.run(agent.save_entry("short", "tiny", "recipes", ["Bad Tag!"], "u1"))
    errors = exc.value.errors
    assert "Title must be at least 10 characters long" in errors
    assert "Content must be at least 50 characters long" in errors
    assert any(e.startswith("Category must be one of") for e in errors)
    assert any(e.startswith("Tags must be") for e in errors)
    # Structural failures never reach the backend quality check
    assert backend.calls == []


def test_save_entry_rejected_by_quality_check(backend, prompts, knowledge_store, limiter):
    backend.replies.append('{"isValid": false, "issues": ["Content is inaccurate"]}')
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    with pytest.raises(ValidationError) as exc:
        asyncio.run(agent.save_entry("Docker named volume basics", CONTENT, "technical", ["docker"], "u1"))
    assert exc.value.errors == ["Content is inaccurate"]


def test_save_entry_detects_duplicates(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)

    async def run():
        await agent.save_entry("Docker named volume basics", CONTENT, "technical", ["docker"], "u1")
        with pytest.raises(ValidationError) as exc:
            await agent.save_entry("DOCKER NAMED VOLUME BASICS explained", CONTENT + " More.", "guide", ["docker"], "u2")
        assert "Similar entries already exist:" in exc.value.errors

    asyncio.run(run())


def test_save_entry_rate_limited(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    for _ in range(10):
        limiter.check("u1", "knowledge_creation")
    with pytest.raises(RateLimitExceeded):
        asyncio.run(agent.save_entry("Docker named volume basics", CONTENT, "technical", ["docker"], "u1"))


def test_rate_and_verify_guards(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    with pytest.raises(ValidationError):
        asyncio.run(agent.rate_entry("KB-00001", 6, "u1"))
    with pytest.raises(ValidationError):
        asyncio.run(agent.rate_entry("KB-99999", 3, "u1"))
    with pytest.raises(PermissionError):
        asyncio.run(agent.verify_entry("KB-00001", "u1"))


def test_insufficient_knowledge_triggers_research(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    response = asyncio.run(agent.process("How do I configure docker volumes?", "u1"))
    assert response.needs_research is True
    assert response.search_query == "configure docker volumes"
    assert "Let me research it for you" in response.content
    assert response.error is False


def test_answers_from_verified_entries_and_counts_use(backend, prompts, limiter):
    store = verified_store()
    backend.replies.append("Use a named volume.")
    agent = make_agent(backend, prompts, store, limiter)

    async def run():
        response = await agent.process("How do I configure docker volumes?", "u1")
        await drain_background_tasks()
        return response

    response = asyncio.run(run())
    assert response.content == "Use a named volume."
    assert response.metadata["entries"] == ["KB-00001", "KB-00002"]
    assert "Configure Docker volumes" in backend.calls[0]["prompt"]
    assert "Configure unverified thing" not in backend.calls[0]["prompt"]
    entry = asyncio.run(store.get("KB-00001"))
    assert entry.use_count == 4


def test_long_answer_gets_save_suggestion(backend, prompts, limiter):
    backend.replies.extend(["A" * 250, '{"worthSaving": true, "title": "Docker volume guide"}'])
    agent = make_agent(backend, prompts, verified_store(), limiter)
    response = asyncio.run(agent.process("How do I configure docker volumes?", "u1"))
    assert response.content.endswith('"Save this as: Docker volume guide"')


def test_synthesis_failure_is_backend_error(backend, prompts, limiter):
    backend.replies.append(BackendError("down"))
    agent = make_agent(backend, prompts, verified_store(), limiter)
    response = asyncio.run(agent.process("How do I configure docker volumes?", "u1"))
    assert response.error is True
    assert response.error_kind == ErrorKind.BACKEND


def test_research_backed_answer(backend, prompts, knowledge_store, limiter):
    backend.replies.append("Combined answer [1].")
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    context = {"research_results": "Volumes persist data [1].", "source_results": [{"title": "Docs", "link": "x"}]}
    response = asyncio.run(agent.process("How do I configure docker volumes?", "u1", context))
    assert response.content == "Combined answer [1]."
    assert response.metadata["research_backed"] is True
    assert response.source_results == [{"title": "Docs", "link": "x"}]
    assert "Volumes persist data [1]." in backend.calls[0]["prompt"]


def test_handle_save_request_success(backend, prompts, knowledge_store, limiter):
    backend.replies.append('{"category": "technical", "tags": ["docker", "volumes"]}')
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    message = "Save this as: Docker named volume basics\n" + CONTENT
    response = asyncio.run(agent.handle_save_request(message, "u1"))
    assert response.error is False
    assert "Docker named volume basics" in response.content
    assert "technical" in response.content
    assert response.metadata["verified"] is False
    entry = asyncio.run(knowledge_store.get(response.metadata["entry_id"]))
    assert entry.tags == ["docker", "volumes"]
    assert entry.content == CONTENT


def test_handle_save_request_uses_context_content(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    response = asyncio.run(
        agent.handle_save_request("save this as: Docker named volume basics", "u1", {"save_content": CONTENT})
    )
    assert response.error is False
    assert response.metadata["entry_id"] == "KB-00001"


def test_handle_save_request_validation_failures(backend, prompts, knowledge_store, limiter):
    agent = make_agent(backend, prompts, knowledge_store, limiter)
    no_content = asyncio.run(agent.handle_save_request("Save this as: Something useful here", "u1"))
    assert no_content.error_kind == ErrorKind.VALIDATION
    bad_title = asyncio.run(agent.handle_save_request("Save this as: tiny\n" + CONTENT, "u1"))
    assert bad_title.error_kind == ErrorKind.VALIDATION
    assert "Title must be at least 10 characters long" in bad_title.content
