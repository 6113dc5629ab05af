import os
from typing import Any, Callable, Dict, List, Union

import pytest
from dotenv import load_dotenv


def _strip_quotes(val: str | None) -> str | None:
    if not val:
        return val
    v = val.strip()
    if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
        return v[1:-1]
    return v


def pytest_configure(config):
    # Load .env so LangSmith sees API key/project even in test env
    load_dotenv(override=False)
    # Tracing stays off unless explicitly enabled
    os.environ.setdefault("LANGSMITH_TRACING", "false")
    if os.environ.get("LANGSMITH_PROJECT") is None:
        os.environ["LANGSMITH_PROJECT"] = "echo-agents-tests"
    for key in ["LANGSMITH_PROJECT", "LANGSMITH_ENDPOINT"]:
        sval = _strip_quotes(os.environ.get(key))
        if sval is not None:
            os.environ[key] = sval

    os.environ.setdefault("LOG_LEVEL", "WARNING")  # Reduce log noise in tests


Reply = Union[str, BaseException, Callable[[str], str]]


class ScriptedBackend:
    """LanguageBackend fake: pops scripted replies in order, then falls back to ``default``."""

    def __init__(self, replies: List[Reply] | None = None, default: Reply = "OK"):
        self.replies: List[Reply] = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, prompt, *, system_prompt=None, temperature=None, max_tokens=None):
        self.calls.append(
            {"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature, "max_tokens": max_tokens}
        )
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(prompt)
            if isinstance(reply, BaseException):
                raise reply
        return reply

    @property
    def prompts(self) -> List[str]:
        return [c["prompt"] for c in self.calls]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def prompts():
    from echo_ai.agents.prompts import FileTemplateStore, PromptTemplateEngine
    from echo_ai.core.cache_manager import CacheManager

    return PromptTemplateEngine(FileTemplateStore(), CacheManager(50, 600, name="prompt"), bot_name="Echo")


@pytest.fixture
def limiter(clock):
    from echo_ai.core.rate_limiter import RateLimiter

    return RateLimiter(
        {
            "knowledge_creation": (10, 3600),
            "knowledge_rating": (5, 300),
            "conversation_burst": (3, 5),
            "conversation_sustained": (10, 60),
        },
        clock=clock,
    )


@pytest.fixture
def history():
    from echo_ai.tools.memory import InMemoryHistoryStore

    return InMemoryHistoryStore(100)


@pytest.fixture
def knowledge_store():
    from echo_ai.tools.knowledge_base import InMemoryKnowledgeStore

    return InMemoryKnowledgeStore()


@pytest.fixture
def ticket_store():
    from echo_ai.tools.ticketing import InMemoryTicketStore, SupportStaff

    return InMemoryTicketStore(
        staff=[
            SupportStaff(user_id="s1", active=True, open_tickets=5),
            SupportStaff(user_id="s2", active=True, open_tickets=1),
            SupportStaff(user_id="s3", active=True, open_tickets=3),
            SupportStaff(user_id="s4", active=False, open_tickets=0),
        ]
    )


@pytest.fixture
def gateway():
    from echo_ai.tools.ticketing import InMemoryTicketGateway

    return InMemoryTicketGateway()


class FakeSearchClient:
    """Stands in for TavilySearchClient: returns ``results`` (or raises ``error``) and records queries."""

    def __init__(self, results=None, error: BaseException | None = None):
        self.results = list(results or [])
        self.error = error
        self.queries: List[str] = []

    async def search(self, query: str, limit: int = 5):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.results[:limit]


def _sample_results():
    from echo_ai.tools.web_search import SearchResult

    return [
        SearchResult(title="Docker docs", link="https://docs.docker.com/volumes", snippet="Volumes persist data.", confidence=0.8),
        SearchResult(title="Blog post", link="https://blog.example/volumes", snippet="Named volumes explained.", confidence=0.6),
    ]


@pytest.fixture
def search_client():
    return FakeSearchClient(_sample_results())
