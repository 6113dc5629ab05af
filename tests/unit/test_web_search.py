import asyncio

import pytest
import requests

from echo_ai.core.errors import SearchError, SearchErrorKind
from echo_ai.settings import Settings
from echo_ai.tools import web_search
from echo_ai.tools.web_search import TAVILY_SEARCH_URL, TavilySearchClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("not json")
        return self._payload


def make_client(sleeps, api_key="tvly-test"):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return TavilySearchClient(api_key=api_key, config=Settings(), sleep=fake_sleep)


def install_post(monkeypatch, outcomes, calls):
    def fake_post(url, json=None, timeout=None, headers=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(web_search.requests, "post", fake_post)


GOOD = FakeResponse(
    payload={
        "results": [
            {"title": "A", "url": "https://a.example", "content": "alpha", "score": 0.9},
            {"title": "B", "url": "https://b.example", "content": "beta"},
            {"title": "", "url": "https://c.example", "content": "missing title"},
        ]
    }
)


def test_search_parses_results_and_sends_payload(monkeypatch):
    calls, sleeps = [], []
    install_post(monkeypatch, [GOOD], calls)
    results = asyncio.run(make_client(sleeps).search("  python asyncio  ", 7))

    assert [r.title for r in results] == ["A", "B"]
    assert results[0].link == "https://a.example"
    assert results[0].snippet == "alpha"
    assert results[0].source == "Tavily Search"
    assert results[0].confidence == pytest.approx(0.9)
    assert results[1].confidence is None

    payload = calls[0]["json"]
    assert calls[0]["url"] == TAVILY_SEARCH_URL
    assert payload["query"] == "python asyncio"
    assert payload["max_results"] == 7
    assert payload["search_depth"] == "advanced"
    assert payload["include_answer"] is True
    assert payload["include_raw_content"] is False
    assert payload["include_images"] is False
    assert calls[0]["timeout"] == 10.0
    assert sleeps == []


def test_empty_query_is_invalid(monkeypatch):
    calls = []
    install_post(monkeypatch, [], calls)
    with pytest.raises(SearchError) as exc:
        asyncio.run(make_client([]).search("   ", 5))
    assert exc.value.kind == SearchErrorKind.INVALID_QUERY
    assert calls == []


def test_missing_key_fails_without_http(monkeypatch):
    calls = []
    install_post(monkeypatch, [], calls)
    client = make_client([], api_key="")
    with pytest.raises(SearchError) as exc:
        asyncio.run(client.search("python", 5))
    assert exc.value.kind == SearchErrorKind.INVALID_CREDENTIALS
    assert calls == []


def test_unauthorized_is_not_retried(monkeypatch):
    calls, sleeps = [], []
    install_post(monkeypatch, [FakeResponse(401)], calls)
    with pytest.raises(SearchError) as exc:
        asyncio.run(make_client(sleeps).search("python", 5))
    assert exc.value.kind == SearchErrorKind.INVALID_CREDENTIALS
    assert exc.value.retryable is False
    assert len(calls) == 1
    assert sleeps == []


def test_backoff_schedule_then_success(monkeypatch):
    calls, sleeps = [], []
    install_post(monkeypatch, [FakeResponse(500), requests.Timeout("slow"), GOOD], calls)
    results = asyncio.run(make_client(sleeps).search("python", 5))
    assert len(results) == 2
    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]


@pytest.mark.parametrize(
    "outcome, kind",
    [
        (FakeResponse(429), SearchErrorKind.RATE_LIMITED),
        (FakeResponse(503), SearchErrorKind.SERVICE_ERROR),
        (requests.Timeout("slow"), SearchErrorKind.TIMEOUT),
        (requests.ConnectionError("down"), SearchErrorKind.NETWORK_ERROR),
        (FakeResponse(200, bad_json=True), SearchErrorKind.SERVICE_ERROR),
        (FakeResponse(200, payload={"answer": "no results key"}), SearchErrorKind.SERVICE_ERROR),
    ],
)
def test_retryable_failures_exhaust_attempts(monkeypatch, outcome, kind):
    calls, sleeps = [], []
    install_post(monkeypatch, [outcome, outcome, outcome], calls)
    with pytest.raises(SearchError) as exc:
        asyncio.run(make_client(sleeps).search("python", 5))
    assert exc.value.kind == kind
    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]


def test_backoff_delay_values():
    client = TavilySearchClient(api_key="k", config=Settings())
    assert client.backoff_delay(1) == 0.0
    assert client.backoff_delay(2) == 2.0
    assert client.backoff_delay(3) == 4.0


def test_zero_attempts_still_tries_once(monkeypatch):
    calls, sleeps = [], []
    install_post(monkeypatch, [FakeResponse(503)], calls)
    client = TavilySearchClient(api_key="k", config=Settings(SEARCH_MAX_ATTEMPTS=0), sleep=lambda d: sleeps.append(d))
    with pytest.raises(SearchError) as exc:
        asyncio.run(client.search("python", 5))
    assert exc.value.kind == SearchErrorKind.SERVICE_ERROR
    assert exc.value.status_code == 503
    assert len(calls) == 1
    assert sleeps == []
