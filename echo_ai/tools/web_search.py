import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel

from echo_ai.core.errors import SearchError, SearchErrorKind
from echo_ai.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
SOURCE_NAME = "Tavily Search"


class SearchResult(BaseModel):
    title: str
    link: str
    snippet: str
    source: str = SOURCE_NAME
    confidence: Optional[float] = None


def _status_error(status: int) -> SearchError:
    if status == 401:
        return SearchError(SearchErrorKind.INVALID_CREDENTIALS, "Invalid API key", status)
    if status == 429:
        return SearchError(SearchErrorKind.RATE_LIMITED, "Rate limit exceeded", status)
    return SearchError(SearchErrorKind.SERVICE_ERROR, f"Tavily API service error ({status})", status)


class TavilySearchClient:
    """Tavily search with validation, bounded retries and typed failures."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Settings = default_settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = api_key if api_key is not None else config.tavily_api_key
        self.timeout = config.search_timeout_seconds
        self.max_attempts = max(1, config.search_max_attempts)
        self.backoff_base = config.search_backoff_base
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay slept before ``attempt`` (1-based); the first attempt never waits."""
        if attempt < 2:
            return 0.0
        return self.backoff_base * 2 ** (attempt - 1)

    async def search(self, query: str, limit: int = 5) -> List[SearchResult]:
        if not (query or "").strip():
            raise SearchError(SearchErrorKind.INVALID_QUERY, "Search query cannot be empty")
        if not self.api_key:
            raise SearchError(SearchErrorKind.INVALID_CREDENTIALS, "TAVILY_API_KEY is not configured")

        last_error = SearchError(SearchErrorKind.SERVICE_ERROR, "Search failed")
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                await self._sleep(self.backoff_delay(attempt))
            try:
                data = await asyncio.to_thread(self._post, query.strip(), limit)
                return self._parse_results(data)
            except SearchError as e:
                if not e.retryable:
                    logger.error(f"Tavily search failed permanently: {e}")
                    raise
                last_error = e
                logger.warning(f"Tavily search attempt {attempt}/{self.max_attempts} failed: {e}")

        logger.error(f"Tavily search error for '{query}': {last_error}")
        raise last_error

    def _post(self, query: str, limit: int) -> Dict[str, Any]:
        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "advanced",
            "max_results": limit,
            "include_answer": True,
            "include_raw_content": False,
            "include_images": False,
        }
        try:
            resp = requests.post(
                TAVILY_SEARCH_URL,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json", "User-Agent": "Echo-Bot/1.0"},
            )
        except requests.Timeout as e:
            raise SearchError(SearchErrorKind.TIMEOUT, "Search request timed out") from e
        except requests.RequestException as e:
            raise SearchError(SearchErrorKind.NETWORK_ERROR, "Network connectivity issue") from e

        if resp.status_code != 200:
            raise _status_error(resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise SearchError(SearchErrorKind.SERVICE_ERROR, "Invalid response from Tavily API") from e
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise SearchError(SearchErrorKind.SERVICE_ERROR, "Invalid results format from Tavily API")
        return data

    def _parse_results(self, data: Dict[str, Any]) -> List[SearchResult]:
        results: List[SearchResult] = []
        for item in data["results"]:
            if not isinstance(item, dict) or not (item.get("title") and item.get("url") and item.get("content")):
                logger.warning(f"Incomplete result from Tavily API: {item}")
                continue
            score = item.get("score")
            results.append(
                SearchResult(
                    title=item["title"],
                    link=item["url"],
                    snippet=item["content"],
                    confidence=float(score) if isinstance(score, (int, float)) else None,
                )
            )
        return results
