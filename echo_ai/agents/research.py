"""
Research Agent - Web research with cited synthesis

Optimizes the query, searches the web, synthesizes an answer with inline [n]
citations and caches the result. Used directly (``research:`` prefix) and by the
orchestrator to augment other agents.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from langsmith import traceable

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.config import RESEARCH_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.cache_manager import CacheManager
from echo_ai.core.errors import BackendError, SearchError, SearchErrorKind
from echo_ai.core.guardrails import system_prompt
from echo_ai.core.helpers import spawn_background
from echo_ai.core.state import AgentResponse, ErrorKind, PromptContext
from echo_ai.settings import settings
from echo_ai.tools.base import HistoryStore, LanguageBackend
from echo_ai.tools.web_search import SearchResult, TavilySearchClient

logger = logging.getLogger(__name__)

RESEARCH_HINTS = ("research", "look up", "search for", "find information", "latest", "news about")

# Conversation messages worth researching ahead of a follow-up question
BACKGROUND_HINTS = ("how to", "what is", "explain", "why does", "what are", "when was")
# Longer candidates are confirmed with the backend first
BACKGROUND_CONFIRM_LENGTH = 50

# Queries shorter than this are searched verbatim
MIN_OPTIMIZE_LENGTH = 15
# Rewrites this short are discarded in favour of the original query
MIN_REWRITE_LENGTH = 10

SEARCH_ERROR_MESSAGES = {
    SearchErrorKind.INVALID_QUERY: "Please tell me what you'd like me to research.",
    SearchErrorKind.INVALID_CREDENTIALS: (
        "There is a configuration issue with the research service. Please contact support."
    ),
    SearchErrorKind.RATE_LIMITED: "The research service is temporarily busy. Please try again in a few minutes.",
    SearchErrorKind.TIMEOUT: "The research request took too long to complete. Please try again.",
    SearchErrorKind.NETWORK_ERROR: "There are connection issues with the research service. Please try again later.",
    SearchErrorKind.SERVICE_ERROR: "The research service is experiencing difficulties. Please try again later.",
}

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def research_cache_key(query: str) -> str:
    normalized = _WHITESPACE.sub(" ", (query or "").lower().strip())
    normalized = _PUNCTUATION.sub("", normalized)
    return f"research:{normalized[:100]}"


def average_confidence(results: List[SearchResult]) -> Optional[float]:
    scores = [r.confidence for r in results if r.confidence is not None]
    if not scores:
        return None
    return sum(scores) / len(scores)


def fallback_summary(results: List[SearchResult]) -> str:
    summary = "Here are the key findings from the research:\n\n"
    for index, result in enumerate(results, start=1):
        summary += f"{index}. {result.title}\n"
        if result.snippet:
            summary += f"   {result.snippet[:200]}...\n"
        summary += f"   [Source]({result.link})\n\n"
    return summary


class ResearchAgent(BaseAgent):
    def __init__(
        self,
        backend: LanguageBackend,
        prompts: PromptTemplateEngine,
        search_client: TavilySearchClient,
        history: Optional[HistoryStore] = None,
        cache: Optional[CacheManager] = None,
        bot_name: Optional[str] = None,
    ):
        super().__init__(backend, prompts, RESEARCH_AGENT, bot_name)
        self.search_client = search_client
        self.history = history
        self.cache = cache or CacheManager(
            max_size=settings.research_cache_size, default_ttl=settings.research_cache_ttl, name="research"
        )
        self.result_limit = settings.research_result_limit

    async def can_handle(self, message: str) -> bool:
        msg = (message or "").lower()
        return any(hint in msg for hint in RESEARCH_HINTS)

    @traceable(name="ResearchAgent", metadata={"agent": "ResearchAgent", "tags": ["agent", "research", "tavily"]})
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        context = context or {}
        query = (context.get("query") or message or "").strip()
        direct = bool(context.get("is_direct_research"))

        cache_key = research_cache_key(query)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"Using cached research results for: {query}")
            response = AgentResponse.model_validate(cached)
            return self._format_direct(query, response) if direct else response

        logger.info(f'Performing research for: "{query}"')
        try:
            search_query = await self._optimize_query(query)
            results = await self.search_client.search(search_query, self.result_limit)
        except SearchError as e:
            logger.error(f"Research failed for '{query}': {e.kind.value} {e}")
            kind = ErrorKind.VALIDATION if e.kind == SearchErrorKind.INVALID_QUERY else ErrorKind.SEARCH
            return AgentResponse.failure(SEARCH_ERROR_MESSAGES[e.kind], kind, search_error=e.kind.value)

        if not results:
            return AgentResponse(
                content=(
                    f'I couldn\'t find any relevant information for: "{query}"\n\n'
                    "Please try a different search query or rephrase your question."
                ),
                error=False,
                source_results=[],
            )

        metadata: Dict[str, Any] = {
            "search": {
                "total_results": len(results),
                "confidence": average_confidence(results),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }
        try:
            content = await self._synthesize(query, results)
        except BackendError as e:
            logger.warning(f"AI synthesis error, using fallback summary: {e}")
            content = fallback_summary(results)
            metadata["fallback"] = True

        response = AgentResponse(
            content=content,
            source_results=[r.model_dump() for r in results],
            metadata=metadata,
        )
        self.cache.set(cache_key, response.model_dump())

        if self.history is not None and user_id:
            spawn_background(
                self.history.add_entry(user_id, f"[Research] Query: {query} ({len(results)} results)", False),
                f"log research for {user_id}",
            )

        return self._format_direct(query, response) if direct else response

    async def should_research_in_background(self, message: str) -> bool:
        msg = (message or "").lower()
        if not any(hint in msg for hint in BACKGROUND_HINTS):
            return False
        if len(msg) <= BACKGROUND_CONFIRM_LENGTH:
            return True
        try:
            answer = await self._complete(
                "Quick check: would this message benefit from background web research?\n"
                f'Message: "{message}"\n\n'
                'Return ONLY: "yes" or "no"',
                temperature=0.0,
                max_tokens=5,
            )
        except BackendError as e:
            logger.warning(f"Background research check failed, skipping: {e}")
            return False
        return "yes" in answer.lower()

    async def is_refinement(self, previous_query: Optional[str], message: str) -> bool:
        """True when ``message`` narrows the previous research request rather than asking something new."""
        try:
            answer = await self._complete(
                "Determine if this is a refinement/clarification of the previous research request:\n"
                f'Previous query: "{previous_query or "Unknown"}"\n'
                f'Current message: "{message}"\n\n'
                'Return ONLY: "refinement" or "new_question"',
                temperature=0.0,
                max_tokens=5,
            )
        except BackendError as e:
            logger.warning(f"Refinement check failed, treating as a new question: {e}")
            return False
        return "refinement" in answer.lower()

    async def _optimize_query(self, query: str) -> str:
        if len(query) < MIN_OPTIMIZE_LENGTH:
            return query
        try:
            optimized = await self._complete(
                f'Optimize this search query for external research: "{query}"\n\n'
                "Create a concise, focused search query that will yield the most relevant results.\n"
                "Return ONLY the optimized query with no explanation.",
                temperature=0.0,
                max_tokens=60,
            )
        except BackendError as e:
            logger.warning(f"Query optimization failed, using original: {e}")
            return query
        optimized = optimized.strip().strip('"').strip()
        return optimized if len(optimized) > MIN_REWRITE_LENGTH else query

    async def _synthesize(self, query: str, results: List[SearchResult]) -> str:
        prompt = self.prompts.render(
            "research_synthesis",
            PromptContext(message=query, message_type="research"),
            query=query,
            results=[
                {"number": i, "title": r.title, "snippet": r.snippet, "link": r.link}
                for i, r in enumerate(results, start=1)
            ],
        )
        return await self._complete(prompt, system_prompt=system_prompt("research", self.bot_name))

    def _format_direct(self, query: str, response: AgentResponse) -> AgentResponse:
        content = f'## Research Results for: "{query}"\n\n{response.content}'
        if response.source_results:
            content += "\n\n## Sources\n\n"
            for index, source in enumerate(response.source_results, start=1):
                content += f"{index}. [{source['title']}]({source['link']}) \n"
        search = response.metadata.get("search")
        if search:
            content += (
                f"\n\n> *Research conducted at {search['timestamp']} "
                f"with {search['total_results']} sources.*"
            )
        return response.model_copy(
            update={"content": content, "metadata": {**response.metadata, "is_direct_research": True}}
        )
