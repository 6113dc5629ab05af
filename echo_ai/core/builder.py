"""
Composition root.

build_orchestrator wires every component from Settings and compiles the
request graph. Collaborators that live outside this package (history,
knowledge and ticket stores, the chat gateway) default to the in-memory
implementations.
"""

from typing import Optional
import logging

from echo_ai.agents.analysis import CodeAnalysisAgent
from echo_ai.agents.conversation import ConversationAgent
from echo_ai.agents.knowledge import KnowledgeAgent
from echo_ai.agents.prompts import FileTemplateStore, PromptTemplateEngine
from echo_ai.agents.research import ResearchAgent
from echo_ai.agents.router import IntentClassifier
from echo_ai.agents.support import SupportAgent
from echo_ai.agents.ticket import TicketAgent
from echo_ai.core.cache_manager import CacheManager
from echo_ai.core.metrics import PerformanceMetrics
from echo_ai.core.orchestrator import Orchestrator
from echo_ai.core.rate_limiter import RateLimiter, default_limits
from echo_ai.core.state import Category
from echo_ai.settings import Settings, configure_logging, settings as default_settings
from echo_ai.tools.base import HistoryStore, KnowledgeStore, LanguageBackend, TicketGateway, TicketStore
from echo_ai.tools.knowledge_base import InMemoryKnowledgeStore
from echo_ai.tools.llm import OpenAIBackend
from echo_ai.tools.memory import InMemoryHistoryStore
from echo_ai.tools.ticketing import InMemoryTicketGateway, InMemoryTicketStore
from echo_ai.tools.web_search import TavilySearchClient

logger = logging.getLogger(__name__)


def build_orchestrator(
    config: Settings = default_settings,
    backend: Optional[LanguageBackend] = None,
    search_client: Optional[TavilySearchClient] = None,
    history: Optional[HistoryStore] = None,
    knowledge_store: Optional[KnowledgeStore] = None,
    ticket_store: Optional[TicketStore] = None,
    gateway: Optional[TicketGateway] = None,
    metrics: Optional[PerformanceMetrics] = None,
    limiter: Optional[RateLimiter] = None,
) -> Orchestrator:
    """Build a fully wired Orchestrator. Any collaborator can be injected."""
    configure_logging(config.log_level)
    bot_name = config.bot_name
    metrics = metrics if metrics is not None else PerformanceMetrics()
    backend = backend if backend is not None else OpenAIBackend(config)
    search_client = search_client if search_client is not None else TavilySearchClient(config=config)
    history = history if history is not None else InMemoryHistoryStore(config.history_max_per_user)
    knowledge_store = knowledge_store if knowledge_store is not None else InMemoryKnowledgeStore()
    ticket_store = ticket_store if ticket_store is not None else InMemoryTicketStore()
    gateway = gateway if gateway is not None else InMemoryTicketGateway()
    limiter = limiter if limiter is not None else RateLimiter(default_limits(config))

    prompts = PromptTemplateEngine(
        FileTemplateStore(config.prompt_path),
        CacheManager(config.prompt_cache_size, config.prompt_cache_ttl, name="prompt", metrics=metrics),
        bot_name=bot_name,
    )
    knowledge_cache = CacheManager(
        config.general_cache_size, config.knowledge_cache_ttl, name="knowledge", metrics=metrics
    )
    research_cache = CacheManager(
        config.research_cache_size, config.research_cache_ttl, name="research", metrics=metrics
    )

    ticket_agent = TicketAgent(
        backend,
        prompts,
        ticket_store,
        gateway,
        support_role_id=config.support_role_id,
        log_channel_id=config.ticket_log_channel_id,
        bot_name=bot_name,
    )
    agents = {
        Category.TICKET: ticket_agent,
        Category.SUPPORT: SupportAgent(
            backend, prompts, knowledge_store, ticket_store, ticket_agent, bot_name=bot_name
        ),
        Category.CODE: CodeAnalysisAgent(backend, prompts, bot_name=bot_name),
        Category.KNOWLEDGE: KnowledgeAgent(
            backend, prompts, knowledge_store, limiter, cache=knowledge_cache, bot_name=bot_name
        ),
        Category.RESEARCH: ResearchAgent(
            backend, prompts, search_client, history=history, cache=research_cache, bot_name=bot_name
        ),
        Category.CONVERSATION: ConversationAgent(
            backend, prompts, history, limiter, bot_name=bot_name, known_entities=config.known_entities
        ),
    }

    orchestrator = Orchestrator(
        IntentClassifier(backend, prompts),
        agents,
        metrics=metrics,
        request_timeout=config.request_timeout_seconds,
        bot_name=bot_name,
        background_research=config.background_research,
    )
    logger.info(f"Built orchestrator for {bot_name} with {len(agents)} agents")
    return orchestrator
