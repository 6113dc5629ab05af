"""
Knowledge Agent - Curated knowledge base Q&A and contribution

Answers from verified knowledge base entries, asks the orchestrator for
research when the knowledge base is thin, and lets members save, rate and
(with moderator rights) verify entries.
"""

import re
from typing import Any, Dict, List, Optional, Sequence
import logging

from langsmith import traceable
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.config import KNOWLEDGE_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.cache_manager import CacheManager
from echo_ai.core.errors import BackendError, RateLimitExceeded, ValidationError
from echo_ai.core.helpers import extract_keywords, spawn_background
from echo_ai.core.rate_limiter import RateLimiter
from echo_ai.core.state import AgentResponse, ErrorKind, PromptContext
from echo_ai.settings import settings
from echo_ai.tools.base import KnowledgeStore, LanguageBackend
from echo_ai.tools.knowledge_base import CATEGORIES, EntryNotFound, KnowledgeEntry

logger = logging.getLogger(__name__)

SAVE_PATTERN = re.compile(r"save this as:\s*(.+)", re.IGNORECASE)
SAVE_LINE = re.compile(r"save this as:.+", re.IGNORECASE)
TAG_PATTERN = re.compile(r"^[a-z0-9-]{2,30}$")

KNOWLEDGE_HINTS = (
    "how to",
    "how does",
    "what is",
    "what are",
    "explain",
    "guide",
    "tutorial",
    "documentation",
    "docs",
    "knowledge base",
    "save this as:",
)

# Minimum verified entries before an answer is synthesized without research
MIN_RESULTS = 2
SAVE_SUGGESTION_MIN_LENGTH = 200


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryTopics(_CamelModel):
    topic: str
    related_topics: List[str] = Field(default_factory=list)


class QualityCheck(_CamelModel):
    is_valid: bool = True
    issues: List[str] = Field(default_factory=list)


class SaveSuggestion(_CamelModel):
    worth_saving: bool = False
    title: str = ""


class EntryClassification(_CamelModel):
    category: str = "general"
    tags: List[str] = Field(default_factory=list)


def _normalize_tag(tag: str) -> str:
    return re.sub(r"[\s_]+", "-", str(tag).strip().lower())


class KnowledgeAgent(BaseAgent):
    def __init__(
        self,
        backend: LanguageBackend,
        prompts: PromptTemplateEngine,
        store: KnowledgeStore,
        limiter: RateLimiter,
        cache: Optional[CacheManager] = None,
        bot_name: Optional[str] = None,
    ):
        super().__init__(backend, prompts, KNOWLEDGE_AGENT, bot_name)
        self.store = store
        self.limiter = limiter
        self.cache = cache or CacheManager(default_ttl=settings.knowledge_cache_ttl, name="knowledge")
        self.cache_ttl = settings.knowledge_cache_ttl

    async def can_handle(self, message: str) -> bool:
        msg = (message or "").lower()
        return any(hint in msg for hint in KNOWLEDGE_HINTS)

    @traceable(name="KnowledgeAgent", metadata={"agent": "KnowledgeAgent", "tags": ["agent", "knowledge"]})
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        context = context or {}

        if "save this as:" in message.lower():
            return await self.handle_save_request(message, user_id, context)

        if context.get("research_results"):
            return await self._answer_from_research(message, context)

        cache_key = CacheManager.make_key("kb", message)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("KnowledgeAgent: using cached knowledge results")
            results, topics = cached["results"], cached["topics"]
            topic = cached["topic"]
        else:
            topic, topics = await self._analyze_query(message)
            results = await self.store.search(
                topic, tags=context.get("tags"), verified_only=True, limit=3
            )
            self.cache.set(cache_key, {"results": results, "topic": topic, "topics": topics}, ttl=self.cache_ttl)

        for entry in results:
            spawn_background(self.store.increment_use_count(entry.id), f"increment use count for {entry.id}")

        if len(results) < MIN_RESULTS:
            return AgentResponse(
                content=(
                    "I don't have enough information about that in my knowledge base yet. "
                    "Let me research it for you."
                ),
                needs_research=True,
                search_query=" ".join([topic, *topics]).strip() or message,
                suggested_topics=topics,
            )

        try:
            answer = await self._synthesize(message, results)
        except BackendError as e:
            logger.error(f"KnowledgeAgent synthesis failed: {e}")
            return AgentResponse.failure(
                "I encountered an error while processing your knowledge request. "
                "Please try again or rephrase your question.",
                ErrorKind.BACKEND,
            )

        if len(answer) > SAVE_SUGGESTION_MIN_LENGTH:
            answer = await self._add_save_suggestion(answer, message)

        return AgentResponse(
            content=answer,
            suggested_topics=topics,
            metadata={"entries": [e.id for e in results]},
        )

    async def _analyze_query(self, message: str) -> tuple[str, List[str]]:
        keywords = extract_keywords(message)
        if keywords:
            return keywords[0], keywords[1:4]

        fallback = QueryTopics(topic=" ".join(message.split()[:3]))
        topics = await self._complete_structured(
            f'Extract the main topic and related topics from this query: "{message}"\n'
            'Return JSON: {"topic": "main topic", "relatedTopics": ["topic1", "topic2"]}',
            QueryTopics,
            fallback,
        )
        return topics.topic.strip() or fallback.topic, topics.related_topics[:3]

    async def _synthesize(self, message: str, results: Sequence[KnowledgeEntry], research: str = "") -> str:
        prompt = self.prompts.render(
            "knowledge_synthesis",
            PromptContext(message=message, message_type="knowledge"),
            entries=[
                {"title": r.title, "content": r.content, "category": r.category, "rating": r.rating}
                for r in results
            ],
            research_summary=research,
        )
        return await self._complete(prompt)

    async def _answer_from_research(self, message: str, context: Dict[str, Any]) -> AgentResponse:
        sources = context.get("source_results") or []
        try:
            answer = await self._synthesize(message, [], research=str(context["research_results"]))
        except BackendError as e:
            logger.warning(f"KnowledgeAgent research synthesis failed, returning research as-is: {e}")
            answer = str(context["research_results"])
        return AgentResponse(content=answer, source_results=sources, metadata={"research_backed": True})

    async def _add_save_suggestion(self, answer: str, query: str) -> str:
        suggestion = await self._complete_structured(
            "Determine if this interaction contains valuable technical information worth saving to a "
            "knowledge base, and suggest a concise, descriptive title for it.\n"
            f'User Query: "{query}"\n'
            f'Response: "{answer}"\n\n'
            'Return JSON: {"worthSaving": true or false, "title": "suggested title"}',
            SaveSuggestion,
            SaveSuggestion(),
        )
        if not suggestion.worth_saving or not suggestion.title.strip():
            return answer
        return (
            f"{answer}\n\n---\n"
            "*This information looks useful! To save it to our knowledge base, just reply with:*\n"
            f'"Save this as: {suggestion.title.strip()}"'
        )

    async def search_entries(
        self,
        query: str,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        verified_only: bool = True,
        limit: int = 5,
    ) -> List[KnowledgeEntry]:
        return await self.store.search(
            query, category=category, tags=tags, verified_only=verified_only, limit=limit
        )

    async def validate_entry(self, title: str, content: str, category: str, tags: Sequence[str]) -> List[str]:
        errors: List[str] = []

        if not (title or "").strip():
            errors.append("Title is required")
        elif len(title) < 10:
            errors.append("Title must be at least 10 characters long")
        elif len(title) > 200:
            errors.append("Title must not exceed 200 characters")

        if not (content or "").strip():
            errors.append("Content is required")
        elif len(content) < 50:
            errors.append("Content must be at least 50 characters long")
        elif len(content) > 10000:
            errors.append("Content must not exceed 10000 characters")

        if not category or category.lower() not in CATEGORIES:
            errors.append(f"Category must be one of: {', '.join(CATEGORIES)}")

        if not tags:
            errors.append("At least one tag is required")
        elif len(tags) > 10:
            errors.append("Maximum 10 tags allowed")
        elif any(not isinstance(t, str) or not TAG_PATTERN.match(t.lower()) for t in tags):
            errors.append("Tags must be 2-30 characters long and contain only letters, numbers, and hyphens")

        if errors:
            return errors

        check = await self._complete_structured(
            "Analyze this knowledge base entry for quality and accuracy:\n"
            f'Title: "{title}"\n'
            f'Content: "{content}"\n'
            f"Category: {category}\n"
            f"Tags: {', '.join(tags)}\n\n"
            "Consider:\n"
            "1. Is the content accurate and factual?\n"
            "2. Is it well-structured and clear?\n"
            "3. Does it provide value to users?\n"
            "4. Is it appropriate for the category?\n"
            "5. Are there any potential issues or concerns?\n\n"
            'Return: JSON with isValid (boolean) and issues (array of strings)',
            QualityCheck,
            QualityCheck(),
        )
        if not check.is_valid:
            errors.extend(check.issues or ["Content did not pass the quality check"])
        return errors

    async def _find_similar(self, title: str, content: str) -> List[KnowledgeEntry]:
        queries = [title, content[:100], *extract_keywords(title, limit=2)]
        candidates: Dict[str, KnowledgeEntry] = {}
        for query in queries:
            for entry in await self.store.search(query, verified_only=False, limit=50):
                candidates[entry.id] = entry

        t = title.lower()
        head = content[:100].lower()
        similar = []
        for entry in candidates.values():
            other_title = entry.title.lower()
            other_content = entry.content.lower()
            if (
                t in other_title
                or other_title in t
                or head in other_content
                or other_content[:100] in content.lower()
            ):
                similar.append(entry)
        return similar

    async def save_entry(
        self, title: str, content: str, category: str, tags: Sequence[str], user_id: str
    ) -> KnowledgeEntry:
        """Validate and store a new, unverified entry. Raises ValidationError or RateLimitExceeded."""
        self.limiter.check(user_id, "knowledge_creation")

        errors = await self.validate_entry(title, content, category, tags)
        if errors:
            raise ValidationError(errors)

        similar = await self._find_similar(title, content)
        if similar:
            raise ValidationError(["Similar entries already exist:", *[f"- {e.title}" for e in similar]])

        entry = await self.store.create(
            KnowledgeEntry(
                title=title.strip(),
                content=content,
                category=category.lower(),
                tags=[t.lower() for t in tags],
                created_by=user_id,
                is_verified=False,
            )
        )
        logger.info(f"New knowledge entry created: {entry.id} '{entry.title}' ({entry.category}) by {user_id}")
        return entry

    async def rate_entry(self, entry_id: str, rating: int, user_id: str) -> KnowledgeEntry:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError(["Rating must be a whole number between 1 and 5"])
        self.limiter.check(user_id, "knowledge_rating")
        try:
            return await self.store.rate(entry_id, rating)
        except EntryNotFound as e:
            raise ValidationError(["Entry not found"]) from e

    async def verify_entry(self, entry_id: str, moderator_id: str, authorized: bool = False) -> KnowledgeEntry:
        if not authorized:
            logger.warning(f"Unauthorized verify attempt on {entry_id} by {moderator_id}")
            raise PermissionError("Only moderators can verify knowledge base entries")
        try:
            return await self.store.verify(entry_id, moderator_id)
        except EntryNotFound as e:
            raise ValidationError(["Entry not found"]) from e

    async def _classify_entry(self, content: str) -> EntryClassification:
        keyword_tags = [t for t in (_normalize_tag(k) for k in extract_keywords(content)) if TAG_PATTERN.match(t)]
        fallback = EntryClassification(category="general", tags=keyword_tags or ["general"])
        result = await self._complete_structured(
            "Analyze this content for a knowledge base entry:\n"
            f'Content: "{content}"\n\n'
            "Extract:\n"
            "1. Category: One of [general, technical, faq, tutorial, policy, guide]\n"
            "2. Tags: Up to 5 relevant tags (lowercase, hyphenated)\n\n"
            'Return as JSON:\n{\n  "category": "extracted category",\n  "tags": ["tag1", "tag2"]\n}',
            EntryClassification,
            fallback,
        )
        category = result.category.lower().strip()
        tags = [t for t in (_normalize_tag(t) for t in result.tags) if TAG_PATTERN.match(t)][:5]
        return EntryClassification(
            category=category if category in CATEGORIES else "general",
            tags=tags or fallback.tags,
        )

    async def handle_save_request(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        context = context or {}
        match = SAVE_PATTERN.search(message)
        if not match or not match.group(1).strip():
            return AgentResponse.failure(
                'I couldn\'t find a title in your save request. Please use the format: "Save this as: [Title]"',
                ErrorKind.VALIDATION,
            )

        title = match.group(1).strip()
        content = SAVE_LINE.sub("", message).strip() or str(context.get("save_content") or "").strip()
        if len(content) < 50:
            return AgentResponse.failure(
                "There isn't enough content to save. Please provide more information or context.",
                ErrorKind.VALIDATION,
            )

        classification = await self._classify_entry(content)
        try:
            entry = await self.save_entry(title, content, classification.category, classification.tags, user_id)
        except ValidationError as e:
            return AgentResponse.failure(f"I couldn't save that to the knowledge base: {e}", ErrorKind.VALIDATION)
        except RateLimitExceeded as e:
            return AgentResponse.failure(
                f"You're adding entries too quickly. Please try again in {e.wait_seconds_rounded} seconds.",
                ErrorKind.RATE_LIMIT,
                wait_seconds=e.wait_seconds_rounded,
            )

        return AgentResponse(
            content=f'✅ I\'ve saved that to the knowledge base as "{entry.title}" in the {entry.category} category.',
            metadata={"entry_id": entry.id, "verified": entry.is_verified},
        )
