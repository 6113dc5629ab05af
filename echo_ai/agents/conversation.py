"""
Conversation Agent - General chat with history and style adaptation

The catch-all agent. Applies burst and sustained rate limits, analyzes the
conversation style, answers with the conversation template and stores both
turns in the history store. Long replies are split into chat-sized chunks.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional
import logging

from langsmith import traceable
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.config import CONVERSATION_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.errors import BackendError, RateLimitExceeded
from echo_ai.core.rate_limiter import RateLimiter
from echo_ai.core.state import AgentResponse, ErrorKind, PromptContext
from echo_ai.settings import settings
from echo_ai.tools.base import HistoryStore, LanguageBackend
from echo_ai.tools.message_formatting import format_parts, smart_split

logger = logging.getLogger(__name__)

BURST_ACTION = "conversation_burst"
SUSTAINED_ACTION = "conversation_sustained"

RATE_LIMIT_MESSAGES = {
    BURST_ACTION: "You're sending messages too quickly. Please wait {wait} seconds.",
    SUSTAINED_ACTION: "Message rate limit exceeded. Please wait {wait} seconds.",
}

# Turns of history included in the prompt
PROMPT_HISTORY_TURNS = 3

TECHNICAL_HINTS = ("code", "error", "function", "api", "install", "config", "server", "bug", "python", "javascript")
FORMAL_HINTS = ("please", "could you", "would you", "kindly", "regards")

# Context keys that are plumbing rather than conversation context
_INTERNAL_CONTEXT_KEYS = {
    "previous_response",
    "source_results",
    "research_results",
    "is_direct_research",
    "is_refined_research",
    "needs_research",
    "original_intent",
    "is_dm",
    "entities",
}


class ConversationStyle(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    style: str = "casual"
    intent: str = "chat"
    format: str = "paragraph"
    use_context: bool = False


def heuristic_style(message: str, has_history: bool) -> ConversationStyle:
    msg = (message or "").lower()
    if "```" in msg or any(hint in msg for hint in TECHNICAL_HINTS):
        style = "technical"
    elif any(hint in msg for hint in FORMAL_HINTS):
        style = "formal"
    else:
        style = "casual"
    if "?" in msg:
        intent = "question"
    elif msg.startswith(("hi", "hello", "hey")):
        intent = "greeting"
    else:
        intent = "statement"
    fmt = "code" if "```" in msg else "paragraph"
    return ConversationStyle(style=style, intent=intent, format=fmt, use_context=has_history)


def detect_entities(message: str, known: Iterable[str]) -> List[str]:
    """Known names mentioned in ``message`` as whole words, in the order they are configured."""
    msg = (message or "").lower()
    return [
        name for name in known
        if name and re.search(rf"(?<!\w){re.escape(name.lower())}(?!\w)", msg)
    ]


def history_turns(history: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    return [
        {"role": "assistant" if entry.get("is_generated") else "user", "content": entry.get("content", "")}
        for entry in history
    ]


class ConversationAgent(BaseAgent):
    def __init__(
        self,
        backend: LanguageBackend,
        prompts: PromptTemplateEngine,
        history: HistoryStore,
        limiter: RateLimiter,
        bot_name: Optional[str] = None,
        known_entities: Optional[Iterable[str]] = None,
    ):
        super().__init__(backend, prompts, CONVERSATION_AGENT, bot_name)
        self.history = history
        self.limiter = limiter
        self.history_limit = settings.history_limit
        self.known_entities = list(known_entities if known_entities is not None else settings.known_entities)

    async def can_handle(self, message: str) -> bool:
        # Terminal agent of the fallback chain
        return True

    @traceable(name="ConversationAgent", metadata={"agent": "ConversationAgent", "tags": ["agent", "conversation"]})
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        context = context or {}
        limited = self._check_rate_limit(user_id)
        if limited is not None:
            return limited

        history = await self.history.get_history(user_id, self.history_limit)
        style = await self.analyze_style(message, history)
        entities = list(context.get("entities") or detect_entities(message, self.known_entities))
        prompt = self._build_prompt(message, history, style, context, entities)

        try:
            reply = await self._complete(prompt)
        except BackendError as e:
            logger.error(f"ConversationAgent backend failure for {user_id}: {e}")
            return AgentResponse.failure(
                "I'm having trouble responding right now. Please try again in a moment.", ErrorKind.BACKEND
            )

        await self._save_turns(user_id, message, reply)
        metadata: Dict[str, Any] = {"style": style.model_dump()}
        if entities:
            metadata["detected_entities"] = entities
        if context.get("is_refined_research"):
            metadata["is_refined_research"] = True
        return self._respond(reply, **metadata)

    @traceable(name="PersonaReply", metadata={"agent": "ConversationAgent", "tags": ["agent", "persona"]})
    async def persona_reply(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        """Answer identity questions ("who are you", "your name") in character."""
        limited = self._check_rate_limit(user_id)
        if limited is not None:
            return limited

        history = await self.history.get_history(user_id, PROMPT_HISTORY_TURNS)
        prompt = self.prompts.render(
            "persona",
            PromptContext(message=message, message_type="conversation"),
            history=history_turns(history),
        )
        try:
            reply = await self._complete(prompt)
        except BackendError as e:
            logger.error(f"ConversationAgent persona reply failed for {user_id}: {e}")
            return AgentResponse.failure(
                f"I'm {self.bot_name}, your community assistant. I'm having a little trouble talking "
                "about myself right now, so please ask me again in a moment.",
                ErrorKind.BACKEND,
            )

        await self._save_turns(user_id, message, reply)
        return self._respond(reply, persona=True)

    async def clear_history(self, user_id: str) -> None:
        if not user_id:
            return
        await self.history.clear_history(user_id)
        logger.info(f"Cleared conversation history for {user_id}")

    async def analyze_style(self, message: str, history: List[Dict[str, Any]]) -> ConversationStyle:
        recent = history_turns(history[-PROMPT_HISTORY_TURNS:])
        return await self._complete_structured(
            "Analyze this message in the context of the conversation:\n"
            f'Message: "{message}"\n'
            f"History: {json.dumps(recent)}\n\n"
            "Determine:\n"
            "1. Conversation style (formal, casual, technical)\n"
            "2. User's intent\n"
            "3. Required response format\n"
            "4. Whether previous context is relevant\n\n"
            'Return JSON: {"style": "...", "intent": "...", "format": "...", "useContext": true or false}',
            ConversationStyle,
            lambda: heuristic_style(message, bool(history)),
            temperature=0.0,
        )

    def _check_rate_limit(self, user_id: str) -> Optional[AgentResponse]:
        try:
            self.limiter.check(user_id, BURST_ACTION, SUSTAINED_ACTION)
        except RateLimitExceeded as e:
            wait = e.wait_seconds_rounded
            logger.info(f"ConversationAgent: {e.action} limit for {user_id}, wait {wait}s")
            template = RATE_LIMIT_MESSAGES.get(e.action, "Please wait {wait} seconds.")
            return AgentResponse.failure(template.format(wait=wait), ErrorKind.RATE_LIMIT, wait_seconds=wait)
        return None

    def _build_prompt(
        self,
        message: str,
        history: List[Dict[str, Any]],
        style: ConversationStyle,
        context: Dict[str, Any],
        entities: List[str],
    ) -> str:
        prompt_context = PromptContext(message=message, message_type="conversation")
        if context.get("is_dm"):
            return self.prompts.get_prompt_for_context(prompt_context, is_dm=True)
        if entities:
            return self.prompts.get_prompt_for_context(prompt_context, detected_entities=entities)

        extra = {k: v for k, v in context.items() if k not in _INTERNAL_CONTEXT_KEYS and v}
        return self.prompts.render(
            "conversation",
            prompt_context.extend(
                style=style.style,
                intent=style.intent,
                format=style.format,
                use_context=style.use_context,
                context_info=json.dumps(extra, default=str) if extra else "",
                research_results=str(context.get("research_results") or ""),
                history=history_turns(history[-PROMPT_HISTORY_TURNS:]),
            ),
        )

    async def _save_turns(self, user_id: str, message: str, reply: str) -> None:
        try:
            await self.history.add_entry(user_id, message, False)
            await self.history.add_entry(user_id, reply, True)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to save conversation history for {user_id}: {e}")

    @staticmethod
    def _respond(reply: str, **metadata: Any) -> AgentResponse:
        chunks = smart_split(reply)
        return AgentResponse(
            content=reply,
            metadata={"type": "conversation", "chunks": chunks, "parts": format_parts(chunks), **metadata},
        )
