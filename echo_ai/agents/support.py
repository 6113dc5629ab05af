from typing import Any, Dict, List, Optional
import logging
import re

from langsmith import traceable
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.config import SUPPORT_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.agents.ticket import TicketAgent
from echo_ai.core.errors import BackendError
from echo_ai.core.guardrails import system_prompt
from echo_ai.core.helpers import extract_keywords, spawn_background
from echo_ai.core.state import AgentResponse, ErrorKind, PromptContext
from echo_ai.tools.base import KnowledgeStore, LanguageBackend, TicketStore

logger = logging.getLogger(__name__)

SUPPORT_HINTS = ("how to", "error", "problem", "issue", "not working", "help", "fix", "debug")

CRITICAL_TERMS = (
    "crash", "outage", "down", "data loss", "security", "breach",
    "urgent", "critical", "production", "emergency",
)
ERROR_TERMS = ("error", "exception", "fail", "broken", "not working", "bug", "timeout")
KNOWLEDGE_TERMS = ("how to", "how do", "what is", "explain", "guide", "tutorial")

OS_CONTEXT_TERMS = ("install", "setup", "environment", "path", "command", "terminal")
OS_QUESTION = (
    "To help you better, I need to know what operating system you're using. "
    "Could you please specify if you're on Windows, macOS, or Linux?"
)

TROUBLESHOOTING_TIPS = (
    "\n\n> Quick Troubleshooting Tips:\n"
    "> • Check logs for detailed error messages\n"
    "> • Verify permissions and configurations\n"
    "> • Try restarting the service"
)

ESCALATE_SCORE = 4
CONFIRM_SCORE = 2
MAX_SCORE = 5


class TicketConfirmation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    create_ticket: bool = False
    reason: str = ""


class ResearchCheck(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    needs_research: bool = False
    search_query: Optional[str] = None


def _term_pattern(term: str) -> re.Pattern:
    # Whole words only; inflections ("crashed", "failing", "errors") count once
    return re.compile(rf"\b{re.escape(term)}(?:s|es|ed|ing|ure)?\b")


_CRITICAL_PATTERNS = tuple(_term_pattern(t) for t in CRITICAL_TERMS)
_ERROR_PATTERNS = tuple(_term_pattern(t) for t in ERROR_TERMS)
_KNOWLEDGE_PATTERNS = tuple(_term_pattern(t) for t in KNOWLEDGE_TERMS)


def _count(patterns, msg: str) -> int:
    return sum(1 for pattern in patterns if pattern.search(msg))


def severity_score(message: str) -> int:
    """+2 per critical term, +1 per error term, -1 per knowledge-seeking term, clamped to [0, 5]."""
    msg = (message or "").lower()
    score = 2 * _count(_CRITICAL_PATTERNS, msg)
    score += _count(_ERROR_PATTERNS, msg)
    score -= _count(_KNOWLEDGE_PATTERNS, msg)
    return max(0, min(MAX_SCORE, score))


def needs_os_context(message: str, context: Dict[str, Any]) -> bool:
    if context.get("os"):
        return False
    msg = (message or "").lower()
    return any(term in msg for term in OS_CONTEXT_TERMS)


class SupportAgent(BaseAgent):
    def __init__(
        self,
        backend: LanguageBackend,
        prompts: PromptTemplateEngine,
        knowledge_store: KnowledgeStore,
        ticket_store: Optional[TicketStore] = None,
        ticket_agent: Optional[TicketAgent] = None,
        bot_name: Optional[str] = None,
    ):
        super().__init__(backend, prompts, SUPPORT_AGENT, bot_name)
        self.knowledge_store = knowledge_store
        self.ticket_store = ticket_store
        self.ticket_agent = ticket_agent

    async def can_handle(self, message: str) -> bool:
        msg = (message or "").lower()
        return any(hint in msg for hint in SUPPORT_HINTS)

    @traceable(name="SupportAgent", metadata={"agent": "SupportAgent", "tags": ["agent", "support"]})
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        context = context or {}

        if needs_os_context(message, context):
            return AgentResponse(content=OS_QUESTION, needs_more_context=True)

        severity = severity_score(message)
        augmented = bool(context.get("research_results"))
        if not augmented and await self._should_escalate(message, severity):
            logger.info(f"SupportAgent: escalating to ticket (severity {severity}) for {user_id}")
            response = await self.ticket_agent.process(message, user_id, context)
            response.metadata.setdefault("escalated_from", self.name)
            response.metadata.setdefault("severity", severity)
            return response

        ticket = None
        if self.ticket_store is not None:
            ticket = await self.ticket_store.find_open_by_user(user_id)
            if ticket is not None and not augmented:
                await self.ticket_store.add_message(ticket.id, user_id, message, False)

        if augmented:
            answer = await self._answer_from_research(message, context)
        else:
            answer = await self._search_knowledge_base(message)
            if answer is None:
                check = await self._research_check(message)
                if check.needs_research:
                    return AgentResponse(
                        content="Let me look into that for you.",
                        needs_research=True,
                        search_query=(check.search_query or "").strip() or message,
                        metadata={"severity": severity},
                    )
                try:
                    answer = await self._generic_answer(message, context)
                except BackendError as e:
                    logger.error(f"SupportAgent generic answer failed: {e}")
                    return AgentResponse.failure(
                        "I'm having trouble working through that problem right now. "
                        "Please try again in a moment, or ask me to open a ticket for staff help.",
                        ErrorKind.BACKEND,
                    )

        if ticket is not None:
            await self.ticket_store.add_message(ticket.id, self.bot_name, answer, False)

        return AgentResponse(
            content=self._format(message, answer, ticket),
            source_results=context.get("source_results") or [],
            metadata={
                "type": "technical_support",
                "severity": severity,
                "ticket_id": ticket.id if ticket is not None else None,
            },
        )

    async def _should_escalate(self, message: str, severity: int) -> bool:
        if self.ticket_agent is None:
            return False
        if severity >= ESCALATE_SCORE or "ticket" in message.lower():
            return True
        if severity < CONFIRM_SCORE:
            return False
        confirmation = await self._complete_structured(
            "Decide whether this support request should be escalated to a staff ticket.\n"
            f'Message: "{message}"\n\n'
            "Consider:\n"
            "1. Does it describe a problem users cannot fix themselves?\n"
            "2. Is something broken for more than one person?\n"
            "3. Does it need access only staff have?\n\n"
            'Return JSON: {"createTicket": true or false, "reason": "one sentence"}',
            TicketConfirmation,
            TicketConfirmation(),
        )
        return confirmation.create_ticket

    async def _search_knowledge_base(self, message: str) -> Optional[str]:
        entries: Dict[str, Any] = {}
        for keyword in extract_keywords(message, limit=3):
            for entry in await self.knowledge_store.search(keyword, verified_only=True, limit=3):
                entries.setdefault(entry.id, entry)
        if not entries:
            return None

        found: List[Any] = sorted(entries.values(), key=lambda e: (e.use_count, e.rating), reverse=True)[:3]
        for entry in found:
            spawn_background(self.knowledge_store.increment_use_count(entry.id), f"increment use count for {entry.id}")

        lines = ["I found some relevant information in our knowledge base:", ""]
        for entry in found:
            lines.extend([f"## {entry.title}", entry.content, ""])
        return "\n".join(lines).rstrip()

    async def _research_check(self, message: str) -> ResearchCheck:
        msg = message.lower()
        heuristic = ResearchCheck(needs_research=_count(_ERROR_PATTERNS, msg) > 0)
        return await self._complete_structured(
            "Check if this technical support query needs external research:\n"
            f'"{message}"\n\n'
            "Consider:\n"
            "1. Is it a complex technical issue?\n"
            "2. Does it involve specific error messages or codes?\n"
            "3. Would external documentation or resources help?\n\n"
            'Return JSON: {"needsResearch": true or false, "searchQuery": "focused web search query"}',
            ResearchCheck,
            heuristic,
        )

    async def _generic_answer(self, message: str, context: Dict[str, Any], reference: str = "") -> str:
        prompt = self.prompts.render(
            "technical_support",
            PromptContext(message=message, message_type="support"),
            os=context.get("os"),
            reference=reference,
        )
        return await self._complete(prompt, system_prompt=system_prompt("support", self.bot_name))

    async def _answer_from_research(self, message: str, context: Dict[str, Any]) -> str:
        research = str(context["research_results"])
        try:
            return await self._generic_answer(message, context, reference=research)
        except BackendError as e:
            logger.warning(f"SupportAgent research synthesis failed, returning research as-is: {e}")
            return research

    def _format(self, message: str, answer: str, ticket: Any) -> str:
        formatted = answer
        if "error" in message.lower():
            formatted += TROUBLESHOOTING_TIPS
        if ticket is not None:
            status = getattr(ticket.status, "value", ticket.status)
            formatted += f"\n\n> 🎫 Ticket #{ticket.id} - Status: {status}"
            if ticket.assigned_to:
                formatted += "\n> An agent has been assigned to help you."
            else:
                formatted += "\n> A support agent will be with you shortly."
        return formatted
