"""
Ticket Agent - Staff escalation through private ticket threads

Analyzes the request, opens an access-restricted thread, persists the ticket,
posts a welcome message and checklist, pings support staff and acknowledges
the user.
"""

from typing import Any, Dict, List, Optional
import logging

from langsmith import traceable
from pydantic import BaseModel, field_validator

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.config import TICKET_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.errors import BackendError
from echo_ai.core.state import AgentResponse, ErrorKind
from echo_ai.settings import settings
from echo_ai.tools.base import LanguageBackend, TicketGateway, TicketStore
from echo_ai.tools.ticketing import Ticket, TicketMessage, TicketStatus

logger = logging.getLogger(__name__)

TICKET_INDICATORS = (
    "ticket",
    "create ticket",
    "open ticket",
    "support ticket",
    "help desk",
    "support request",
    "assistance request",
    "need help with",
    "staff help",
    "human support",
    "escalate",
    "urgent",
    "critical issue",
)

HIGH_PRIORITY = 4
MEDIUM_PRIORITY = 3
# Least-loaded staff members pinged per ticket
STAFF_MENTIONS = 2


class TicketAnalysis(BaseModel):
    priority: int = 2
    category: str = "general"
    summary: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def clamp_priority(cls, value: Any) -> int:
        try:
            return max(1, min(5, int(value)))
        except (TypeError, ValueError):
            return 2

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> str:
        return str(value or "general").strip().lower() or "general"


def thread_name(analysis: TicketAnalysis) -> str:
    return f"{'🔴' * analysis.priority} {analysis.category.upper()}: {analysis.summary[:50]}"


def alert_prefix(priority: int) -> str:
    if priority >= HIGH_PRIORITY:
        return "🚨 **HIGH PRIORITY** 🚨\n"
    if priority >= MEDIUM_PRIORITY:
        return "⚠️ **Medium Priority**\n"
    return ""


class TicketAgent(BaseAgent):
    def __init__(
        self,
        backend: LanguageBackend,
        prompts: PromptTemplateEngine,
        store: TicketStore,
        gateway: TicketGateway,
        support_role_id: Optional[str] = None,
        log_channel_id: Optional[str] = None,
        bot_name: Optional[str] = None,
    ):
        super().__init__(backend, prompts, TICKET_AGENT, bot_name)
        self.store = store
        self.gateway = gateway
        self.support_role_id = support_role_id if support_role_id is not None else settings.support_role_id
        self.log_channel_id = log_channel_id if log_channel_id is not None else settings.ticket_log_channel_id

    async def can_handle(self, message: str) -> bool:
        msg = (message or "").lower()
        return any(term in msg for term in TICKET_INDICATORS)

    @traceable(name="TicketAgent", metadata={"agent": "TicketAgent", "tags": ["agent", "ticket", "escalation"]})
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        analysis = await self.analyze_request(message)

        try:
            thread_id = await self.gateway.create_thread(thread_name(analysis), user_id, f"Ticket: {analysis.summary}")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error creating ticket thread: {e}")
            return AgentResponse.failure(
                "I'm sorry, I couldn't create a ticket thread. Please try again or contact staff directly.",
                ErrorKind.INTERNAL,
            )

        try:
            ticket = await self.store.create(
                Ticket(
                    title=analysis.summary or f"Support Request: {message[:50]}...",
                    description=message,
                    user_id=user_id,
                    status=TicketStatus.OPEN,
                    priority=analysis.priority,
                    category=analysis.category,
                    thread_id=thread_id,
                    messages=[TicketMessage(content=message, sender_id=user_id)],
                )
            )
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error saving ticket for thread {thread_id}: {e}")
            await self._discard_thread(thread_id)
            return AgentResponse.failure(
                "I'm sorry, I couldn't save your ticket. Please try again or contact staff directly.",
                ErrorKind.INTERNAL,
            )

        await self._send_welcome(thread_id, ticket, analysis)
        await self._notify_staff(thread_id, ticket, analysis)
        content = await self.acknowledge(message, ticket, analysis, thread_id)

        return AgentResponse(
            content=content,
            metadata={
                "type": "ticket_created",
                "ticket_id": ticket.id,
                "thread_id": thread_id,
                "status": ticket.status.value,
                "priority": ticket.priority,
                "category": ticket.category,
            },
        )

    async def analyze_request(self, message: str) -> TicketAnalysis:
        fallback = TicketAnalysis(priority=2, category="general", summary=message[:100])
        analysis = await self._complete_structured(
            "Analyze this support ticket request:\n"
            f'"{message}"\n\n'
            "Determine:\n"
            "1. Priority from 1 (low) to 5 (critical)\n"
            "2. Category (for example: general, technical, billing, account, bug, feature)\n"
            "3. A one-line summary of the problem\n\n"
            'Return JSON: {"priority": number, "category": "category", "summary": "summary"}',
            TicketAnalysis,
            fallback,
        )
        if not analysis.summary.strip():
            analysis = analysis.model_copy(update={"summary": fallback.summary})
        return analysis

    async def _discard_thread(self, thread_id: str) -> None:
        # No ticket record points at this thread; leave nothing behind
        try:
            await self.gateway.delete_thread(thread_id)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error deleting orphaned ticket thread {thread_id}: {e}")

    async def _send_welcome(self, thread_id: str, ticket: Ticket, analysis: TicketAnalysis) -> None:
        welcome = (
            f"**Ticket #{ticket.id} - {ticket.title}**\n"
            "Thank you for creating a ticket. Our support team will assist you shortly.\n\n"
            f"**Priority:** {'⭐' * analysis.priority}\n"
            f"**Category:** {analysis.category}\n"
            f"**Status:** {ticket.status.value}\n\n"
            "**While you wait**\n"
            "Please provide any additional details that might help us resolve your issue faster:\n"
            "- Screenshots or error messages\n"
            "- Steps to reproduce the issue\n"
            "- When the issue started\n"
            "- What you've already tried"
        )
        checklist = (
            "**Help us help you faster**\n"
            "Please check off these items as you provide them:\n"
            "1. Problem Description: ☑️ Already provided in your ticket\n"
            "2. System Information: ⬜ Your OS, browser, device, etc.\n"
            "3. Error Messages: ⬜ Screenshots or error text\n"
            "4. Reproduction Steps: ⬜ How to reproduce the issue"
        )
        try:
            await self.gateway.send(thread_id, welcome)
            await self.gateway.send(thread_id, checklist)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error sending ticket welcome message: {e}")

    async def _mentions(self) -> List[str]:
        mentions: List[str] = []
        if self.support_role_id:
            mentions.append(f"<@&{self.support_role_id}>")
        staff = await self.store.get_active_staff()
        for member in sorted(staff, key=lambda s: s.open_tickets)[:STAFF_MENTIONS]:
            mentions.append(f"<@{member.user_id}>")
        return mentions

    async def _notify_staff(self, thread_id: str, ticket: Ticket, analysis: TicketAnalysis) -> None:
        try:
            mentions = await self._mentions()
            if mentions:
                await self.gateway.send(
                    thread_id,
                    f"{alert_prefix(analysis.priority)}{' '.join(mentions)}, a new support ticket has been created.",
                )
            if analysis.priority >= HIGH_PRIORITY and self.log_channel_id:
                await self.gateway.send(
                    self.log_channel_id,
                    "**🚨 High Priority Ticket Created**\n"
                    f"A priority {analysis.priority} ticket has been created by <@{ticket.user_id}>.\n"
                    f"Ticket ID: #{ticket.id} | Category: {analysis.category} | Thread: <#{thread_id}>",
                )
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error notifying support staff: {e}")

    async def acknowledge(self, message: str, ticket: Ticket, analysis: TicketAnalysis, thread_id: str) -> str:
        prompt = (
            "Generate a response for a user who just created a support ticket.\n"
            f'Original request: "{message}"\n'
            f"Ticket summary: {analysis.summary}\n"
            f"Priority: {analysis.priority}/5\n"
            f"Category: {analysis.category}\n\n"
            f"Write a brief, reassuring response as {self.bot_name}, acknowledging that:\n"
            f"1. A support ticket (#{ticket.id}) has been created in a private thread\n"
            "2. Support staff have been notified and will assist them soon\n"
            "3. They should check the thread for next steps\n"
            f"4. The thread is accessible via this link: <#{thread_id}>\n\n"
            "Keep the response under 1000 characters and maintain a helpful, professional tone."
        )
        try:
            response = await self._complete(prompt)
        except BackendError as e:
            logger.error(f"Error generating ticket response: {e}")
            return (
                f"I've created ticket #{ticket.id} for you in a private thread. Our support team has been "
                f"notified and will assist you shortly. You can access your ticket here: <#{thread_id}>"
            )
        if thread_id not in response:
            response += f"\n\nYou can access your ticket here: <#{thread_id}>"
        return response

    async def check_existing_ticket(self, user_id: str) -> Optional[Ticket]:
        return await self.store.find_open_by_user(user_id)

    async def add_message_to_ticket(
        self, ticket_id: str, user_id: str, content: str, internal: bool = False
    ) -> TicketMessage:
        return await self.store.add_message(ticket_id, user_id, content, internal)
