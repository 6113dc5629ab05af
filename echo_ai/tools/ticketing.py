import itertools
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class TicketMessage(BaseModel):
    content: str
    sender_id: str
    is_internal: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Ticket(BaseModel):
    id: Optional[str] = None
    title: str
    description: str
    user_id: str
    status: TicketStatus = TicketStatus.OPEN
    priority: int = 2
    category: str = "general"
    thread_id: Optional[str] = None
    assigned_to: Optional[str] = None
    messages: List[TicketMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SupportStaff(BaseModel):
    user_id: str
    active: bool = True
    open_tickets: int = 0


class InMemoryTicketStore:
    def __init__(self, staff: Optional[Sequence[SupportStaff]] = None):
        self._tickets: Dict[str, Ticket] = {}
        self._ids = itertools.count(1)
        self.staff: List[SupportStaff] = list(staff or [])

    async def create(self, ticket: Ticket) -> Ticket:
        stored = ticket.model_copy(update={"id": f"T-{next(self._ids):05d}"})
        self._tickets[stored.id] = stored
        logger.info(f"Ticket {stored.id} opened for {stored.user_id} (priority {stored.priority})")
        return stored

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        return self._tickets.get(ticket_id)

    async def find_open_by_user(self, user_id: str) -> Optional[Ticket]:
        for ticket in self._tickets.values():
            if ticket.user_id == user_id and ticket.status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS):
                return ticket
        return None

    async def add_message(self, ticket_id: str, user_id: str, content: str, internal: bool = False) -> TicketMessage:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise LookupError(f"Ticket not found: {ticket_id}")
        message = TicketMessage(content=content, sender_id=user_id, is_internal=internal)
        ticket.messages.append(message)
        return message

    async def get_active_staff(self) -> List[SupportStaff]:
        return [s for s in self.staff if s.active]


class InMemoryTicketGateway:
    """Records threads and posts instead of talking to a chat platform."""

    def __init__(self):
        self._ids = itertools.count(1000)
        self.threads: Dict[str, Dict[str, Any]] = {}
        self.sent: List[Tuple[str, str]] = []

    async def create_thread(self, name: str, user_id: str, reason: str) -> str:
        thread_id = str(next(self._ids))
        self.threads[thread_id] = {"name": name, "members": [user_id], "reason": reason, "private": True}
        return thread_id

    async def send(self, channel_id: str, content: str) -> None:
        self.sent.append((channel_id, content))

    async def delete_thread(self, thread_id: str) -> None:
        self.threads.pop(thread_id, None)

    def messages_for(self, channel_id: str) -> List[str]:
        return [content for cid, content in self.sent if cid == channel_id]
