"""
Collaborator boundaries used by the agents.

Each protocol has an in-memory implementation in this package; production
deployments plug in their own persistence and chat-platform adapters.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence


class HistoryStore(Protocol):
    async def get_history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]: ...

    async def add_entry(self, user_id: str, content: str, is_generated: bool) -> None: ...

    async def clear_history(self, user_id: str) -> None: ...


class KnowledgeStore(Protocol):
    async def search(
        self,
        query: str,
        *,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        verified_only: bool = True,
        limit: int = 5,
    ) -> List[Any]: ...

    async def create(self, entry: Any) -> Any: ...

    async def get(self, entry_id: str) -> Optional[Any]: ...

    async def increment_use_count(self, entry_id: str) -> None: ...

    async def rate(self, entry_id: str, rating: int) -> Any: ...

    async def verify(self, entry_id: str, moderator_id: str) -> Any: ...


class TicketStore(Protocol):
    async def create(self, ticket: Any) -> Any: ...

    async def find_open_by_user(self, user_id: str) -> Optional[Any]: ...

    async def add_message(self, ticket_id: str, user_id: str, content: str, internal: bool = False) -> Any: ...

    async def get_active_staff(self) -> List[Any]: ...


class TicketGateway(Protocol):
    """Chat-platform side of ticketing: private threads and channel posts."""

    async def create_thread(self, name: str, user_id: str, reason: str) -> str: ...

    async def send(self, channel_id: str, content: str) -> None: ...

    async def delete_thread(self, thread_id: str) -> None: ...


class MetricsSink(Protocol):
    def record_request(self) -> None: ...

    def record_error(self, kind: str) -> None: ...

    def record_cache_hit(self) -> None: ...

    def record_cache_miss(self) -> None: ...

    def record_cache_eviction(self) -> None: ...


class LanguageBackend(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str: ...
