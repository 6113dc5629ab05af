from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

from echo_ai.settings import settings


class InMemoryHistoryStore:
    """
    Per-user conversation history.

    Keeps at most ``max_per_user`` entries per user; get_history returns the most
    recent ``limit`` entries in chronological order.
    """

    def __init__(self, max_per_user: int | None = None):
        self.max_per_user = max_per_user or settings.history_max_per_user
        self._history: Dict[str, Deque[Dict[str, Any]]] = {}

    async def get_history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        entries = list(self._history.get(user_id, ()))
        return entries[-limit:] if limit > 0 else []

    async def add_entry(self, user_id: str, content: str, is_generated: bool) -> None:
        bucket = self._history.setdefault(user_id, deque(maxlen=self.max_per_user))
        bucket.append(
            {
                "content": content,
                "is_generated": is_generated,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    async def clear_history(self, user_id: str) -> None:
        self._history.pop(user_id, None)
