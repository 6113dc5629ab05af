"""
In-memory knowledge store.

Reference implementation of the KnowledgeStore protocol. Matching follows the
relational store it stands in for: case-insensitive containment on title or
content, or any query word among the tags; ranked by use count, then rating.
"""

import itertools
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CATEGORIES = ("general", "technical", "faq", "tutorial", "policy", "guide")


class KnowledgeEntry(BaseModel):
    id: Optional[str] = None
    title: str
    content: str
    category: str = "general"
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    is_verified: bool = False
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    use_count: int = 0
    rating: float = 0.0
    rating_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EntryNotFound(LookupError):
    pass


class InMemoryKnowledgeStore:
    def __init__(self, entries: Optional[Sequence[KnowledgeEntry]] = None):
        self._entries: Dict[str, KnowledgeEntry] = {}
        self._ids = itertools.count(1)
        for entry in entries or []:
            self._insert(entry)

    def _insert(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        stored = entry.model_copy(
            update={"id": entry.id or f"KB-{next(self._ids):05d}", "tags": [t.lower() for t in entry.tags]}
        )
        self._entries[stored.id] = stored
        return stored

    def _require(self, entry_id: str) -> KnowledgeEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFound(f"Knowledge entry not found: {entry_id}")
        return entry

    @staticmethod
    def _matches(entry: KnowledgeEntry, query: str) -> bool:
        q = query.lower().strip()
        if not q:
            return True
        if q in entry.title.lower() or q in entry.content.lower():
            return True
        return any(word in entry.tags for word in q.split())

    async def search(
        self,
        query: str,
        *,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        verified_only: bool = True,
        limit: int = 5,
    ) -> List[KnowledgeEntry]:
        wanted_tags = {t.lower() for t in tags or []}
        hits = [
            e
            for e in self._entries.values()
            if self._matches(e, query)
            and (category is None or e.category == category)
            and (not wanted_tags or wanted_tags.intersection(e.tags))
            and (e.is_verified or not verified_only)
        ]
        hits.sort(key=lambda e: (e.use_count, e.rating), reverse=True)
        return hits[:limit]

    async def get(self, entry_id: str) -> Optional[KnowledgeEntry]:
        return self._entries.get(entry_id)

    async def create(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        stored = self._insert(entry)
        logger.info(f"Knowledge entry {stored.id} created by {stored.created_by}")
        return stored

    async def increment_use_count(self, entry_id: str) -> None:
        self._require(entry_id).use_count += 1

    async def rate(self, entry_id: str, rating: int) -> KnowledgeEntry:
        entry = self._require(entry_id)
        entry.rating = (entry.rating * entry.rating_count + rating) / (entry.rating_count + 1)
        entry.rating_count += 1
        return entry

    async def verify(self, entry_id: str, moderator_id: str) -> KnowledgeEntry:
        entry = self._require(entry_id)
        entry.is_verified = True
        entry.verified_by = moderator_id
        entry.verified_at = datetime.now(timezone.utc)
        return entry

