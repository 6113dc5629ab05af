"""
Cache Manager - Bounded TTL Cache

Generic cache shared by the knowledge-query, research-result and compiled-prompt
paths. Each component owns its own instance; entries are never shared across
instances.

Features TTL-based lazy expiration, oldest-first eviction at capacity and
hit/miss/eviction accounting.
"""

import re
import threading
import time
from typing import Any, Callable, Dict, Optional
import logging

from echo_ai.settings import settings

logger = logging.getLogger(__name__)

KEY_PREFIX_LENGTH = 100

_WHITESPACE = re.compile(r"\s+")


class CacheEntry:
    """Represents a cached entry with metadata."""

    def __init__(self, key: str, value: Any, ttl_seconds: float, created_at: float):
        self.key = key
        self.value = value
        self.ttl_seconds = ttl_seconds
        self.created_at = created_at
        self.access_count = 0

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        return (now - self.created_at) > self.ttl_seconds

    def access(self) -> Any:
        self.access_count += 1
        return self.value


class CacheManager:
    """
    Bounded cache with lazy TTL expiry.

    Features:
    - Lazy expiration on read (expired entries count as misses)
    - Single oldest entry evicted when a new key arrives at capacity
    - Hit/miss/eviction counters, optionally forwarded to a metrics sink
    - Thread-safe operations
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        default_ttl: Optional[float] = None,
        name: str = "general",
        metrics: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._lock = threading.RLock()
        # Insertion-ordered; the first key is always the oldest
        self._entries: Dict[str, CacheEntry] = {}

        self._max_size = max(1, max_size if max_size is not None else settings.general_cache_size)
        self._default_ttl = default_ttl if default_ttl is not None else settings.general_cache_ttl
        self._metrics = metrics
        self._clock = clock

        # Performance tracking
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        logger.debug(f"CacheManager[{name}] initialized with size={self._max_size}, ttl={self._default_ttl}s")

    @staticmethod
    def make_key(namespace: str, content: str) -> str:
        """Build ``namespace:<normalized prefix>`` so equivalent queries collide."""
        normalized = _WHITESPACE.sub(" ", (content or "").strip().lower())
        return f"{namespace}:{normalized[:KEY_PREFIX_LENGTH]}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._clock()):
                self._hits += 1
                self._emit("record_cache_hit")
                return entry.access()
            if entry is not None:
                del self._entries[key]
            self._misses += 1
            self._emit("record_cache_miss")
            return None

    def has(self, key: str) -> bool:
        """Membership test that honours expiry without touching the counters."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            ttl_value = self._default_ttl if ttl is None else ttl
            if key in self._entries:
                # Re-insert so insertion order tracks the refreshed timestamp
                del self._entries[key]
            elif len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(key, value, ttl_value, self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            logger.info(f"CacheManager[{self.name}] cleared")

    def _evict_oldest(self) -> None:
        oldest_key = next(iter(self._entries))
        del self._entries[oldest_key]
        self._evictions += 1
        self._emit("record_cache_eviction")
        logger.debug(f"CacheManager[{self.name}] evicted '{oldest_key}'")

    def _emit(self, method: str) -> None:
        if self._metrics is not None:
            getattr(self._metrics, method)()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            hit_rate = self._hits / total if total > 0 else 0
            return {
                "name": self.name,
                "size": len(self._entries),
                "max_size": self._max_size,
                "ttl_seconds": self._default_ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate * 100, 2),
                "evictions": self._evictions,
            }
