"""
Performance Metrics - In-memory metrics sink

Collects request counts, per-request durations, error kinds and cache activity.
Implements the MetricsSink protocol consumed by the orchestrator and cache managers.
"""

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class RequestTiming:
    """Timing record for one in-flight or finished request."""

    request_id: str
    start_time: float
    end_time: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000


class PerformanceMetrics:
    """
    Thread-safe metrics collector.

    Features:
    - Request counter and in-flight tracking
    - Rolling window of recent request durations
    - Error counts by kind
    - Cache hit/miss/eviction counters
    """

    def __init__(self, history_size: int = 1000, clock: Callable[[], float] = time.perf_counter):
        self._lock = threading.Lock()
        self._clock = clock
        self._active: Dict[str, RequestTiming] = {}
        self._durations: Deque[float] = deque(maxlen=history_size)

        self.requests = 0
        self.errors: Counter = Counter()
        self.cache_hits = 0
        self.cache_misses = 0
        self.cache_evictions = 0

    def record_request(self) -> None:
        with self._lock:
            self.requests += 1

    def record_error(self, kind: str) -> None:
        with self._lock:
            self.errors[str(kind)] += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1

    def record_cache_eviction(self) -> None:
        with self._lock:
            self.cache_evictions += 1

    def start_tracking(self, request_id: str, **metadata: Any) -> None:
        with self._lock:
            self._active[request_id] = RequestTiming(request_id, self._clock(), metadata=metadata)

    def end_tracking(self, request_id: str) -> Optional[float]:
        """Close the timing record and return its duration in milliseconds."""
        with self._lock:
            timing = self._active.pop(request_id, None)
            if timing is None:
                logger.debug(f"end_tracking called for unknown request {request_id}")
                return None
            timing.end_time = self._clock()
            duration = timing.duration_ms
            self._durations.append(duration)
            return duration

    def summary(self) -> Dict[str, Any]:
        """Get a snapshot of all collected metrics."""
        with self._lock:
            durations = list(self._durations)
            cache_total = self.cache_hits + self.cache_misses
            return {
                "requests": self.requests,
                "in_flight": len(self._active),
                "avg_duration_ms": round(sum(durations) / len(durations), 2) if durations else 0.0,
                "max_duration_ms": round(max(durations), 2) if durations else 0.0,
                "errors": dict(self.errors),
                "cache": {
                    "hits": self.cache_hits,
                    "misses": self.cache_misses,
                    "evictions": self.cache_evictions,
                    "hit_rate": round(self.cache_hits / cache_total * 100, 2) if cache_total else 0.0,
                },
            }
