"""
Rate Limiter - Sliding-window admission control per (user, action).

Windows are pruned lazily on every check. A rejected request never mutates state,
so a client that keeps retrying does not extend its own lockout.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Mapping, Tuple

from echo_ai.core.errors import RateLimitExceeded
from echo_ai.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class SlidingWindow:
    """At most ``max_requests`` admissions in any ``window_seconds`` span."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._timestamps: Dict[str, List[float]] = {}

    def _prune(self, subject_key: str, now: float) -> List[float]:
        live = [t for t in self._timestamps.get(subject_key, []) if now - t < self.window_seconds]
        if live:
            self._timestamps[subject_key] = live
        else:
            self._timestamps.pop(subject_key, None)
        return live

    def would_allow(self, subject_key: str) -> bool:
        with self._lock:
            return len(self._prune(subject_key, self._clock())) < self.max_requests

    def record(self, subject_key: str) -> None:
        with self._lock:
            self._timestamps.setdefault(subject_key, []).append(self._clock())

    def allow(self, subject_key: str) -> bool:
        with self._lock:
            now = self._clock()
            live = self._prune(subject_key, now)
            if len(live) >= self.max_requests:
                return False
            self._timestamps.setdefault(subject_key, []).append(now)
            return True

    def retry_after(self, subject_key: str) -> float:
        """Seconds until the oldest live timestamp leaves the window (0 when admissible)."""
        with self._lock:
            now = self._clock()
            live = self._prune(subject_key, now)
            if len(live) < self.max_requests:
                return 0.0
            return max(0.0, self.window_seconds - (now - live[0]))

    def count(self, subject_key: str) -> int:
        with self._lock:
            return len(self._prune(subject_key, self._clock()))


def default_limits(config: Settings = default_settings) -> Dict[str, Tuple[int, float]]:
    return {
        "knowledge_creation": (config.knowledge_creation_limit, config.knowledge_creation_window),
        "knowledge_rating": (config.knowledge_rating_limit, config.knowledge_rating_window),
        "conversation_burst": (config.conversation_burst_limit, config.conversation_burst_window),
        "conversation_sustained": (config.conversation_sustained_limit, config.conversation_sustained_window),
    }


class RateLimiter:
    """Maps action names to sliding windows keyed by ``"{user_id}-{action}"``."""

    def __init__(
        self,
        limits: Mapping[str, Tuple[int, float]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lock = threading.RLock()
        self._windows: Dict[str, SlidingWindow] = {
            action: SlidingWindow(max_requests, window, clock)
            for action, (max_requests, window) in (limits if limits is not None else default_limits()).items()
        }

    @staticmethod
    def subject_key(user_id: str, action: str) -> str:
        return f"{user_id}-{action}"

    def _window(self, action: str) -> SlidingWindow:
        try:
            return self._windows[action]
        except KeyError:
            raise KeyError(f"Unknown rate-limit action: {action}") from None

    def allow(self, user_id: str, action: str) -> bool:
        return self._window(action).allow(self.subject_key(user_id, action))

    def retry_after(self, user_id: str, action: str) -> float:
        return self._window(action).retry_after(self.subject_key(user_id, action))

    def check(self, user_id: str, *actions: str) -> None:
        """
        Admit the request against every listed window, or none of them.

        Raises RateLimitExceeded for the first window that would reject; nothing
        is recorded in that case.
        """
        with self._lock:
            windows = [(action, self._window(action)) for action in actions]
            for action, window in windows:
                key = self.subject_key(user_id, action)
                if not window.would_allow(key):
                    wait = window.retry_after(key)
                    logger.info(f"Rate limit hit for {key}, retry in {wait:.1f}s")
                    raise RateLimitExceeded(action, wait)
            for action, window in windows:
                window.record(self.subject_key(user_id, action))
