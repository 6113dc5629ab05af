"""
Error taxonomy shared by agents, tools and the orchestrator.

Agents convert these into error responses; the orchestrator guarantees none of
them reaches the caller.
"""

from enum import Enum
from typing import List, Optional


class EchoError(Exception):
    """Base class for all domain errors."""


class ValidationError(EchoError):
    """Input failed validation. Reported verbatim, never retried."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Validation failed:\n" + "\n".join(self.errors))


class RateLimitExceeded(EchoError):
    def __init__(self, action: str, wait_seconds: float, message: Optional[str] = None):
        self.action = action
        self.wait_seconds = max(0.0, wait_seconds)
        super().__init__(
            message or f"Rate limit exceeded for {action}. Please wait {self.wait_seconds_rounded} seconds."
        )

    @property
    def wait_seconds_rounded(self) -> int:
        # Never tell a user to wait 0 seconds
        return max(1, int(-(-self.wait_seconds // 1)))


class BackendError(EchoError):
    """The language backend failed (quota, timeout, malformed response)."""


class ParsingError(EchoError):
    """Structured backend output could not be parsed."""


class SearchErrorKind(str, Enum):
    INVALID_QUERY = "invalid_query"
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    SERVICE_ERROR = "service_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"


_NON_RETRYABLE = {SearchErrorKind.INVALID_QUERY, SearchErrorKind.INVALID_CREDENTIALS}


class SearchError(EchoError):
    def __init__(self, kind: SearchErrorKind, message: str, status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind not in _NON_RETRYABLE


class UnknownTemplateError(EchoError, LookupError):
    """A template outside the whitelist was requested."""
