"""Exception hierarchy shared by the availability engine."""
from __future__ import annotations

from typing import Optional, Sequence, Tuple


class EngineError(RuntimeError):
    """Base class for every error raised by the engine."""


class AuthError(EngineError):
    """Raised when an access token cannot be obtained or refreshed."""


class PmsError(EngineError):
    """Raised when the PMS cannot serve a request.

    ``kind`` is a short machine-readable label (``transport``, ``response`` or
    ``exhausted``) that callers can log without inspecting the class.
    """

    kind = "pms"

    def __init__(self, message: str, *, endpoint: Optional[str] = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint


class PmsTransportError(PmsError):
    """Network failure or timeout while talking to the PMS."""

    kind = "transport"


class PmsRateLimitedError(PmsTransportError):
    """The PMS answered 429; ``retry_after`` is in seconds when provided."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, endpoint=endpoint)
        self.retry_after = retry_after


class PmsResponseError(PmsError):
    """The PMS answered, but the payload was unusable (error status, malformed or empty)."""

    kind = "response"

    def __init__(
        self,
        message: str,
        *,
        endpoint: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message, endpoint=endpoint)
        self.status = status


class PmsUnavailableError(PmsError):
    """Every endpoint in the fallback chain failed."""

    kind = "exhausted"

    def __init__(self, attempts: Sequence[Tuple[str, str]]) -> None:
        summary = "; ".join(f"{name}: {reason}" for name, reason in attempts) or "no endpoints configured"
        super().__init__(f"All PMS endpoints failed ({summary})")
        self.attempts = tuple(attempts)


class ValidationError(EngineError, ValueError):
    """Caller supplied an invalid date range, guest count or pricing input."""


class CacheError(EngineError):
    """Internal cache inconsistency; should not normally surface."""


class StayNotAvailableError(ValidationError):
    """The requested stay is booked, unpriced or violates min/max stay rules."""
