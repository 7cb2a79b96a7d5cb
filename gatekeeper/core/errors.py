"""Application-level exception types.

This module defines domain errors used across the limiter, its adapters and
the HTTP layer, enabling consistent error handling, logging, and responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from gatekeeper.core.rate_limit import Reject


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    policy: str
    limit: int
    window_ms: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when a rate limit policy is constructed with invalid values."""


class StoreUnavailableError(AppError):
    """Raised when the shared counter store cannot serve an increment.

    Covers connection failures, command errors and timeouts alike. The policy
    engine always catches it; it never reaches the client as a 500.
    """


class RateLimitUnavailableError(AppError):
    """Raised by the HTTP dependency when the limiter fails closed (503)."""


class RateLimitExceededError(AppError):
    """Raised by the HTTP dependency when a client is throttled (429).

    Not a failure of the service: it carries the ``Reject`` decision so the
    exception handler can render headers and the retry hint.
    """

    def __init__(self, decision: "Reject") -> None:
        super().__init__(
            code="rate_limit_exceeded",
            message=decision.message,
            details={"retry_after": decision.retry_after_seconds},
        )
        self.decision = decision
