"""Rate limit policies and the preconfigured limiter registry.

A policy is an immutable record handed to the engine on every evaluation.
The registry below is plain data: one row per named limiter with separate
development and production numbers, so limits can be reviewed and tested
without running the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

from fastapi import Request

from gatekeeper.core.config import Environment
from gatekeeper.core.errors import ConfigurationAppError

DEFAULT_MESSAGE = "Too many requests, please try again later"

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

KeyGenerator = Callable[[Request], str]
SkipPredicate = Callable[[Request], bool]


@dataclass(frozen=True)
class RateLimitPolicy:
    """Immutable limiter configuration.

    Attributes:
        name: Registry name, used in logs.
        limit: Requests allowed per window; the (limit+1)th is rejected.
        window_ms: Fixed window length in milliseconds.
        message: Human-readable text returned with 429 responses.
        key_generator: Derives the client key; None uses the engine's
            header-based identity resolver.
        skip: Requests for which it returns True are neither counted nor limited.
    """

    name: str
    limit: int
    window_ms: int
    message: str = DEFAULT_MESSAGE
    key_generator: KeyGenerator | None = None
    skip: SkipPredicate | None = None

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ConfigurationAppError(
                code="invalid_rate_limit_policy",
                message=f"Policy '{self.name}' must allow at least one request",
                details={"policy": self.name, "limit": self.limit},
            )
        if self.window_ms < 1:
            raise ConfigurationAppError(
                code="invalid_rate_limit_policy",
                message=f"Policy '{self.name}' must have a positive window",
                details={"policy": self.name, "window_ms": self.window_ms},
            )

    @property
    def window_seconds(self) -> int:
        return -(-self.window_ms // 1000)


def skip_health_checks(request: Request) -> bool:
    """Skip predicate for load balancer health checks."""
    return request.url.path.startswith("/health")


@dataclass(frozen=True)
class PolicyRow:
    """Registry row: (limit, window_ms) per environment class."""

    development: tuple[int, int]
    production: tuple[int, int]
    message: str = DEFAULT_MESSAGE
    skip: SkipPredicate | None = None


POLICY_TABLE: Mapping[str, PolicyRow] = MappingProxyType(
    {
        "general": PolicyRow(
            development=(100, MINUTE_MS),
            production=(100, MINUTE_MS),
            skip=skip_health_checks,
        ),
        "auth": PolicyRow(
            development=(50, MINUTE_MS),
            production=(30, 5 * MINUTE_MS),
            message="Too many authentication attempts, please try again later",
        ),
        "upload": PolicyRow(
            development=(20, HOUR_MS),
            production=(20, HOUR_MS),
            message="Upload limit reached, please try again later",
        ),
        "write": PolicyRow(
            development=(30, MINUTE_MS),
            production=(30, MINUTE_MS),
            message="Too many write operations, please slow down",
        ),
        "strict": PolicyRow(
            development=(5, MINUTE_MS),
            production=(5, MINUTE_MS),
            message="Rate limit exceeded for sensitive operation",
        ),
        "email": PolicyRow(
            development=(10, MINUTE_MS),
            production=(5, 15 * MINUTE_MS),
            message="Too many email requests, please try again later",
        ),
    }
)


def build_policies(
    environment: Environment,
    table: Mapping[str, PolicyRow] = POLICY_TABLE,
) -> Mapping[str, RateLimitPolicy]:
    """Materialize the registry for one environment.

    Development numbers apply only to ``Environment.DEVELOPMENT``; testing,
    staging and production all get the production numbers.

    Returns:
        Read-only mapping of policy name to RateLimitPolicy.
    """

    policies: dict[str, RateLimitPolicy] = {}
    for name, row in table.items():
        limit, window_ms = row.development if environment.is_development else row.production
        policies[name] = RateLimitPolicy(
            name=name,
            limit=limit,
            window_ms=window_ms,
            message=row.message,
            skip=row.skip,
        )
    return MappingProxyType(policies)
