"""Rate limit policy engine and its FastAPI dependency.

This module wires the counter stores into the HTTP layer.

Design goals:
- Shared counting: Redis is the source of truth so every replica enforces
  one limit per client, not one limit per process.
- Explicit failure policy: when Redis is down, production-like environments
  fail closed (503) while development counts in-process and keeps serving.
- Deterministic: the environment is injected at construction, never read
  from process state during a request.

Counting happens before the threshold check, so the request that crosses
the limit is itself counted and rejected: with ``limit=N`` the Nth request
is allowed and the (N+1)th is not.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Mapping, Union

from fastapi import Request, Response

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore
from gatekeeper.adapters.rate_limit.in_memory import InMemoryFallbackTable
from gatekeeper.adapters.rate_limit.redis_store import RedisCounterStore
from gatekeeper.core.config import Environment, Settings, settings
from gatekeeper.core.errors import (
    ConfigurationAppError,
    RateLimitExceededError,
    RateLimitUnavailableError,
    StoreUnavailableError,
)
from gatekeeper.core.identity import resolve_client_key
from gatekeeper.core.logging import hash_for_logs
from gatekeeper.core.policies import POLICY_TABLE, RateLimitPolicy, build_policies

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:"

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"


@dataclass(frozen=True)
class Allow:
    """Let the request through; ``headers`` is empty for skipped requests."""

    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Reject:
    """Throttle the request with 429."""

    headers: dict[str, str]
    retry_after_seconds: int
    message: str


@dataclass(frozen=True)
class ServiceUnavailable:
    """The limiter cannot count and refuses to guess (503)."""


Decision = Union[Allow, Reject, ServiceUnavailable]


class RateLimitEngine:
    """Evaluates requests against rate limit policies.

    Args:
        store: Shared counter store, or None to count in-process only.
        fallback: In-process table used when the store is absent or, outside
            production, when it fails.
        environment: Deployment environment; decides fail-closed vs fallback.
        policies: Named policies resolvable by ``policy()``.
        trust_proxy: Whether forwarding headers identify the client.
        fallback_on_store_error: Outside production, count in-process on
            store errors instead of answering 503.
        enabled: When False the HTTP dependency lets every request through
            uncounted.
    """

    def __init__(
        self,
        *,
        store: AbstractCounterStore | None,
        fallback: InMemoryFallbackTable,
        environment: Environment,
        policies: Mapping[str, RateLimitPolicy] | None = None,
        trust_proxy: bool = False,
        fallback_on_store_error: bool = True,
        enabled: bool = True,
    ) -> None:
        self._store = store
        self._fallback = fallback
        self._environment = environment
        self._policies = policies if policies is not None else build_policies(environment)
        self._trust_proxy = trust_proxy
        self._fallback_on_store_error = fallback_on_store_error
        self._enabled = enabled

        if store is None and environment.is_production_like:
            logger.error(
                "rate_limit.store_not_configured",
                extra={
                    "environment": environment.value,
                    "hint": "Set REDIS_URL; in-process limits are per replica",
                },
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def environment(self) -> Environment:
        return self._environment

    @property
    def store(self) -> AbstractCounterStore | None:
        return self._store

    @property
    def policies(self) -> Mapping[str, RateLimitPolicy]:
        return self._policies

    def policy(self, name: str) -> RateLimitPolicy:
        """Look up a registered policy by name.

        Raises:
            KeyError: If no policy with that name is registered.
        """
        return self._policies[name]

    def client_key(self, request: Request, policy: RateLimitPolicy) -> str:
        if policy.key_generator is not None:
            client = policy.key_generator(request)
        else:
            client = resolve_client_key(request.headers, trust_proxy=self._trust_proxy)
        return f"{KEY_PREFIX}{client}"

    async def evaluate(self, request: Request, policy: RateLimitPolicy) -> Decision:
        """Count one request against ``policy`` and decide its fate.

        Args:
            request: Incoming request (headers and path are consulted).
            policy: Limiter configuration to enforce.

        Returns:
            Allow, Reject or ServiceUnavailable.
        """
        if policy.skip is not None and policy.skip(request):
            return Allow()

        key = self.client_key(request, policy)

        if self._store is None:
            count, ttl_ms = self._count_locally(key, policy)
        else:
            try:
                result = await self._store.increment_and_check(key, policy.window_ms)
                count, ttl_ms = result.count, result.ttl_remaining_ms
            except StoreUnavailableError as exc:
                if self._environment.is_production_like or not self._fallback_on_store_error:
                    logger.error(
                        "rate_limit.store_unavailable",
                        extra={
                            "policy": policy.name,
                            "error_code": exc.code,
                            "error_message": exc.message,
                            "environment": self._environment.value,
                        },
                    )
                    return ServiceUnavailable()

                logger.warning(
                    "rate_limit.fallback",
                    extra={
                        "policy": policy.name,
                        "error_code": exc.code,
                        "error_message": exc.message,
                        "environment": self._environment.value,
                    },
                )
                count, ttl_ms = self._count_locally(key, policy)

        return self._decide(key, policy, count, ttl_ms)

    def _count_locally(self, key: str, policy: RateLimitPolicy) -> tuple[int, int]:
        result = self._fallback.increment_and_check(key, policy.window_ms, policy.limit)
        ttl_ms = max(0, result.reset_at_ms - self._fallback.clock())
        return result.count, ttl_ms

    def _decide(self, key: str, policy: RateLimitPolicy, count: int, ttl_ms: int) -> Decision:
        reset_seconds = math.ceil(ttl_ms / 1000)
        remaining = max(0, policy.limit - count)
        headers = {
            HEADER_LIMIT: str(policy.limit),
            HEADER_REMAINING: str(remaining),
            HEADER_RESET: str(reset_seconds),
        }

        if count > policy.limit:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_for_logs(key),
                    "limit": policy.limit,
                    "count": count,
                    "retry_after_s": reset_seconds,
                },
            )
            return Reject(headers=headers, retry_after_seconds=reset_seconds, message=policy.message)

        logger.debug(
            "rate_limit.allowed",
            extra={
                "policy": policy.name,
                "key_hash": hash_for_logs(key),
                "limit": policy.limit,
                "remaining": remaining,
            },
        )
        return Allow(headers=headers)

    async def close(self) -> None:
        """Stop the fallback sweeper and release store connections."""
        self._fallback.close()
        if self._store is not None:
            await self._store.close()


def build_rate_limit_engine(config: Settings | None = None) -> RateLimitEngine:
    """Assemble an engine (store, fallback table, registry) from settings."""

    cfg = config or settings
    environment = cfg.app.env

    store: AbstractCounterStore | None = None
    if cfg.redis.url:
        store = RedisCounterStore.from_settings(cfg.redis)
    else:
        logger.warning(
            "rate_limit.redis_url_missing",
            extra={"environment": environment.value},
        )

    return RateLimitEngine(
        store=store,
        fallback=InMemoryFallbackTable(
            sweep_interval_seconds=cfg.rate_limit.sweep_interval_seconds,
        ),
        environment=environment,
        policies=build_policies(environment),
        trust_proxy=cfg.app.trust_proxy,
        fallback_on_store_error=cfg.rate_limit.fallback_on_store_error,
        enabled=cfg.rate_limit.enabled,
    )


def get_rate_limit_engine(request: Request) -> RateLimitEngine:
    """Return the engine the application lifespan attached to ``app.state``."""

    return request.app.state.rate_limit_engine


def rate_limit(policy: str | RateLimitPolicy) -> Callable:
    """Build a FastAPI dependency enforcing ``policy``.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit("auth"))])
        async def login(): ...

    On Allow the X-RateLimit-* headers are copied onto the response. Reject
    and ServiceUnavailable are raised as exceptions rendered by the global
    exception handlers (429 and 503).

    Args:
        policy: Registry name or an explicit RateLimitPolicy.

    Raises:
        ConfigurationAppError: If ``policy`` names no registered limiter.
    """

    if isinstance(policy, str) and policy not in POLICY_TABLE:
        raise ConfigurationAppError(
            code="unknown_rate_limit_policy",
            message=f"No rate limit policy named '{policy}'",
            details={"policy": policy, "hint": f"Known policies: {', '.join(sorted(POLICY_TABLE))}"},
        )

    async def enforce_rate_limit(request: Request, response: Response) -> None:
        engine = get_rate_limit_engine(request)
        if not engine.enabled:
            return

        resolved = engine.policy(policy) if isinstance(policy, str) else policy
        decision = await engine.evaluate(request, resolved)

        if isinstance(decision, Reject):
            raise RateLimitExceededError(decision)
        if isinstance(decision, ServiceUnavailable):
            raise RateLimitUnavailableError(
                code="rate_limit_unavailable",
                message="Rate limiting service is unavailable. Please try again later.",
            )

        for name, value in decision.headers.items():
            response.headers[name] = value

    return enforce_rate_limit
