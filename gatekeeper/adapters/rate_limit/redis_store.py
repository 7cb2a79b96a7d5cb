"""Redis-backed fixed-window counter store.

Counters live at ``ratelimit:<client>`` and expire with their window. The
increment, the first-hit expiry and the TTL read run as a single Lua script,
so replicas sharing the Redis instance never interleave on the same key and
all of them observe the same reset instant.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterResult
from gatekeeper.core.config import RedisSettings
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.logging import hash_for_logs

logger = logging.getLogger(__name__)

# KEYS[1] = counter key, ARGV[1] = window in milliseconds.
# Returns {count, pttl}. PEXPIRE only runs for the increment that created the
# key, so later hits inside the window never push the reset further out.
INCREMENT_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return {current, redis.call('PTTL', KEYS[1])}
"""


class RedisCounterStore(AbstractCounterStore):
    """Distributed counter store on top of ``redis.asyncio``.

    Args:
        client: Connected (lazily) async Redis client.
        operation_timeout_seconds: Upper bound for one increment round trip.
    """

    def __init__(self, client: Redis, *, operation_timeout_seconds: float = 2.0) -> None:
        if operation_timeout_seconds <= 0:
            raise ValueError("operation_timeout_seconds must be > 0")
        self._client = client
        self._timeout = operation_timeout_seconds
        self._script = client.register_script(INCREMENT_SCRIPT)

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> "RedisCounterStore":
        """Build a store with a pooled client from ``REDIS_*`` settings.

        Raises:
            ValueError: If no Redis URL is configured.
        """

        if not redis_settings.url:
            raise ValueError("Redis URL is not configured")

        client = redis.from_url(
            redis_settings.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=redis_settings.max_connections,
            socket_connect_timeout=redis_settings.connect_timeout_seconds,
            socket_timeout=redis_settings.socket_timeout_seconds,
        )
        logger.info(
            "redis.client_initialized",
            extra={"host": urlsplit(redis_settings.url).hostname or "unknown"},
        )
        return cls(client, operation_timeout_seconds=redis_settings.operation_timeout_seconds)

    async def increment_and_check(self, key: str, window_ms: int) -> CounterResult:
        try:
            raw = await asyncio.wait_for(
                self._script(keys=[key], args=[window_ms]),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                code="store_timeout",
                message="Counter store did not answer in time",
                details={"hint": f"timeout={self._timeout}s"},
            ) from exc
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError(
                code="store_error",
                message=f"Counter store error: {type(exc).__name__}",
            ) from exc

        count, ttl_ms = int(raw[0]), int(raw[1])

        if count == 1 and ttl_ms < 0:
            # A fresh counter without expiry would never reset
            logger.error(
                "redis.expiry_not_set",
                extra={"key_hash": hash_for_logs(key), "window_ms": window_ms},
            )
            raise StoreUnavailableError(
                code="store_expiry_failed",
                message="Counter was created without an expiry",
            )

        if ttl_ms <= 0:
            ttl_ms = window_ms

        return CounterResult(count=count, ttl_remaining_ms=ttl_ms)

    async def ping(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=self._timeout))
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "redis.ping_failed",
                extra={"error_type": type(exc).__name__},
            )
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
            logger.info("redis.connection_closed")
        except (RedisError, OSError) as exc:
            logger.error(
                "redis.close_failed",
                extra={"error_type": type(exc).__name__},
            )
