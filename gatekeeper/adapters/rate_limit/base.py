"""Counter store interfaces.

The policy engine depends on this abstraction (not the Redis client) so the
shared store can be faked in tests or replaced without touching the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterResult:
    """Outcome of one increment on a shared fixed-window counter.

    Attributes:
        count: Counter value after the increment.
        ttl_remaining_ms: Milliseconds until the window (and the key) expires.
    """

    count: int
    ttl_remaining_ms: int


@dataclass(frozen=True)
class FallbackResult:
    """Outcome of one increment on the in-process fallback table.

    Attributes:
        count: Entry count after the increment.
        remaining: Requests left in the window, never negative.
        reset_at_ms: Absolute epoch milliseconds at which the window ends.
    """

    count: int
    remaining: int
    reset_at_ms: int


class AbstractCounterStore(ABC):
    """Interface for distributed fixed-window counters."""

    @abstractmethod
    async def increment_and_check(self, key: str, window_ms: int) -> CounterResult:
        """Atomically increment ``key``, starting a window if it is new.

        Args:
            key: Fully namespaced counter key (``ratelimit:<client>``).
            window_ms: Window length applied when this call creates the key.

        Returns:
            CounterResult with the post-increment count and remaining TTL.

        Raises:
            StoreUnavailableError: If the store is unreachable, errors or times out.
        """
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers a health check."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
