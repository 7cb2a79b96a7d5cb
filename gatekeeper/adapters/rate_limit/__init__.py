"""Rate limiting storage adapters.

Redis provides the shared counters every replica agrees on; the in-process
table only stands in for it outside production.
"""

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterResult, FallbackResult
from gatekeeper.adapters.rate_limit.in_memory import InMemoryFallbackTable
from gatekeeper.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterResult",
    "FallbackResult",
    "InMemoryFallbackTable",
    "RedisCounterStore",
]
