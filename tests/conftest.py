"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any gatekeeper import so the global
settings object never picks up a developer's .env file or a live Redis.
"""

from __future__ import annotations

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi import Request

from gatekeeper.adapters.rate_limit.base import AbstractCounterStore, CounterResult
from gatekeeper.adapters.rate_limit.in_memory import InMemoryFallbackTable


class FakeClock:
    """Deterministic millisecond clock used to test window expiry."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.current = start_ms

    def __call__(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


class FakeCounterStore(AbstractCounterStore):
    """Redis stand-in with the same fixed-window semantics as the Lua script."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.counters: dict[str, list[int]] = {}
        self.calls = 0
        self.healthy = True
        self.closed = False

    async def increment_and_check(self, key: str, window_ms: int) -> CounterResult:
        self.calls += 1
        now = self._clock()
        entry = self.counters.get(key)
        if entry is None or entry[1] <= now:
            entry = [0, now + window_ms]
            self.counters[key] = entry
        entry[0] += 1
        return CounterResult(count=entry[0], ttl_remaining_ms=entry[1] - now)

    async def ping(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


def make_request(headers: dict[str, str] | None = None, path: str = "/v1/resource") -> Request:
    """Build a bare Starlette request carrying ``headers``."""

    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    return Request(
        {
            "type": "http",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "root_path": "",
            "query_string": b"",
            "headers": raw_headers,
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_store(clock: FakeClock) -> FakeCounterStore:
    return FakeCounterStore(clock)


@pytest.fixture
def fallback(clock: FakeClock):
    table = InMemoryFallbackTable(sweep_interval_seconds=None, clock=clock)
    yield table
    table.close()
