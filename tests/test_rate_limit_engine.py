"""Unit tests for the rate limit policy engine."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeClock, FakeCounterStore, make_request
from gatekeeper.adapters.rate_limit.base import AbstractCounterStore
from gatekeeper.adapters.rate_limit.in_memory import InMemoryFallbackTable
from gatekeeper.core.config import Environment
from gatekeeper.core.errors import StoreUnavailableError
from gatekeeper.core.policies import RateLimitPolicy
from gatekeeper.core.rate_limit import Allow, RateLimitEngine, Reject, ServiceUnavailable


def _policy(limit: int = 5, window_ms: int = 60_000, **kwargs) -> RateLimitPolicy:
    return RateLimitPolicy(name="test", limit=limit, window_ms=window_ms, **kwargs)


def _failing_store() -> AsyncMock:
    store = AsyncMock(spec=AbstractCounterStore)
    store.increment_and_check.side_effect = StoreUnavailableError(
        code="store_error",
        message="Counter store error: ConnectionError",
    )
    return store


def _engine(store, fallback, environment=Environment.DEVELOPMENT, **kwargs) -> RateLimitEngine:
    return RateLimitEngine(
        store=store,
        fallback=fallback,
        environment=environment,
        policies={},
        **kwargs,
    )


class TestDistributedCounting:
    """Decisions backed by the shared store."""

    @pytest.mark.asyncio
    async def test_five_requests_then_reject(self, fake_store, fallback) -> None:
        engine = _engine(fake_store, fallback, Environment.PRODUCTION)
        policy = _policy(limit=5, message="Slow down")
        request = make_request({"user-agent": "curl/8.0"})

        decisions = [await engine.evaluate(request, policy) for _ in range(6)]

        assert all(isinstance(d, Allow) for d in decisions[:5])
        assert [d.headers["X-RateLimit-Remaining"] for d in decisions[:5]] == ["4", "3", "2", "1", "0"]

        rejected = decisions[5]
        assert isinstance(rejected, Reject)
        assert rejected.retry_after_seconds == 60
        assert rejected.message == "Slow down"
        assert rejected.headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": "60",
        }

    @pytest.mark.asyncio
    async def test_headers_on_third_of_ten(self, fake_store, fallback, clock: FakeClock) -> None:
        engine = _engine(fake_store, fallback)
        policy = _policy(limit=10, window_ms=60_000)
        request = make_request()

        await engine.evaluate(request, policy)
        clock.advance(1_500)
        await engine.evaluate(request, policy)
        decision = await engine.evaluate(request, policy)

        assert isinstance(decision, Allow)
        assert decision.headers["X-RateLimit-Remaining"] == "7"
        reset = int(decision.headers["X-RateLimit-Reset"])
        assert 0 < reset <= 60

    @pytest.mark.asyncio
    async def test_window_expiry_resets_count(self, fake_store, fallback, clock: FakeClock) -> None:
        engine = _engine(fake_store, fallback)
        policy = _policy(limit=2, window_ms=10_000)
        request = make_request()

        for _ in range(5):
            await engine.evaluate(request, policy)
        clock.advance(10_001)

        decision = await engine.evaluate(request, policy)

        assert isinstance(decision, Allow)
        assert decision.headers["X-RateLimit-Remaining"] == "1"

    @pytest.mark.asyncio
    async def test_counts_every_request_even_when_rejected(self, fake_store, fallback) -> None:
        engine = _engine(fake_store, fallback)
        policy = _policy(limit=1)
        request = make_request()

        for _ in range(4):
            await engine.evaluate(request, policy)

        assert fake_store.calls == 4
        assert len(fallback) == 0

    @pytest.mark.asyncio
    async def test_key_uses_forwarded_address_when_trusted(self, fallback) -> None:
        store = AsyncMock(spec=AbstractCounterStore)
        store.increment_and_check.return_value = MagicMock(count=1, ttl_remaining_ms=60_000)
        engine = _engine(store, fallback, trust_proxy=True)

        await engine.evaluate(
            make_request({"x-forwarded-for": "203.0.113.5, 10.0.0.1"}),
            _policy(),
        )

        store.increment_and_check.assert_awaited_once_with("ratelimit:203.0.113.5", 60_000)

    @pytest.mark.asyncio
    async def test_custom_key_generator(self, fallback) -> None:
        store = AsyncMock(spec=AbstractCounterStore)
        store.increment_and_check.return_value = MagicMock(count=1, ttl_remaining_ms=60_000)
        engine = _engine(store, fallback)
        policy = _policy(key_generator=lambda request: "user-42")

        await engine.evaluate(make_request(), policy)

        store.increment_and_check.assert_awaited_once_with("ratelimit:user-42", 60_000)


class TestSkip:
    """Skipped requests never touch a counter."""

    @pytest.mark.asyncio
    async def test_skip_bypasses_all_counting(self) -> None:
        store = AsyncMock(spec=AbstractCounterStore)
        fallback = MagicMock(spec=InMemoryFallbackTable)
        engine = _engine(store, fallback)
        policy = _policy(skip=lambda request: True)

        decision = await engine.evaluate(make_request(), policy)

        assert decision == Allow()
        assert decision.headers == {}
        store.increment_and_check.assert_not_called()
        fallback.increment_and_check.assert_not_called()


class TestStoreFailure:
    """Environment-aware failure policy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("environment", [Environment.PRODUCTION, Environment.STAGING])
    async def test_production_fails_closed(self, environment: Environment) -> None:
        fallback = MagicMock(spec=InMemoryFallbackTable)
        engine = _engine(_failing_store(), fallback, environment)

        decision = await engine.evaluate(make_request(), _policy())

        assert isinstance(decision, ServiceUnavailable)
        fallback.increment_and_check.assert_not_called()

    @pytest.mark.asyncio
    async def test_development_falls_back_and_enforces_limit(self, fallback, caplog) -> None:
        engine = _engine(_failing_store(), fallback, Environment.DEVELOPMENT)
        policy = _policy(limit=3)
        request = make_request()

        with caplog.at_level(logging.WARNING, logger="gatekeeper.core.rate_limit"):
            decisions = [await engine.evaluate(request, policy) for _ in range(4)]

        assert [type(d) for d in decisions] == [Allow, Allow, Allow, Reject]
        assert [d.headers["X-RateLimit-Remaining"] for d in decisions] == ["2", "1", "0", "0"]
        assert decisions[3].retry_after_seconds == 60
        assert any(r.getMessage() == "rate_limit.fallback" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_fallback_window_expiry(self, fallback, clock: FakeClock) -> None:
        engine = _engine(_failing_store(), fallback, Environment.TESTING)
        policy = _policy(limit=1, window_ms=5_000)
        request = make_request()

        assert isinstance(await engine.evaluate(request, policy), Allow)
        assert isinstance(await engine.evaluate(request, policy), Reject)

        clock.advance(5_001)

        decision = await engine.evaluate(request, policy)
        assert isinstance(decision, Allow)
        assert decision.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_fallback_can_be_disabled_outside_production(self) -> None:
        fallback = MagicMock(spec=InMemoryFallbackTable)
        engine = _engine(
            _failing_store(),
            fallback,
            Environment.DEVELOPMENT,
            fallback_on_store_error=False,
        )

        decision = await engine.evaluate(make_request(), _policy())

        assert isinstance(decision, ServiceUnavailable)
        fallback.increment_and_check.assert_not_called()


class TestWithoutStore:
    """No Redis configured at all."""

    @pytest.mark.asyncio
    async def test_counts_in_process(self, fallback) -> None:
        engine = _engine(None, fallback, Environment.PRODUCTION)
        policy = _policy(limit=2)
        request = make_request()

        decisions = [await engine.evaluate(request, policy) for _ in range(3)]

        assert [type(d) for d in decisions] == [Allow, Allow, Reject]

    def test_production_without_store_logs_error(self, fallback, caplog) -> None:
        with caplog.at_level(logging.ERROR, logger="gatekeeper.core.rate_limit"):
            _engine(None, fallback, Environment.PRODUCTION)

        assert any(r.getMessage() == "rate_limit.store_not_configured" for r in caplog.records)


class TestLifecycle:
    """Registry lookup and shutdown."""

    def test_policy_lookup(self, fallback) -> None:
        engine = RateLimitEngine(store=None, fallback=fallback, environment=Environment.PRODUCTION)

        assert engine.policy("auth").limit == 30
        with pytest.raises(KeyError):
            engine.policy("missing")

    @pytest.mark.asyncio
    async def test_close_stops_fallback_and_store(self, clock: FakeClock) -> None:
        store = FakeCounterStore(clock)
        fallback = MagicMock(spec=InMemoryFallbackTable)
        engine = _engine(store, fallback)

        await engine.close()

        assert store.closed is True
        fallback.close.assert_called_once()
