"""Tests for environment-driven settings."""

import pytest

from gatekeeper.adapters.rate_limit.redis_store import RedisCounterStore
from gatekeeper.core.config import (
    AppSettings,
    Environment,
    RateLimitSettings,
    RedisSettings,
    Settings,
)
from gatekeeper.core.rate_limit import build_rate_limit_engine


class TestEnvironment:
    """Environment classification used by the failure policy and registry."""

    @pytest.mark.parametrize(
        "environment,production_like,development",
        [
            (Environment.DEVELOPMENT, False, True),
            (Environment.TESTING, False, False),
            (Environment.STAGING, True, False),
            (Environment.PRODUCTION, True, False),
        ],
    )
    def test_classification(self, environment, production_like, development) -> None:
        assert environment.is_production_like is production_like
        assert environment.is_development is development


class TestSettingsFromEnv:
    """Values read from environment variables."""

    def test_app_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("APP_TRUST_PROXY", "true")

        app_settings = AppSettings()

        assert app_settings.env is Environment.PRODUCTION
        assert app_settings.trust_proxy is True

    def test_rate_limit_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("RATE_LIMIT_FALLBACK_ON_STORE_ERROR", "false")
        monkeypatch.setenv("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "30")

        rate_limit_settings = RateLimitSettings()

        assert rate_limit_settings.fallback_on_store_error is False
        assert rate_limit_settings.sweep_interval_seconds == 30.0

    def test_redis_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("REDIS_URL", raising=False)

        redis_settings = RedisSettings()

        assert redis_settings.url is None
        assert redis_settings.operation_timeout_seconds == 2.0


class TestBuildEngine:
    """Engine assembly from settings."""

    @pytest.mark.asyncio
    async def test_without_redis_url(self, monkeypatch) -> None:
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("APP_ENV", "development")

        engine = build_rate_limit_engine(Settings())
        try:
            assert engine.store is None
            assert engine.environment is Environment.DEVELOPMENT
            assert engine.policy("auth").limit == 50
            assert engine.enabled is True
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_with_redis_url(self, monkeypatch) -> None:
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
        monkeypatch.setenv("APP_ENV", "production")

        engine = build_rate_limit_engine(Settings())
        try:
            assert isinstance(engine.store, RedisCounterStore)
            assert engine.policy("auth").limit == 30
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_disabled_by_settings(self, monkeypatch) -> None:
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")

        engine = build_rate_limit_engine(Settings())
        try:
            assert engine.enabled is False
        finally:
            await engine.close()
