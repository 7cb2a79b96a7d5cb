from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated instances with their own engine.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from gatekeeper.api.routes import health_router, limits_router
from gatekeeper.core.config import settings
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import request_id_middleware
from gatekeeper.core.openapi import apply_openapi_customizations
from gatekeeper.core.rate_limit import RateLimitEngine, build_rate_limit_engine

logger = logging.getLogger(__name__)


def create_app(engine_factory: Callable[[], RateLimitEngine] | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        engine_factory: Builds the rate limit engine at startup. Defaults to
            ``build_rate_limit_engine`` driven by the global settings.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    factory = engine_factory or build_rate_limit_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = factory()
        app.state.rate_limit_engine = engine
        logger.info(
            "rate_limit.engine_started",
            extra={
                "environment": engine.environment.value,
                "distributed": engine.store is not None,
                "policies": sorted(engine.policies),
            },
        )
        try:
            yield
        finally:
            await engine.close()
            logger.info("rate_limit.engine_stopped")

    app = FastAPI(
        title="Gatekeeper",
        description=(
            "Distributed fixed-window rate limiting backed by Redis, with an "
            "in-process fallback outside production."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
