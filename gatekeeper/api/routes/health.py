from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response, status

from gatekeeper.core.rate_limit import RateLimitEngine, get_rate_limit_engine

router = APIRouter(tags=["Health"])


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Never rate limited: the ``general`` policy skips ``/health`` paths.

    Returns:
        dict: ``{"status": "ok"}``.
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
) -> dict:
    """Readiness check reporting the shared counter store.

    Answers 503 when Redis is configured but does not answer a PING, so a
    load balancer can drain replicas that would otherwise fail closed.
    """

    if engine.store is None:
        return {"status": "ok", "timestamp": _timestamp(), "redis": "not_configured"}

    if await engine.store.ping():
        return {"status": "ok", "timestamp": _timestamp(), "redis": "connected"}

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "error", "timestamp": _timestamp(), "redis": "disconnected"}
