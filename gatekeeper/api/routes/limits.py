from __future__ import annotations

from fastapi import APIRouter, Depends

from gatekeeper.core.rate_limit import RateLimitEngine, get_rate_limit_engine, rate_limit
from gatekeeper.schemas.limits import LimitsResponse, PolicyInfo

router = APIRouter(tags=["Limits"])


@router.get(
    "/limits",
    response_model=LimitsResponse,
    dependencies=[Depends(rate_limit("general"))],
)
async def list_limits(engine: RateLimitEngine = Depends(get_rate_limit_engine)) -> LimitsResponse:
    """List the policies active in this environment.

    Lets operators audit the effective limits without reading configuration.
    The endpoint itself is protected by the ``general`` policy.
    """

    return LimitsResponse(
        environment=engine.environment.value,
        distributed=engine.store is not None,
        policies=[
            PolicyInfo(
                name=policy.name,
                limit=policy.limit,
                window_ms=policy.window_ms,
                window_seconds=policy.window_seconds,
                message=policy.message,
            )
            for policy in engine.policies.values()
        ],
    )
