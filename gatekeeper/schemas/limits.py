from __future__ import annotations

from pydantic import BaseModel, Field


class PolicyInfo(BaseModel):
    """Public view of one configured rate limit policy."""

    name: str = Field(..., description="Registry name of the policy")
    limit: int = Field(..., ge=1, description="Requests allowed per window")
    window_ms: int = Field(..., ge=1, description="Window length in milliseconds")
    window_seconds: int = Field(..., ge=1, description="Window length rounded up to seconds")
    message: str = Field(..., description="Message returned when the limit is exceeded")


class LimitsResponse(BaseModel):
    """Response for the policy listing endpoint."""

    environment: str = Field(..., description="Deployment environment the limits were built for")
    distributed: bool = Field(..., description="Whether counters are shared through Redis")
    policies: list[PolicyInfo]
