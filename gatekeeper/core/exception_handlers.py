"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError → 429 with the flat throttling body and Retry-After
- RateLimitUnavailableError → 503 with a distinct body and no rate limit headers
- Other AppError subclasses → 400 with {"error": {...}}
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from gatekeeper.core.errors import (
    AppError,
    ConfigurationAppError,
    RateLimitExceededError,
    RateLimitUnavailableError,
)
from gatekeeper.core.logging import get_request_id

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a throttled request.

    Body: ``{"error": "Rate limit exceeded", "message": ..., "retryAfter": n}``
    with the X-RateLimit-* headers and ``Retry-After: n``.
    """
    decision = exc.decision
    headers = dict(decision.headers)
    headers["Retry-After"] = str(decision.retry_after_seconds)

    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "message": decision.message,
            "retryAfter": decision.retry_after_seconds,
        },
        headers=headers,
    )


async def rate_limit_unavailable_handler(
    request: Request, exc: RateLimitUnavailableError
) -> JSONResponse:
    """Render a fail-closed decision so operators can tell it from throttling."""
    logger.warning(
        "rate_limit.fail_closed",
        extra={
            "request_path": request.url.path,
            "request_id": get_request_id(),
        },
    )
    return JSONResponse(
        status_code=503,
        content={
            "error": "Service temporarily unavailable",
            "message": exc.message,
        },
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle remaining domain errors with the ``{"error": {...}}`` envelope.

    ConfigurationAppError is a server-side fault (500); everything else is
    treated as a client error (400).
    """
    status_code = 500 if isinstance(exc, ConfigurationAppError) else 400

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors; no internals reach the client."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    rate limit handlers win over the generic AppError one.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(RateLimitUnavailableError)(rate_limit_unavailable_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
