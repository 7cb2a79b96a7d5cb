"""OpenAPI customization utilities.

Enriches the generated schema with:
- Tags metadata
- The 429 and 503 responses every rate limited operation can return

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": {"schema": {"type": "integer"}, "description": "Requests allowed per window"},
    "X-RateLimit-Remaining": {"schema": {"type": "integer"}, "description": "Requests left in the window"},
    "X-RateLimit-Reset": {"schema": {"type": "integer"}, "description": "Seconds until the window resets"},
}

_THROTTLED_RESPONSE = {
    "description": "Rate limit exceeded",
    "headers": {
        **_RATE_LIMIT_HEADERS,
        "Retry-After": {"schema": {"type": "integer"}, "description": "Seconds to wait before retrying"},
    },
    "content": {
        "application/json": {
            "example": {
                "error": "Rate limit exceeded",
                "message": "Too many requests, please try again later",
                "retryAfter": 60,
            }
        }
    },
}

_UNAVAILABLE_RESPONSE = {
    "description": "Rate limiting service is unavailable",
    "content": {
        "application/json": {
            "example": {
                "error": "Service temporarily unavailable",
                "message": "Rate limiting service is unavailable. Please try again later.",
            }
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and throttling responses.

    Every operation outside ``/health`` is documented with 429 and 503,
    since those are the paths that carry a rate limit dependency.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Limits",
                "description": "Inspection of the active rate limit policies.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks (never rate limited).",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if path.startswith("/health"):
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    responses = method_obj.setdefault("responses", {})
                    responses.setdefault("429", _THROTTLED_RESPONSE)
                    responses.setdefault("503", _UNAVAILABLE_RESPONSE)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
