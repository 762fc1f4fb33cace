"""OpenAPI metadata and customization utilities.

Provides:
- ``ADMISSION_RESPONSES``: documented rejection responses for any route
  guarded by ``enforce_admission``
- A helper adding tags metadata to the generated schema

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from quota_gate.schemas.admission import ErrorResponse

ADMISSION_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Route path not configured for admission."},
    429: {"model": ErrorResponse, "description": "Route path has reached its request limit."},
    503: {"model": ErrorResponse, "description": "Counter store unavailable; try again."},
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags metadata."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Queries",
                "description": "Read-only endpoints subject to per-route quotas.",
            },
            {
                "name": "Admission",
                "description": "Inspection of route counters. Never counted against a quota.",
            },
            {
                "name": "Health",
                "description": "Liveness check.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
