"""Pydantic schemas for admission status and error responses."""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field


class RouteQuotaStatus(BaseModel):
    """Counter state of one configured route."""

    route: str = Field(..., description="Route path as configured in the quota table.")
    limit: int = Field(..., description="Maximum number of admitted requests.")
    count: int | None = Field(
        default=None,
        description="Requests admitted so far (null if the store has no counter for the route).",
    )
    remaining: int | None = Field(
        default=None,
        description="Requests still admissible before rejection starts.",
    )


class AdmissionStatusResponse(BaseModel):
    """Snapshot of all route counters."""

    mode: str = Field(..., description="Counting mode: 'local' or 'shared'.")
    routes: list[RouteQuotaStatus] = Field(default_factory=list)


class ErrorBody(BaseModel):
    code: str
    message: str
    status_code: int
    request_id: str | None = None
    details: Dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Envelope used by every error response."""

    error: ErrorBody
