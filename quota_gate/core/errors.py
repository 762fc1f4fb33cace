"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Taxonomy:
- ConfigurationAppError: fatal, raised while building the admission
  controller; the process must not start serving.
- UnknownRouteAppError / QuotaExceededAppError: expected per-request
  rejections, never retried and never treated as faults.
- StoreTransportAppError: the shared counter store failed or timed out, so
  the quota status of the request is unknown.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error can carry only what is relevant.
    """

    route: str
    limit: int
    mode: str
    operation: str
    error_type: str


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when admission configuration is invalid or the store is unreachable at startup."""


class UnknownRouteAppError(AppError):
    """Raised when a request targets a route absent from the quota table."""

    @classmethod
    def for_route(cls, route_path: str) -> "UnknownRouteAppError":
        return cls(
            code="route_not_configured",
            message=f"Route path {route_path} not configured.",
            details={"route": route_path},
        )


class QuotaExceededAppError(AppError):
    """Raised when a route's counter has reached its configured quota."""

    @classmethod
    def for_route(cls, route_path: str, limit: int) -> "QuotaExceededAppError":
        return cls(
            code="quota_exceeded",
            message=f"Route path {route_path} has reached its request limit.",
            details={"route": route_path, "limit": limit},
        )


class StoreTransportAppError(AppError):
    """Raised when the shared counter store cannot be reached or times out."""
