"""Admission control dependency for FastAPI routes.

This module wires the admission controller into the HTTP layer.

Design goals:
- Minimal coupling: routes opt in with ``Depends(enforce_admission)``.
- One check per request, before the handler runs; handlers never execute
  on a rejection.
- The controller is built once in the app lifespan and read from
  ``app.state``, never from a module global.

Admission strategy:
- One global counter per route path, shared by every caller.
- Counters never reset on their own (no time windows).
"""

from __future__ import annotations

from fastapi import Request

from quota_gate.adapters.counters.base import Decision
from quota_gate.core.errors import ConfigurationAppError, QuotaExceededAppError, UnknownRouteAppError
from quota_gate.services.admission_service import AdmissionController


def get_admission_controller(request: Request) -> AdmissionController:
    """Return the controller built during application startup.

    Raises:
        ConfigurationAppError: If the app was started without one.
    """
    controller = getattr(request.app.state, "admission_controller", None)
    if controller is None:
        raise ConfigurationAppError(
            code="admission_not_ready",
            message="Admission controller has not been initialised.",
        )
    return controller


async def enforce_admission(request: Request) -> None:
    """FastAPI dependency enforcing per-route quotas.

    Counts the request against the quota of ``request.url.path``.

    Args:
        request: FastAPI request.

    Raises:
        UnknownRouteAppError: The path has no configured quota (HTTP 400).
        QuotaExceededAppError: The path's quota is exhausted (HTTP 429).
        StoreTransportAppError: Shared store failure (HTTP 503).
    """
    controller = get_admission_controller(request)
    route_path = request.url.path

    decision = await controller.admit(route_path)
    if decision is Decision.ALLOW:
        return
    if decision is Decision.REJECT_UNKNOWN_ROUTE:
        raise UnknownRouteAppError.for_route(route_path)
    raise QuotaExceededAppError.for_route(route_path, controller.quota_for(route_path) or 0)
