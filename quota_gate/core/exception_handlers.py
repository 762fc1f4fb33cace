"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- UnknownRouteAppError → 400 (route not in the quota table)
- QuotaExceededAppError → 429 (route quota exhausted)
- StoreTransportAppError → 503 with Retry-After (quota status unknown)
- Other AppError → 500
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from quota_gate.core.errors import (
    AppError,
    QuotaExceededAppError,
    StoreTransportAppError,
    UnknownRouteAppError,
)
from quota_gate.core.logging import get_request_id

logger = logging.getLogger(__name__)

STORE_RETRY_AFTER_SECONDS = 1


def _request_id(request: Request) -> str | None:
    return get_request_id() or getattr(request.state, "request_id", None)


def status_code_for(exc: AppError) -> int:
    """Resolve the HTTP status code for a domain error."""
    if isinstance(exc, UnknownRouteAppError):
        return 400
    if isinstance(exc, QuotaExceededAppError):
        return 429
    if isinstance(exc, StoreTransportAppError):
        return 503
    return 500


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message naming the route when relevant
    - error.status_code: Same value as the HTTP status, for clients that
      only look at the body
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status_code_for(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": _request_id(request),
        }
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "status_code": status_code,
        "request_id": _request_id(request),
    }

    if exc.details:
        error_content["details"] = exc.details

    headers: dict[str, str] | None = None
    if isinstance(exc, StoreTransportAppError):
        headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)}

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces reach the client.

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": _request_id(request),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": _request_id(request),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
