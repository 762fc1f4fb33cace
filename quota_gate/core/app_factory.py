"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the admission controller lifecycle) so tests can build isolated apps with
their own quota tables and store clients.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from redis.asyncio import Redis

from quota_gate.api.routes import admission_router, health_router, root_router
from quota_gate.core.config import AdmissionSettings, settings
from quota_gate.core.exception_handlers import setup_exception_handlers
from quota_gate.core.logging import configure_logging
from quota_gate.core.middleware import request_id_middleware
from quota_gate.core.openapi import apply_openapi_customizations
from quota_gate.services.admission_service import build_admission_controller


def create_app(
    admission_settings: AdmissionSettings | None = None,
    *,
    store_client: Redis | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    The admission controller is built in the lifespan, before the first
    request is served. A configuration or store failure there aborts
    startup.

    Args:
        admission_settings: Admission configuration; defaults to global settings.
        store_client: Optional Redis client used in shared mode.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    cfg = admission_settings or settings.admission

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        controller = await build_admission_controller(cfg, store_client=store_client)
        app.state.admission_controller = controller
        try:
            yield
        finally:
            app.state.admission_controller = None
            await controller.close()

    app = FastAPI(
        title=settings.app.name,
        description=(
            "Read-only query API guarded by per-route request quotas. Each route "
            "admits a fixed number of requests, counted either in process memory "
            "or in a Redis instance shared by every replica."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(root_router)
    app.include_router(admission_router)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
