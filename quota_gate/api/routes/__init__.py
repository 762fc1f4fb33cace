from __future__ import annotations

from quota_gate.api.routes.admission import router as admission_router
from quota_gate.api.routes.health import router as health_router
from quota_gate.api.routes.root import router as root_router

__all__ = ["admission_router", "health_router", "root_router"]
