from __future__ import annotations

from fastapi import APIRouter, Depends

from quota_gate.core.admission import get_admission_controller
from quota_gate.schemas.admission import AdmissionStatusResponse, ErrorResponse, RouteQuotaStatus
from quota_gate.services.admission_service import AdmissionController

router = APIRouter(prefix="/admission", tags=["Admission"])


@router.get(
    "/status",
    response_model=AdmissionStatusResponse,
    responses={503: {"model": ErrorResponse, "description": "Counter store unavailable."}},
)
async def admission_status(
    controller: AdmissionController = Depends(get_admission_controller),
) -> AdmissionStatusResponse:
    """Report the counting mode and the current count of every configured route.

    Reading the status never counts against any quota.
    """

    counts = await controller.snapshot()
    routes = []
    for route, count in counts.items():
        limit = controller.quota_for(route) or 0
        remaining = None if count is None else max(0, limit - count)
        routes.append(RouteQuotaStatus(route=route, limit=limit, count=count, remaining=remaining))
    return AdmissionStatusResponse(mode=controller.mode, routes=routes)
