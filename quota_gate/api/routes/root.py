from __future__ import annotations

from fastapi import APIRouter, Depends

from quota_gate.core.admission import enforce_admission
from quota_gate.core.openapi import ADMISSION_RESPONSES

router = APIRouter(tags=["Queries"])


@router.get(
    "/",
    dependencies=[Depends(enforce_admission)],
    responses=ADMISSION_RESPONSES,
)
def welcome() -> dict:
    """Landing endpoint, admitted up to its configured quota."""

    return {"message": "Welcome to EQ Works"}
