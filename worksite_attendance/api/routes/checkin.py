from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from worksite_attendance.api.deps import (
    ALL_ROLES,
    db_session,
    ensure_worker_access,
    get_orchestrator,
    require_roles,
)
from worksite_attendance.schemas.auth import CurrentPrincipal
from worksite_attendance.schemas.checkin import CheckinRequest, CheckinResponse
from worksite_attendance.services.checkin import CheckinOrchestrator, build_response
from worksite_attendance.ws.manager import ws_manager

router = APIRouter(tags=["checkin"])


@router.post("/checkin", response_model=CheckinResponse)
async def check_in(
    payload: CheckinRequest,
    principal: CurrentPrincipal = Depends(require_roles(*ALL_ROLES)),
    db: Session = db_session(),
    orchestrator: CheckinOrchestrator = Depends(get_orchestrator),
):
    if payload.worker_id is not None:
        await run_in_threadpool(ensure_worker_access, db, principal, payload.worker_id)

    try:
        result = await run_in_threadpool(orchestrator.check_in, db, payload)
    finally:
        # Alerts are pushed even when the check-in itself is rejected.
        for alert in orchestrator.alerts.emitted:
            await ws_manager.publish("alert", alert)

    response = await run_in_threadpool(build_response, result)
    await ws_manager.publish("attendance", response.model_dump(mode="json", by_alias=True))
    return response
