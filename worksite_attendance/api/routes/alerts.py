from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from worksite_attendance.api.deps import STAFF_ROLES, db_session, require_roles
from worksite_attendance.schemas.alert import AlertResponse
from worksite_attendance.schemas.auth import CurrentPrincipal
from worksite_attendance.services.alerts import list_alerts, mark_alert_read, resolve_alert

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=list[AlertResponse])
def get_alerts(
    severity: str | None = None,
    is_read: bool | None = Query(default=None, alias="isRead"),
    alert_type: str | None = Query(default=None, alias="type"),
    limit: int = 200,
    _principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES)),
    db: Session = db_session(),
):
    return list_alerts(db, severity=severity, is_read=is_read, alert_type=alert_type, limit=limit)


@router.post("/{alert_id}/read", response_model=AlertResponse)
def read_alert(
    alert_id: int,
    _principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES)),
    db: Session = db_session(),
):
    row = mark_alert_read(db, alert_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found.")
    return row


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
def close_alert(
    alert_id: int,
    _principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES)),
    db: Session = db_session(),
):
    row = resolve_alert(db, alert_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found.")
    return row
