from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from worksite_attendance.api.deps import STAFF_ROLES, db_session, require_roles
from worksite_attendance.db.models import Attendance, Worker
from worksite_attendance.schemas.attendance import AttendanceResponse
from worksite_attendance.schemas.auth import CurrentPrincipal

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.get("", response_model=list[AttendanceResponse])
def list_attendance(
    worker_id: int | None = Query(default=None, alias="workerId"),
    date_from: dt.date | None = Query(default=None, alias="from"),
    date_to: dt.date | None = Query(default=None, alias="to"),
    limit: int = 200,
    principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES, "worker")),
    db: Session = db_session(),
):
    query = select(Attendance)
    if principal.role == "worker":
        query = query.join(Worker, Attendance.worker_id == Worker.id).where(Worker.user_id == int(principal.subject))
    if worker_id is not None:
        query = query.where(Attendance.worker_id == worker_id)
    if date_from is not None:
        query = query.where(Attendance.date >= date_from)
    if date_to is not None:
        query = query.where(Attendance.date <= date_to)
    query = query.order_by(desc(Attendance.date), desc(Attendance.id)).limit(max(1, min(1000, limit)))
    return db.scalars(query).all()
