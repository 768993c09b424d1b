from __future__ import annotations

import datetime as dt
from typing import Any

from .base import CamelModel


class CheckinRequest(CamelModel):
    method: str | None = None
    worker_id: int | None = None
    credential: dict[str, Any] | None = None
    challenge: str | None = None
    # validated by the face strategy, not here
    face_descriptor: list[Any] | None = None
    latitude: float | None = None
    longitude: float | None = None
    scanner_id: str | None = None


class WorkerInfo(CamelModel):
    id: int
    name: str
    group: str | None = None
    location: str | None = None


class GpsInfo(CamelModel):
    verified: bool
    distance_meters: float | None = None
    geofence_radius: float


class AttendanceInfo(CamelModel):
    date: dt.date
    check_in_time: dt.datetime | None = None
    check_out_time: dt.datetime | None = None
    hours_worked: float | None = None
    method: str
    match_score: float | None = None


class CheckinResponse(CamelModel):
    success: bool = True
    action: str
    method: str
    worker: WorkerInfo
    gps: GpsInfo
    attendance: AttendanceInfo
    timestamp: dt.datetime
