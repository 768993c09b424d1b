from __future__ import annotations

import datetime as dt

from .base import CamelModel


class AttendanceResponse(CamelModel):
    id: int
    worker_id: int
    site_id: int | None = None
    date: dt.date
    check_in_time: dt.datetime | None = None
    check_out_time: dt.datetime | None = None
    status: str
    location: str | None = None
    attendance_method: str | None = None
    face_recognition_score: float | None = None
    fingerprint_match_score: float | None = None
    gps_verified: bool = False
    distance_meters: float | None = None
