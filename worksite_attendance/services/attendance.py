from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from worksite_attendance.core.exceptions import AlreadyCheckedOutToday, StorageError
from worksite_attendance.db.models import Attendance

logger = logging.getLogger("worksite.attendance")

CHECK_IN = "check-in"
CHECK_OUT = "check-out"

SCORE_COLUMNS = {
    "face": "face_recognition_score",
    "fingerprint": "fingerprint_match_score",
}


class AttendanceState(Protocol):
    check_in_time: datetime | None
    check_out_time: datetime | None


@dataclass(frozen=True)
class AttendanceTransition:
    action: str
    check_in_time: datetime
    check_out_time: datetime | None
    hours_worked: float | None


@dataclass
class AttendanceEntry:
    worker_id: int
    site_id: int | None
    method: str
    match_score: float | None
    location: str | None = None
    scanner_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    distance_meters: float | None = None
    gps_verified: bool = False


@dataclass
class RecordedAttendance:
    record: Attendance
    transition: AttendanceTransition


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    return round((as_utc(end) - as_utc(start)).total_seconds() / 3600.0, 2)


def resolve_transition(existing: AttendanceState | None, now: datetime) -> AttendanceTransition:
    """Decide what a verified event means given today's record for the worker.

    No record (or a record never checked in) is a check-in. A record with a
    check-in and no check-out is a check-out. Anything else is a third event
    for the day and is rejected.
    """
    if existing is None or existing.check_in_time is None:
        return AttendanceTransition(action=CHECK_IN, check_in_time=now, check_out_time=None, hours_worked=None)
    if existing.check_out_time is None:
        check_in = as_utc(existing.check_in_time)
        # A late-arriving earlier event never closes the day before it opened.
        check_out = max(as_utc(now), check_in)
        return AttendanceTransition(
            action=CHECK_OUT,
            check_in_time=check_in,
            check_out_time=check_out,
            hours_worked=hours_between(check_in, check_out),
        )
    raise AlreadyCheckedOutToday()


class AttendanceRecorder:
    """Runs load-decide-write for one verified event as a single atomic unit.

    Check-ins rely on the (worker_id, date) unique constraint, check-outs on a
    conditional UPDATE. Losing either race rolls back and re-decides.
    """

    max_attempts = 3

    def __init__(self, timezone_name: str = "UTC") -> None:
        self.tz = timezone.utc if timezone_name.upper() == "UTC" else ZoneInfo(timezone_name)

    def today(self, now: datetime) -> date:
        return as_utc(now).astimezone(self.tz).date()

    def record(self, db: Session, entry: AttendanceEntry, now: datetime) -> RecordedAttendance:
        day = self.today(now)
        for attempt in range(1, self.max_attempts + 1):
            try:
                existing = db.scalar(
                    select(Attendance)
                    .where(Attendance.worker_id == entry.worker_id, Attendance.date == day)
                    .with_for_update()
                )
                transition = resolve_transition(existing, now)
                if transition.action == CHECK_IN:
                    row = self._check_in(db, existing, entry, day, now)
                else:
                    row = self._check_out(db, existing, entry, transition.check_out_time)
                if row is None:
                    db.rollback()
                    logger.info("Attendance for worker %s changed concurrently (attempt %d)", entry.worker_id, attempt)
                    continue
                db.commit()
                return RecordedAttendance(record=row, transition=transition)
            except AlreadyCheckedOutToday:
                db.rollback()
                raise
            except IntegrityError:
                db.rollback()
                logger.info("Concurrent check-in for worker %s on %s (attempt %d)", entry.worker_id, day, attempt)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Failed to record attendance for worker %s", entry.worker_id)
                raise StorageError() from exc

        logger.error("Gave up recording attendance for worker %s after %d attempts", entry.worker_id, self.max_attempts)
        raise StorageError()

    def _values(self, entry: AttendanceEntry, action: str) -> dict[str, Any]:
        values: dict[str, Any] = {
            "attendance_method": entry.method,
            "notes": f"{entry.method.capitalize()} {action}" + (f" via {entry.scanner_id}" if entry.scanner_id else ""),
        }
        column = SCORE_COLUMNS.get(entry.method)
        if column is not None:
            values[column] = entry.match_score
        return values

    def _check_in(
        self,
        db: Session,
        existing: Attendance | None,
        entry: AttendanceEntry,
        day: date,
        now: datetime,
    ) -> Attendance | None:
        values = self._values(entry, CHECK_IN)
        values.update(
            site_id=entry.site_id,
            check_in_time=now,
            check_out_time=None,
            status="present",
            location=entry.location,
            scanner_id=entry.scanner_id,
            latitude=entry.latitude,
            longitude=entry.longitude,
            distance_meters=entry.distance_meters,
            gps_verified=entry.gps_verified,
        )
        if existing is None:
            row = Attendance(worker_id=entry.worker_id, date=day, **values)
            db.add(row)
            db.flush()
            return row

        # A pre-created row (e.g. marked absent by a supervisor) is filled in place.
        result = db.execute(
            update(Attendance)
            .where(Attendance.id == existing.id, Attendance.check_in_time.is_(None))
            .values(**values),
            execution_options={"synchronize_session": False},
        )
        return existing if result.rowcount == 1 else None

    def _check_out(
        self,
        db: Session,
        existing: Attendance,
        entry: AttendanceEntry,
        check_out_time: datetime,
    ) -> Attendance | None:
        values = self._values(entry, CHECK_OUT)
        values["check_out_time"] = check_out_time
        result = db.execute(
            update(Attendance)
            .where(Attendance.id == existing.id, Attendance.check_out_time.is_(None))
            .values(**values),
            execution_options={"synchronize_session": False},
        )
        return existing if result.rowcount == 1 else None
