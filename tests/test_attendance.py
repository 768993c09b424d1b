import threading
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from worksite_attendance.core.exceptions import AlreadyCheckedOutToday
from worksite_attendance.db.models import Attendance
from worksite_attendance.db.session import SessionLocal
from worksite_attendance.services.attendance import (
    CHECK_IN,
    CHECK_OUT,
    AttendanceEntry,
    AttendanceRecorder,
    resolve_transition,
)

NOW = datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)


def _entry(seeded, method="face", score=83.0):
    return AttendanceEntry(
        worker_id=seeded.worker.id,
        site_id=seeded.site.id if seeded.site else None,
        method=method,
        match_score=score,
        location="Pier 17, New York",
        latitude=40.7129,
        longitude=-74.0061,
        distance_meters=13.9,
        gps_verified=True,
    )


def test_no_record_resolves_to_check_in():
    transition = resolve_transition(None, NOW)
    assert transition.action == CHECK_IN
    assert transition.check_in_time == NOW
    assert transition.check_out_time is None
    assert transition.hours_worked is None


def test_open_record_resolves_to_check_out():
    existing = SimpleNamespace(check_in_time=NOW, check_out_time=None)
    later = NOW + timedelta(hours=8, minutes=30)
    transition = resolve_transition(existing, later)
    assert transition.action == CHECK_OUT
    assert transition.check_in_time == NOW
    assert transition.check_out_time == later
    assert transition.hours_worked == 8.5


def test_naive_check_in_is_read_as_utc():
    existing = SimpleNamespace(check_in_time=NOW.replace(tzinfo=None), check_out_time=None)
    transition = resolve_transition(existing, NOW + timedelta(minutes=90))
    assert transition.hours_worked == 1.5


def test_check_out_before_check_in_is_clamped():
    existing = SimpleNamespace(check_in_time=NOW, check_out_time=None)
    transition = resolve_transition(existing, NOW - timedelta(minutes=2))
    assert transition.action == CHECK_OUT
    assert transition.check_out_time == NOW
    assert transition.hours_worked == 0.0


def test_third_event_is_rejected():
    existing = SimpleNamespace(check_in_time=NOW, check_out_time=NOW + timedelta(hours=1))
    with pytest.raises(AlreadyCheckedOutToday):
        resolve_transition(existing, NOW + timedelta(hours=2))


def test_row_without_check_in_resolves_to_check_in():
    existing = SimpleNamespace(check_in_time=None, check_out_time=None)
    assert resolve_transition(existing, NOW).action == CHECK_IN


def test_today_follows_configured_timezone():
    late_evening = datetime(2024, 3, 4, 20, 0, tzinfo=timezone.utc)
    assert AttendanceRecorder("UTC").today(late_evening) == date(2024, 3, 4)
    assert AttendanceRecorder("Asia/Tokyo").today(late_evening) == date(2024, 3, 5)


def test_recorder_checks_in_then_out_then_rejects(db, seed):
    seeded = seed.worker(site=seed.site(), face=True)
    recorder = AttendanceRecorder()

    first = recorder.record(db, _entry(seeded), NOW)
    assert first.transition.action == CHECK_IN
    assert first.record.face_recognition_score == 83.0
    assert first.record.gps_verified is True
    assert first.record.status == "present"

    second = recorder.record(db, _entry(seeded, method="fingerprint", score=95.0), NOW + timedelta(hours=9))
    assert second.transition.action == CHECK_OUT
    assert second.transition.hours_worked == 9.0
    db.refresh(second.record)
    assert second.record.fingerprint_match_score == 95.0
    assert second.record.face_recognition_score == 83.0
    assert second.record.check_out_time is not None

    with pytest.raises(AlreadyCheckedOutToday):
        recorder.record(db, _entry(seeded), NOW + timedelta(hours=10))

    rows = db.scalar(select(func.count(Attendance.id)).where(Attendance.worker_id == seeded.worker.id))
    assert rows == 1


def test_recorder_fills_pre_marked_absent_row(db, seed):
    seeded = seed.worker(site=seed.site(), face=True)
    db.add(Attendance(worker_id=seeded.worker.id, date=NOW.date(), status="absent"))
    db.commit()

    result = AttendanceRecorder().record(db, _entry(seeded), NOW)
    assert result.transition.action == CHECK_IN
    db.refresh(result.record)
    assert result.record.status == "present"
    assert result.record.check_in_time is not None


def test_out_of_order_events_never_record_negative_hours(db, seed):
    seeded = seed.worker(site=seed.site(), face=True)
    recorder = AttendanceRecorder()
    recorder.record(db, _entry(seeded), NOW + timedelta(minutes=3))

    late = recorder.record(db, _entry(seeded), NOW)
    assert late.transition.action == CHECK_OUT
    assert late.transition.hours_worked == 0.0
    db.refresh(late.record)
    assert late.record.check_out_time == late.record.check_in_time


def test_new_day_starts_a_new_record(db, seed):
    seeded = seed.worker(site=seed.site(), face=True)
    recorder = AttendanceRecorder()
    recorder.record(db, _entry(seeded), NOW)
    recorder.record(db, _entry(seeded), NOW + timedelta(hours=8))

    tomorrow = recorder.record(db, _entry(seeded), NOW + timedelta(days=1))
    assert tomorrow.transition.action == CHECK_IN
    assert tomorrow.record.date == (NOW + timedelta(days=1)).date()


def test_concurrent_events_never_double_check_in(seed):
    seeded = seed.worker(site=seed.site(), face=True)
    entry = _entry(seeded)
    recorder = AttendanceRecorder()
    barrier = threading.Barrier(4)
    outcomes: list[str] = []
    hours: list[float] = []
    lock = threading.Lock()

    def submit(offset_minutes: int) -> None:
        with SessionLocal() as session:
            barrier.wait()
            try:
                result = recorder.record(session, entry, NOW + timedelta(minutes=offset_minutes))
                outcome = result.transition.action
                if result.transition.hours_worked is not None:
                    with lock:
                        hours.append(result.transition.hours_worked)
            except AlreadyCheckedOutToday:
                outcome = "rejected"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=submit, args=(minute,)) for minute in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes) == sorted([CHECK_IN, CHECK_OUT, "rejected", "rejected"])
    with SessionLocal() as session:
        rows = session.scalars(select(Attendance).where(Attendance.worker_id == seeded.worker.id)).all()
    assert len(rows) == 1
    assert rows[0].check_in_time is not None
    assert rows[0].check_out_time is not None
    assert rows[0].check_out_time >= rows[0].check_in_time
    assert len(hours) == 1
    assert hours[0] >= 0
