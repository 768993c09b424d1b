"""Unified check-in: Validate -> LoadContext -> Geofence -> Biometric -> Resolve/Persist -> Respond.

Every stage after validation can end the request early by raising a
``CheckinError``; geofence violations and biometric mismatches record an
alert first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from worksite_attendance.core.config import VerificationConfig
from worksite_attendance.core.exceptions import (
    CheckinError,
    CredentialNotFound,
    GeofenceViolation,
    MethodNotEnabled,
    NoCredentials,
    NoEnrollment,
    ValidationError,
    VerificationFailed,
    WorkerNotFound,
)
from worksite_attendance.db.models import Attendance, Site, User, Worker
from worksite_attendance.schemas.checkin import (
    AttendanceInfo,
    CheckinRequest,
    CheckinResponse,
    GpsInfo,
    WorkerInfo,
)
from worksite_attendance.services.alerts import GPS_OUTSIDE_GEOFENCE, AlertEmitter
from worksite_attendance.services.attendance import AttendanceEntry, AttendanceRecorder, AttendanceTransition
from worksite_attendance.services.geofence import GeofenceEvaluator, GeofenceResult, validate_coordinates
from worksite_attendance.services.verifiers import (
    FailureReason,
    VerificationContext,
    VerificationResult,
    Verifier,
)

logger = logging.getLogger("worksite.checkin")


@dataclass
class WorkerContext:
    worker: Worker
    user: User
    site: Site | None


@dataclass
class CheckinResult:
    method: str
    context: WorkerContext
    gps: GeofenceResult
    verification: VerificationResult
    record: Attendance
    transition: AttendanceTransition
    day: date
    timestamp: datetime

    @property
    def action(self) -> str:
        return self.transition.action


def _failure_error(method: str, result: VerificationResult) -> CheckinError:
    label = method.capitalize()
    reason = result.failure_reason
    if reason is FailureReason.METHOD_NOT_ENABLED:
        return MethodNotEnabled(f"{label} authentication not enabled for this worker")
    if reason is FailureReason.MISSING_CREDENTIAL:
        return ValidationError("Missing required fields for fingerprint authentication: credential, challenge")
    if reason is FailureReason.MISSING_DESCRIPTOR:
        return ValidationError("Missing or invalid face descriptor")
    if reason is FailureReason.NO_CREDENTIALS:
        return NoCredentials()
    if reason is FailureReason.NO_ENROLLMENT:
        return NoEnrollment()
    if reason is FailureReason.CREDENTIAL_NOT_FOUND:
        return CredentialNotFound()
    return VerificationFailed(f"{label} verification failed")


class CheckinOrchestrator:
    def __init__(
        self,
        config: VerificationConfig,
        verifiers: Mapping[str, Verifier],
        geofence: GeofenceEvaluator,
        recorder: AttendanceRecorder,
        alerts: AlertEmitter,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.verifiers = dict(verifiers)
        self.geofence = geofence
        self.recorder = recorder
        self.alerts = alerts
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def check_in(self, db: Session, request: CheckinRequest) -> CheckinResult:
        method, worker_id = self._validate(request)
        context = self._load_context(db, worker_id)
        gps = self._check_geofence(method, context, request)
        verification = self._verify(db, method, context, request)

        now = self.clock()
        entry = AttendanceEntry(
            worker_id=context.worker.id,
            site_id=context.site.id if context.site else None,
            method=method,
            match_score=verification.match_score,
            location=context.site.location if context.site else None,
            scanner_id=request.scanner_id,
            latitude=request.latitude,
            longitude=request.longitude,
            distance_meters=round(gps.distance_meters, 2) if gps.distance_meters is not None else None,
            gps_verified=gps.within_fence,
        )
        recorded = self.recorder.record(db, entry, now)
        logger.info(
            "Worker %s %s via %s (score=%s, gps_verified=%s)",
            worker_id,
            recorded.transition.action,
            method,
            verification.match_score,
            gps.within_fence,
        )
        return CheckinResult(
            method=method,
            context=context,
            gps=gps,
            verification=verification,
            record=recorded.record,
            transition=recorded.transition,
            day=self.recorder.today(now),
            timestamp=now,
        )

    def _validate(self, request: CheckinRequest) -> tuple[str, int]:
        if not request.method or request.worker_id is None:
            raise ValidationError("Missing required fields: method, workerId")
        if request.method not in self.verifiers:
            supported = ", ".join(f'"{name}"' for name in sorted(self.verifiers))
            raise ValidationError(f"Invalid authentication method. Use one of: {supported}")
        if request.worker_id <= 0:
            raise ValidationError("workerId must be a positive integer")
        try:
            validate_coordinates(request.latitude, request.longitude)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return request.method, request.worker_id

    def _load_context(self, db: Session, worker_id: int) -> WorkerContext:
        row = db.execute(
            select(Worker, User, Site)
            .join(User, Worker.user_id == User.id)
            .outerjoin(Site, Worker.site_id == Site.id)
            .where(Worker.id == worker_id)
        ).first()
        if row is None:
            raise WorkerNotFound()
        worker, user, site = row
        if not worker.is_active or not user.is_active:
            raise WorkerNotFound()
        return WorkerContext(worker=worker, user=user, site=site)

    def _check_geofence(self, method: str, context: WorkerContext, request: CheckinRequest) -> GeofenceResult:
        site = context.site
        gps = self.geofence.evaluate(
            request.latitude,
            request.longitude,
            site.latitude if site else None,
            site.longitude if site else None,
            site.geofence_radius if site else self.config.default_geofence_radius_m,
        )
        if not gps.violated:
            return gps

        distance = gps.distance_meters or 0.0
        logger.warning(
            "Worker %s is %.1fm from site %s (radius %.0fm); check-in blocked",
            context.worker.id,
            distance,
            site.id if site else None,
            gps.radius_meters,
        )
        self.alerts.emit(
            GPS_OUTSIDE_GEOFENCE,
            title="Check-in attempt outside geofence",
            description=(
                f"{context.user.display_name} attempted a {method} check-in {distance:.0f}m from "
                f"{site.name if site else 'the worksite'} (allowed {gps.radius_meters:.0f}m)"
            ),
            severity="high",
            worker_id=context.worker.id,
            site_id=site.id if site else None,
            metadata={
                "method": method,
                "distanceMeters": round(distance, 2),
                "geofenceRadius": gps.radius_meters,
                "latitude": request.latitude,
                "longitude": request.longitude,
            },
        )
        raise GeofenceViolation(distance, gps.radius_meters)

    def _verify(self, db: Session, method: str, context: WorkerContext, request: CheckinRequest) -> VerificationResult:
        verifier = self.verifiers[method]
        result = verifier.verify(
            VerificationContext(
                db=db,
                worker=context.worker,
                site=context.site,
                credential=request.credential,
                challenge=request.challenge,
                face_descriptor=request.face_descriptor,
            )
        )
        if result.verified:
            return result

        logger.warning(
            "%s verification failed for worker %s: %s",
            method,
            context.worker.id,
            result.failure_reason.value if result.failure_reason else "unknown",
        )
        if result.severity is not None:
            score_text = f" (score {result.match_score:.2f})" if result.match_score is not None else ""
            self.alerts.emit(
                verifier.failure_alert_type,
                title=f"{method.capitalize()} verification failed",
                description=f"{method.capitalize()} verification failed for {context.user.display_name}{score_text}",
                severity=result.severity,
                worker_id=context.worker.id,
                site_id=context.site.id if context.site else None,
                metadata={
                    "method": method,
                    "matchScore": result.match_score,
                    "reason": result.failure_reason.value if result.failure_reason else None,
                },
            )
        raise _failure_error(method, result)


def build_response(result: CheckinResult) -> CheckinResponse:
    context = result.context
    transition = result.transition
    gps = result.gps
    return CheckinResponse(
        action=transition.action,
        method=result.method,
        worker=WorkerInfo(
            id=context.worker.id,
            name=context.user.display_name,
            group=context.site.name if context.site else None,
            location=context.site.location if context.site else None,
        ),
        gps=GpsInfo(
            verified=gps.within_fence,
            distance_meters=round(gps.distance_meters, 2) if gps.distance_meters is not None else None,
            geofence_radius=gps.radius_meters,
        ),
        attendance=AttendanceInfo(
            date=result.day,
            check_in_time=transition.check_in_time,
            check_out_time=transition.check_out_time,
            hours_worked=transition.hours_worked,
            method=result.method,
            match_score=result.verification.match_score,
        ),
        timestamp=result.timestamp,
    )
