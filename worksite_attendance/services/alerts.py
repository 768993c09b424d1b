from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from worksite_attendance.db.models import Alert
from worksite_attendance.schemas.alert import AlertResponse

logger = logging.getLogger("worksite.alerts")

SEVERITIES = ("low", "medium", "high", "critical")

GPS_OUTSIDE_GEOFENCE = "gps_outside_geofence"
FACE_RECOGNITION_FAILED = "face_recognition_failed"
FINGERPRINT_AUTH_FAILED = "fingerprint_auth_failed"


class AlertEmitter:
    """Best-effort alert writer.

    Alerts are written through their own session so they commit regardless of
    what happens to the request transaction. A failure here is logged and
    swallowed; it never fails the check-in.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory
        self.emitted: list[dict[str, Any]] = []

    def emit(
        self,
        alert_type: str,
        title: str,
        description: str | None = None,
        severity: str = "medium",
        worker_id: int | None = None,
        site_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        if severity not in SEVERITIES:
            logger.warning("Unknown alert severity '%s', using 'medium'", severity)
            severity = "medium"
        try:
            with self.session_factory() as db:
                row = Alert(
                    type=alert_type,
                    title=title,
                    description=description,
                    severity=severity,
                    worker_id=worker_id,
                    site_id=site_id,
                    metadata_json=metadata or {},
                )
                db.add(row)
                db.commit()
                db.refresh(row)
                payload = AlertResponse.model_validate(row).model_dump(mode="json", by_alias=True)
        except Exception:
            logger.exception("Failed to record %s alert for worker %s", alert_type, worker_id)
            return None

        logger.info("Alert %s (%s) recorded for worker %s", alert_type, severity, worker_id)
        self.emitted.append(payload)
        return payload


def list_alerts(
    db: Session,
    severity: str | None = None,
    is_read: bool | None = None,
    alert_type: str | None = None,
    limit: int = 200,
) -> list[Alert]:
    query = select(Alert)
    if severity is not None:
        query = query.where(Alert.severity == severity)
    if is_read is not None:
        query = query.where(Alert.is_read.is_(is_read))
    if alert_type is not None:
        query = query.where(Alert.type == alert_type)
    query = query.order_by(desc(Alert.created_at), desc(Alert.id)).limit(max(1, min(1000, limit)))
    return list(db.scalars(query).all())


def mark_alert_read(db: Session, alert_id: int) -> Alert | None:
    row = db.get(Alert, alert_id)
    if row is None:
        return None
    row.is_read = True
    db.commit()
    db.refresh(row)
    return row


def resolve_alert(db: Session, alert_id: int) -> Alert | None:
    row = db.get(Alert, alert_id)
    if row is None:
        return None
    row.is_read = True
    if row.resolved_at is None:
        row.resolved_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    return row
