from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from worksite_attendance.core.config import VerificationConfig, get_verification_config
from worksite_attendance.core.exceptions import WorkerNotFound
from worksite_attendance.core.security import safe_decode_token
from worksite_attendance.db.models import Worker
from worksite_attendance.db.session import get_db, get_session_factory
from worksite_attendance.schemas.auth import CurrentPrincipal
from worksite_attendance.services.alerts import AlertEmitter
from worksite_attendance.services.attendance import AttendanceRecorder
from worksite_attendance.services.checkin import CheckinOrchestrator
from worksite_attendance.services.encryption import EmbeddingCrypto, get_embedding_crypto
from worksite_attendance.services.geofence import GeofenceEvaluator
from worksite_attendance.services.passkeys import (
    ChallengeStore,
    WebAuthnGateway,
    get_challenge_store,
    get_webauthn_gateway,
)
from worksite_attendance.services.verifiers import build_verifiers

bearer_scheme = HTTPBearer(auto_error=False)

ALL_ROLES = ("admin", "supervisor", "scanner", "worker")
STAFF_ROLES = ("admin", "supervisor")


def db_session() -> Session:
    return Depends(get_db)  # type: ignore[return-value]


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentPrincipal:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token.")
    payload = safe_decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token.")
    return CurrentPrincipal(
        subject=str(payload.get("sub", "")),
        role=str(payload.get("role", "")),
    )


def require_roles(*allowed_roles: str) -> Callable[[CurrentPrincipal], CurrentPrincipal]:
    allowed = set(allowed_roles)

    def _checker(principal: CurrentPrincipal = Depends(get_current_principal)) -> CurrentPrincipal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role.")
        return principal

    return _checker


def ensure_worker_access(db: Session, principal: CurrentPrincipal, worker_id: int) -> None:
    """Workers may only act on their own worker record; other roles act on any."""
    if principal.role != "worker":
        return
    owner_id = db.scalar(select(Worker.user_id).where(Worker.id == worker_id))
    if owner_id is None or str(owner_id) != principal.subject:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Workers may only act on their own record.")


def load_active_worker(db: Session, worker_id: int) -> Worker:
    worker = db.get(Worker, worker_id)
    if worker is None or not worker.is_active or not worker.user.is_active:
        raise WorkerNotFound()
    return worker


def get_orchestrator(
    gateway: WebAuthnGateway = Depends(get_webauthn_gateway),
    challenges: ChallengeStore = Depends(get_challenge_store),
    crypto: EmbeddingCrypto = Depends(get_embedding_crypto),
    config: VerificationConfig = Depends(get_verification_config),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> CheckinOrchestrator:
    # Built per request: the alert emitter collects what this request emitted.
    return CheckinOrchestrator(
        config=config,
        verifiers=build_verifiers(config, gateway, challenges, crypto),
        geofence=GeofenceEvaluator(config.default_geofence_radius_m),
        recorder=AttendanceRecorder(config.attendance_timezone),
        alerts=AlertEmitter(session_factory),
    )
