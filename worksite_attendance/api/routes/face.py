from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from worksite_attendance.api.deps import (
    STAFF_ROLES,
    db_session,
    ensure_worker_access,
    load_active_worker,
    require_roles,
)
from worksite_attendance.core.config import VerificationConfig, get_verification_config
from worksite_attendance.core.exceptions import ValidationError
from worksite_attendance.core.security import normalize_descriptor
from worksite_attendance.db.models import FaceEmbedding
from worksite_attendance.schemas.auth import CurrentPrincipal
from worksite_attendance.schemas.enrollment import FaceEnrollRequest, FaceEnrollResponse
from worksite_attendance.services.encryption import EmbeddingCrypto, get_embedding_crypto

router = APIRouter(prefix="/face", tags=["face"])
logger = logging.getLogger("worksite.face")


@router.post("/enroll", response_model=FaceEnrollResponse)
def enroll_face(
    payload: FaceEnrollRequest,
    principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES, "worker")),
    db: Session = db_session(),
    crypto: EmbeddingCrypto = Depends(get_embedding_crypto),
    config: VerificationConfig = Depends(get_verification_config),
):
    ensure_worker_access(db, principal, payload.worker_id)
    worker = load_active_worker(db, payload.worker_id)
    try:
        descriptor = normalize_descriptor(payload.descriptor, config.face_min_descriptor_length)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    db.add(
        FaceEmbedding(
            worker_id=worker.id,
            embedding_ciphertext=crypto.encrypt(descriptor),
            dimensions=int(descriptor.size),
        )
    )
    worker.face_enabled = True
    db.commit()

    count = db.scalar(select(func.count(FaceEmbedding.id)).where(FaceEmbedding.worker_id == worker.id))
    logger.info("Enrolled face embedding %d for worker %s", count, worker.id)
    return FaceEnrollResponse(worker_id=worker.id, embeddings=count or 0)
