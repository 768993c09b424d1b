from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from webauthn.helpers import bytes_to_base64url

from worksite_attendance.api.deps import (
    ALL_ROLES,
    STAFF_ROLES,
    db_session,
    ensure_worker_access,
    load_active_worker,
    require_roles,
)
from worksite_attendance.core.exceptions import NoCredentials, ValidationError, VerificationFailed
from worksite_attendance.db.models import Authenticator, WebAuthnChallenge
from worksite_attendance.schemas.auth import CurrentPrincipal
from worksite_attendance.schemas.enrollment import (
    PasskeyOptionsRequest,
    PasskeyOptionsResponse,
    PasskeyRegisterRequest,
    PasskeyRegisterResponse,
    PasskeyResetResponse,
)
from worksite_attendance.services.passkeys import (
    AUTHENTICATION,
    REGISTRATION,
    ChallengeStore,
    WebAuthnGateway,
    credential_from_row,
    get_challenge_store,
    get_webauthn_gateway,
)

router = APIRouter(prefix="/webauthn", tags=["webauthn"])
logger = logging.getLogger("worksite.webauthn")


def _authenticators(db: Session, user_id: int) -> list[Authenticator]:
    return list(db.scalars(select(Authenticator).where(Authenticator.user_id == user_id)).all())


@router.post("/authentication-options", response_model=PasskeyOptionsResponse)
def authentication_options(
    payload: PasskeyOptionsRequest,
    principal: CurrentPrincipal = Depends(require_roles(*ALL_ROLES)),
    db: Session = db_session(),
    gateway: WebAuthnGateway = Depends(get_webauthn_gateway),
    challenges: ChallengeStore = Depends(get_challenge_store),
):
    ensure_worker_access(db, principal, payload.worker_id)
    worker = load_active_worker(db, payload.worker_id)
    rows = _authenticators(db, worker.user_id)
    if not rows:
        raise NoCredentials()

    options, challenge = gateway.authentication_options([credential_from_row(row) for row in rows])
    value = challenges.issue(db, worker.user_id, AUTHENTICATION, challenge)
    return PasskeyOptionsResponse(options=options, challenge=value)


@router.post("/registration-options", response_model=PasskeyOptionsResponse)
def registration_options(
    payload: PasskeyOptionsRequest,
    principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES, "worker")),
    db: Session = db_session(),
    gateway: WebAuthnGateway = Depends(get_webauthn_gateway),
    challenges: ChallengeStore = Depends(get_challenge_store),
):
    ensure_worker_access(db, principal, payload.worker_id)
    worker = load_active_worker(db, payload.worker_id)
    user = worker.user
    options, challenge = gateway.registration_options(
        user_id=user.id,
        user_name=user.username,
        display_name=user.display_name,
        existing=[credential_from_row(row) for row in _authenticators(db, user.id)],
    )
    value = challenges.issue(db, user.id, REGISTRATION, challenge)
    return PasskeyOptionsResponse(options=options, challenge=value)


@router.post("/register", response_model=PasskeyRegisterResponse)
def register(
    payload: PasskeyRegisterRequest,
    principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES, "worker")),
    db: Session = db_session(),
    gateway: WebAuthnGateway = Depends(get_webauthn_gateway),
    challenges: ChallengeStore = Depends(get_challenge_store),
):
    ensure_worker_access(db, principal, payload.worker_id)
    worker = load_active_worker(db, payload.worker_id)
    if not challenges.consume(db, worker.user_id, REGISTRATION, payload.challenge):
        raise VerificationFailed("Registration challenge is invalid or expired")

    registered = gateway.verify_registration(payload.credential, payload.challenge)
    credential_id = bytes_to_base64url(registered.credential_id)
    duplicate = db.scalar(select(Authenticator.id).where(Authenticator.credential_id == credential_id))
    if duplicate is not None:
        raise ValidationError("Credential already registered")

    db.add(
        Authenticator(
            user_id=worker.user_id,
            credential_id=credential_id,
            public_key=bytes_to_base64url(registered.public_key),
            counter=registered.sign_count,
            transports=registered.transports,
        )
    )
    worker.fingerprint_enabled = True
    db.commit()
    logger.info("Registered passkey for worker %s", worker.id)
    return PasskeyRegisterResponse(credential_id=credential_id)


@router.delete("/credentials/{worker_id}", response_model=PasskeyResetResponse)
def reset_credentials(
    worker_id: int,
    principal: CurrentPrincipal = Depends(require_roles(*STAFF_ROLES, "worker")),
    db: Session = db_session(),
):
    """Drop every passkey of the worker so they can enroll again."""
    ensure_worker_access(db, principal, worker_id)
    worker = load_active_worker(db, worker_id)
    removed = db.execute(delete(Authenticator).where(Authenticator.user_id == worker.user_id)).rowcount
    # Outstanding challenges were issued against the removed credentials.
    db.execute(delete(WebAuthnChallenge).where(WebAuthnChallenge.user_id == worker.user_id))
    worker.fingerprint_enabled = False
    db.commit()
    logger.info("Reset %d passkey(s) for worker %s", removed, worker.id)
    return PasskeyResetResponse(worker_id=worker.id, removed=removed)
