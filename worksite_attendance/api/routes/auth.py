from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from worksite_attendance.api.deps import db_session
from worksite_attendance.core.security import create_access_token, verify_password
from worksite_attendance.db.models import User
from worksite_attendance.schemas.auth import LoginRequest, TokenResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("worksite.auth")


@router.post("/token", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = db_session()):
    user = db.scalar(select(User).where(User.username == payload.username, User.is_active.is_(True)))
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.info("Rejected login for '%s'", payload.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")

    token = create_access_token(subject=str(user.id), role=user.role)
    return TokenResponse(access_token=token, role=user.role)
