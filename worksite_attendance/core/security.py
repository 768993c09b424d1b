from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import numpy as np
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(subject: str, role: str) -> str:
    settings = get_settings()
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_minutes)
    payload = {
        "sub": subject,
        "role": role,
        "exp": expires,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def safe_decode_token(token: str) -> dict | None:
    try:
        return decode_access_token(token)
    except JWTError:
        return None


def coerce_descriptor(values: Sequence[Any] | None) -> np.ndarray | None:
    """Return the descriptor as a finite 1D float vector with a finite length, or None."""
    if values is None or isinstance(values, (str, bytes)):
        return None
    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if vector.ndim != 1 or vector.size == 0:
        return None
    if not np.all(np.isfinite(vector)):
        return None
    with np.errstate(over="ignore"):
        length = np.linalg.norm(vector)
    if not np.isfinite(length):
        return None
    return vector


def normalize_descriptor(values: Sequence[Any], min_length: int) -> np.ndarray:
    vector = coerce_descriptor(values)
    if vector is None:
        raise ValueError("Face descriptor must be a 1D vector of finite numbers.")
    if vector.size < min_length:
        raise ValueError(f"Face descriptor must contain at least {min_length} values.")
    norm = float(np.linalg.norm(vector))
    if norm <= 1e-9:
        raise ValueError("Face descriptor norm is zero.")
    return vector / norm
