from __future__ import annotations

from typing import Any

from pydantic import Field

from .base import CamelModel


class FaceEnrollRequest(CamelModel):
    worker_id: int
    descriptor: list[float] = Field(min_length=1)


class FaceEnrollResponse(CamelModel):
    success: bool = True
    worker_id: int
    embeddings: int
    message: str = "Face enrolled successfully"


class PasskeyOptionsRequest(CamelModel):
    worker_id: int


class PasskeyOptionsResponse(CamelModel):
    options: dict[str, Any]
    challenge: str


class PasskeyRegisterRequest(CamelModel):
    worker_id: int
    credential: dict[str, Any]
    challenge: str


class PasskeyRegisterResponse(CamelModel):
    verified: bool = True
    credential_id: str
    message: str = "Fingerprint enrolled successfully"


class PasskeyResetResponse(CamelModel):
    success: bool = True
    worker_id: int
    removed: int
    message: str = "All fingerprint enrollments have been reset. You can now enroll again."
