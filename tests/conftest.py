from __future__ import annotations

import hashlib
import json
import math
import os
import secrets
import tempfile
from dataclasses import dataclass
from typing import Any, Sequence

_DB_DIR = tempfile.mkdtemp(prefix="worksite-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'attendance.db')}"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["EMBEDDING_CIPHER_KEY"] = "test-embedding-key"
os.environ["BOOTSTRAP_ADMIN_PASSWORD"] = "admin-password"

import numpy as np
import pytest
from fastapi.testclient import TestClient
from webauthn.helpers import bytes_to_base64url

from worksite_attendance.core.config import VerificationConfig
from worksite_attendance.core.security import create_access_token, hash_password
from worksite_attendance.db.base import Base
from worksite_attendance.db.models import Authenticator, FaceEmbedding, Site, User, Worker
from worksite_attendance.db.session import SessionLocal, engine
from worksite_attendance.main import app
from worksite_attendance.services.encryption import get_embedding_crypto
from worksite_attendance.services.passkeys import (
    AuthenticationOutcome,
    RegisteredCredential,
    StoredCredential,
    get_webauthn_gateway,
)

SITE_LAT = 40.7128
SITE_LNG = -74.0060
DESCRIPTOR_SIZE = 128
PASSWORD_HASH = hash_password("worker-password")


class FakeWebAuthnGateway:
    """Stands in for the WebAuthn primitive.

    An assertion is valid when its signature is "valid" and its signCount moves
    past the stored counter.
    """

    def __init__(self) -> None:
        self.registration = RegisteredCredential(
            credential_id=b"registered-credential",
            public_key=b"registered-public-key",
            sign_count=0,
            transports=["internal"],
        )

    def authentication_options(self, credentials: Sequence[StoredCredential]) -> tuple[dict[str, Any], bytes]:
        challenge = secrets.token_bytes(32)
        return {"allowCredentials": len(credentials)}, challenge

    def verify_authentication(
        self,
        response: dict[str, Any],
        expected_challenge: str,
        credential: StoredCredential,
    ) -> AuthenticationOutcome:
        body = response.get("response") or {}
        sign_count = int(body.get("signCount", 0))
        if body.get("signature") != "valid":
            return AuthenticationOutcome(verified=False, new_counter=credential.counter, error="bad signature")
        if sign_count <= credential.counter:
            return AuthenticationOutcome(verified=False, new_counter=credential.counter, error="counter replay")
        return AuthenticationOutcome(verified=True, new_counter=sign_count)

    def registration_options(self, user_id, user_name, display_name, existing):
        return {"user": {"name": user_name}, "excludeCredentials": len(existing)}, secrets.token_bytes(32)

    def verify_registration(self, response: dict[str, Any], expected_challenge: str) -> RegisteredCredential:
        return self.registration


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    engine.dispose()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_gateway() -> FakeWebAuthnGateway:
    return FakeWebAuthnGateway()


@pytest.fixture
def client(fake_gateway):
    app.dependency_overrides[get_webauthn_gateway] = lambda: fake_gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def seed(db):
    return Seeder(db)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=str(user.id), role=user.role)}"}


def unit_vector(similarity: float, size: int = DESCRIPTOR_SIZE) -> list[float]:
    """A unit descriptor whose cosine similarity with ``basis_vector()`` is ``similarity``."""
    vector = [0.0] * size
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


def basis_vector(size: int = DESCRIPTOR_SIZE) -> list[float]:
    return unit_vector(1.0, size)


def offset_north(lat: float, meters: float) -> float:
    return lat + math.degrees(meters / 6_371_000.0)


def signed_assertion(challenge: bytes, sign_count: int = 1) -> dict:
    """A well-formed assertion whose client data and authenticator data pass the library checks.

    The signature itself is garbage, so only the public-key step can reject it.
    """
    config = VerificationConfig()
    client_data = json.dumps(
        {
            "type": "webauthn.get",
            "challenge": bytes_to_base64url(challenge),
            "origin": config.expected_origin,
            "crossOrigin": False,
        }
    ).encode("utf-8")
    rp_id_hash = hashlib.sha256(config.rp_id.encode("utf-8")).digest()
    # user present + user verified
    authenticator_data = rp_id_hash + bytes([0x05]) + sign_count.to_bytes(4, "big")
    credential_id = bytes_to_base64url(b"cred-1")
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": bytes_to_base64url(client_data),
            "authenticatorData": bytes_to_base64url(authenticator_data),
            "signature": bytes_to_base64url(b"not-a-signature"),
        },
        "clientExtensionResults": {},
    }


@dataclass
class SeededWorker:
    worker: Worker
    user: User
    site: Site | None


class Seeder:
    def __init__(self, db) -> None:
        self.db = db
        self._count = 0

    def user(self, role: str = "worker", username: str | None = None) -> User:
        self._count += 1
        row = User(
            username=username or f"{role}-{self._count}",
            password_hash=PASSWORD_HASH,
            first_name=role.capitalize(),
            last_name=str(self._count),
            role=role,
            is_active=True,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def site(self, latitude: float | None = SITE_LAT, longitude: float | None = SITE_LNG, radius: float = 100.0) -> Site:
        row = Site(
            name="Riverside Tower",
            location="Pier 17, New York",
            latitude=latitude,
            longitude=longitude,
            geofence_radius=radius,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def worker(
        self,
        site: Site | None = None,
        fingerprint: bool = False,
        face: bool = False,
        is_active: bool = True,
    ) -> SeededWorker:
        user = self.user("worker")
        row = Worker(
            user_id=user.id,
            site_id=site.id if site else None,
            position="rigger",
            is_active=is_active,
            fingerprint_enabled=fingerprint,
            face_enabled=face,
        )
        self.db.add(row)
        self.db.commit()
        return SeededWorker(worker=row, user=user, site=site)

    def face(self, worker: Worker, descriptor: Sequence[float] | None = None) -> FaceEmbedding:
        vector = np.asarray(descriptor if descriptor is not None else basis_vector(), dtype=np.float64)
        row = FaceEmbedding(
            worker_id=worker.id,
            embedding_ciphertext=get_embedding_crypto().encrypt(vector),
            dimensions=int(vector.size),
        )
        self.db.add(row)
        self.db.commit()
        return row

    def authenticator(self, user: User, credential_id: str = "Y3JlZC0x", counter: int = 0) -> Authenticator:
        row = Authenticator(
            user_id=user.id,
            credential_id=credential_id,
            public_key="cHVibGljLWtleQ",
            counter=counter,
            transports=["internal"],
        )
        self.db.add(row)
        self.db.commit()
        return row
