from __future__ import annotations

import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Sequence

from sqlalchemy import delete, or_, update
from sqlalchemy.orm import Session
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    UserVerificationRequirement,
)

from worksite_attendance.core.config import VerificationConfig, get_verification_config
from worksite_attendance.core.exceptions import VerificationFailed
from worksite_attendance.db.models import Authenticator, WebAuthnChallenge

logger = logging.getLogger("worksite.passkeys")

AUTHENTICATION = "authentication"
REGISTRATION = "registration"


@dataclass
class StoredCredential:
    credential_id: bytes
    public_key: bytes
    counter: int
    transports: list[str] = field(default_factory=list)


@dataclass
class AuthenticationOutcome:
    verified: bool
    new_counter: int
    error: str | None = None


@dataclass
class RegisteredCredential:
    credential_id: bytes
    public_key: bytes
    sign_count: int
    transports: list[str] = field(default_factory=list)


def decode_credential_id(value: str | None) -> bytes | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return base64url_to_bytes(value)
    except (binascii.Error, ValueError):
        return None


def credential_from_row(row: Authenticator) -> StoredCredential:
    return StoredCredential(
        credential_id=base64url_to_bytes(row.credential_id),
        public_key=base64url_to_bytes(row.public_key),
        counter=row.counter,
        transports=list(row.transports or []),
    )


def _transports(values: Sequence[str]) -> list[AuthenticatorTransport]:
    parsed: list[AuthenticatorTransport] = []
    for value in values:
        try:
            parsed.append(AuthenticatorTransport(value))
        except ValueError:
            logger.debug("Ignoring unknown authenticator transport '%s'", value)
    return parsed


def _descriptors(credentials: Sequence[StoredCredential]) -> list[PublicKeyCredentialDescriptor]:
    return [
        PublicKeyCredentialDescriptor(id=cred.credential_id, transports=_transports(cred.transports) or None)
        for cred in credentials
    ]


class WebAuthnGateway:
    """Thin boundary around the ``webauthn`` library; no WebAuthn cryptography happens here."""

    def __init__(self, config: VerificationConfig) -> None:
        self.config = config

    @property
    def _user_verification(self) -> UserVerificationRequirement:
        if self.config.require_user_verification:
            return UserVerificationRequirement.REQUIRED
        return UserVerificationRequirement.PREFERRED

    def authentication_options(self, credentials: Sequence[StoredCredential]) -> tuple[dict[str, Any], bytes]:
        options = generate_authentication_options(
            rp_id=self.config.rp_id,
            allow_credentials=_descriptors(credentials),
            user_verification=self._user_verification,
        )
        return json.loads(options_to_json(options)), options.challenge

    def verify_authentication(
        self,
        response: dict[str, Any],
        expected_challenge: str,
        credential: StoredCredential,
    ) -> AuthenticationOutcome:
        try:
            verification = verify_authentication_response(
                credential=response,
                expected_challenge=base64url_to_bytes(expected_challenge),
                expected_rp_id=self.config.rp_id,
                expected_origin=self.config.expected_origin,
                credential_public_key=credential.public_key,
                credential_current_sign_count=credential.counter,
                require_user_verification=self.config.require_user_verification,
            )
        except (WebAuthnException, binascii.Error, ValueError, KeyError) as exc:
            return AuthenticationOutcome(verified=False, new_counter=credential.counter, error=str(exc))
        return AuthenticationOutcome(verified=True, new_counter=verification.new_sign_count)

    def registration_options(
        self,
        user_id: int,
        user_name: str,
        display_name: str,
        existing: Sequence[StoredCredential],
    ) -> tuple[dict[str, Any], bytes]:
        options = generate_registration_options(
            rp_id=self.config.rp_id,
            rp_name=self.config.rp_name,
            user_id=str(user_id).encode("utf-8"),
            user_name=user_name,
            user_display_name=display_name,
            exclude_credentials=_descriptors(existing),
        )
        return json.loads(options_to_json(options)), options.challenge

    def verify_registration(self, response: dict[str, Any], expected_challenge: str) -> RegisteredCredential:
        try:
            verification = verify_registration_response(
                credential=response,
                expected_challenge=base64url_to_bytes(expected_challenge),
                expected_rp_id=self.config.rp_id,
                expected_origin=self.config.expected_origin,
                require_user_verification=self.config.require_user_verification,
            )
        except (WebAuthnException, binascii.Error, ValueError, KeyError) as exc:
            logger.warning("Passkey registration rejected: %s", exc)
            raise VerificationFailed("Registration verification failed") from exc

        transports = response.get("response", {}).get("transports") or []
        return RegisteredCredential(
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
            transports=[str(value) for value in transports],
        )


class ChallengeStore:
    """Server-side record of issued challenges. Each one is single use and expires."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl_seconds = ttl_seconds

    def issue(self, db: Session, user_id: int, purpose: str, challenge: bytes) -> str:
        now = datetime.now(timezone.utc)
        db.execute(
            delete(WebAuthnChallenge).where(
                WebAuthnChallenge.user_id == user_id,
                or_(WebAuthnChallenge.expires_at <= now, WebAuthnChallenge.used_at.is_not(None)),
            ),
            execution_options={"synchronize_session": False},
        )
        value = bytes_to_base64url(challenge)
        db.add(
            WebAuthnChallenge(
                user_id=user_id,
                purpose=purpose,
                challenge=value,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            )
        )
        db.commit()
        return value

    def consume(self, db: Session, user_id: int, purpose: str, challenge: str) -> bool:
        now = datetime.now(timezone.utc)
        result = db.execute(
            update(WebAuthnChallenge)
            .where(
                WebAuthnChallenge.challenge == challenge,
                WebAuthnChallenge.user_id == user_id,
                WebAuthnChallenge.purpose == purpose,
                WebAuthnChallenge.used_at.is_(None),
                WebAuthnChallenge.expires_at > now,
            )
            .values(used_at=now),
            execution_options={"synchronize_session": False},
        )
        db.commit()
        return result.rowcount == 1


@lru_cache(maxsize=1)
def get_webauthn_gateway() -> WebAuthnGateway:
    return WebAuthnGateway(get_verification_config())


@lru_cache(maxsize=1)
def get_challenge_store() -> ChallengeStore:
    return ChallengeStore(ttl_seconds=get_verification_config().challenge_ttl_seconds)
