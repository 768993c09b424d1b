"""Biometric verification strategies.

Each strategy answers one question for the orchestrator: does the presented
evidence prove the caller is the claimed worker? Strategies are looked up by
method name, so a new method only needs a new ``Verifier`` subclass in
``build_verifiers``.

Face descriptors are produced in the browser. Liveness, anti-spoof and
detection-confidence gates run there at capture time; ``FaceVerifier`` trusts
that any descriptor reaching it already passed them and only scores identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from worksite_attendance.core.config import VerificationConfig
from worksite_attendance.core.security import coerce_descriptor
from worksite_attendance.db.models import Authenticator, FaceEmbedding, Site, Worker
from worksite_attendance.services.alerts import FACE_RECOGNITION_FAILED, FINGERPRINT_AUTH_FAILED
from worksite_attendance.services.encryption import EmbeddingCrypto, EmbeddingDecryptError
from worksite_attendance.services.matcher import best_match
from worksite_attendance.services.passkeys import (
    AUTHENTICATION,
    ChallengeStore,
    WebAuthnGateway,
    credential_from_row,
    decode_credential_id,
)

logger = logging.getLogger("worksite.verifiers")


class FailureReason(str, Enum):
    METHOD_NOT_ENABLED = "method_not_enabled"
    MISSING_CREDENTIAL = "missing_credential"
    MISSING_DESCRIPTOR = "missing_descriptor"
    NO_CREDENTIALS = "no_credentials"
    NO_ENROLLMENT = "no_enrollment"
    CREDENTIAL_NOT_FOUND = "credential_not_found"
    CHALLENGE_INVALID = "challenge_invalid"
    SIGNATURE_INVALID = "signature_invalid"
    BELOW_THRESHOLD = "below_threshold"


@dataclass
class VerificationContext:
    db: Session
    worker: Worker
    site: Site | None
    credential: Mapping[str, Any] | None = None
    challenge: str | None = None
    face_descriptor: Sequence[Any] | None = None


@dataclass
class VerificationResult:
    verified: bool
    match_score: float | None = None
    failure_reason: FailureReason | None = None
    # set only for mismatches that must raise a security alert
    severity: str | None = None

    @classmethod
    def success(cls, match_score: float) -> "VerificationResult":
        return cls(verified=True, match_score=match_score)

    @classmethod
    def failure(
        cls,
        reason: FailureReason,
        match_score: float | None = None,
        severity: str | None = None,
    ) -> "VerificationResult":
        return cls(verified=False, match_score=match_score, failure_reason=reason, severity=severity)


class Verifier:
    method: str = ""
    failure_alert_type: str = ""

    def verify(self, context: VerificationContext) -> VerificationResult:
        raise NotImplementedError


class FingerprintVerifier(Verifier):
    method = "fingerprint"
    failure_alert_type = FINGERPRINT_AUTH_FAILED
    failure_severity = "medium"

    def __init__(self, config: VerificationConfig, gateway: WebAuthnGateway, challenges: ChallengeStore) -> None:
        self.config = config
        self.gateway = gateway
        self.challenges = challenges

    def verify(self, context: VerificationContext) -> VerificationResult:
        worker = context.worker
        if not worker.fingerprint_enabled:
            return VerificationResult.failure(FailureReason.METHOD_NOT_ENABLED)
        if not isinstance(context.credential, Mapping) or not context.challenge:
            return VerificationResult.failure(FailureReason.MISSING_CREDENTIAL)

        db = context.db
        rows = db.scalars(select(Authenticator).where(Authenticator.user_id == worker.user_id)).all()
        if not rows:
            return VerificationResult.failure(FailureReason.NO_CREDENTIALS)

        inbound_id = decode_credential_id(context.credential.get("rawId") or context.credential.get("id"))
        authenticator = None
        if inbound_id is not None:
            authenticator = next((row for row in rows if decode_credential_id(row.credential_id) == inbound_id), None)
        if authenticator is None:
            return VerificationResult.failure(FailureReason.CREDENTIAL_NOT_FOUND)

        if not self.challenges.consume(db, worker.user_id, AUTHENTICATION, context.challenge):
            logger.warning("Rejected unknown, expired or reused challenge for worker %s", worker.id)
            return VerificationResult.failure(FailureReason.CHALLENGE_INVALID, severity=self.failure_severity)

        outcome = self.gateway.verify_authentication(
            dict(context.credential),
            context.challenge,
            credential_from_row(authenticator),
        )
        if not outcome.verified:
            logger.warning("WebAuthn assertion rejected for worker %s: %s", worker.id, outcome.error)
            return VerificationResult.failure(FailureReason.SIGNATURE_INVALID, severity=self.failure_severity)

        # The counter commits independently of the attendance write.
        authenticator.counter = outcome.new_counter
        authenticator.last_used_at = datetime.now(timezone.utc)
        db.commit()
        return VerificationResult.success(self.config.fingerprint_match_score)


class FaceVerifier(Verifier):
    method = "face"
    failure_alert_type = FACE_RECOGNITION_FAILED

    def __init__(self, config: VerificationConfig, crypto: EmbeddingCrypto) -> None:
        self.config = config
        self.crypto = crypto

    def severity_for(self, score: float) -> str:
        return "critical" if score < self.config.face_critical_threshold else "high"

    def verify(self, context: VerificationContext) -> VerificationResult:
        worker = context.worker
        if not worker.face_enabled:
            return VerificationResult.failure(FailureReason.METHOD_NOT_ENABLED)

        descriptor = coerce_descriptor(context.face_descriptor)
        if descriptor is None:
            return VerificationResult.failure(FailureReason.MISSING_DESCRIPTOR)

        rows = context.db.scalars(
            select(FaceEmbedding).where(FaceEmbedding.worker_id == worker.id).order_by(FaceEmbedding.id)
        ).all()
        enrolled = []
        for row in rows:
            try:
                enrolled.append(self.crypto.decrypt(row.embedding_ciphertext, row.dimensions))
            except EmbeddingDecryptError:
                logger.error("Skipping unreadable face embedding %s for worker %s", row.id, worker.id)
        if not enrolled:
            return VerificationResult.failure(FailureReason.NO_ENROLLMENT)

        match = best_match(descriptor, enrolled)
        if match.score >= self.config.face_match_threshold:
            return VerificationResult.success(match.score)

        logger.info("Face score %.2f below threshold for worker %s", match.score, worker.id)
        return VerificationResult.failure(
            FailureReason.BELOW_THRESHOLD,
            match_score=match.score,
            severity=self.severity_for(match.score),
        )


def build_verifiers(
    config: VerificationConfig,
    gateway: WebAuthnGateway,
    challenges: ChallengeStore,
    crypto: EmbeddingCrypto,
) -> dict[str, Verifier]:
    verifiers: list[Verifier] = [
        FingerprintVerifier(config, gateway, challenges),
        FaceVerifier(config, crypto),
    ]
    return {verifier.method: verifier for verifier in verifiers}
