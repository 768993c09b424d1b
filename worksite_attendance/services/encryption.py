from __future__ import annotations

import base64
from functools import lru_cache

import numpy as np
from cryptography.fernet import Fernet, InvalidToken

from worksite_attendance.core.config import get_settings


class EmbeddingDecryptError(ValueError):
    """A stored face embedding could not be read back."""


class EmbeddingCrypto:
    """Encrypts enrolled face embeddings at rest as float32 bytes."""

    def __init__(self, key_material: str):
        padded = key_material.encode("utf-8")
        key = base64.urlsafe_b64encode(padded.ljust(32, b"0")[:32])
        self._fernet = Fernet(key)

    def encrypt(self, vector: np.ndarray) -> str:
        payload = np.asarray(vector, dtype=np.float32).ravel().tobytes()
        return self._fernet.encrypt(payload).decode("utf-8")

    def decrypt(self, ciphertext: str, dimensions: int | None = None) -> np.ndarray:
        try:
            payload = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise EmbeddingDecryptError("Embedding ciphertext is invalid or was encrypted with another key") from exc
        if len(payload) % 4:
            raise EmbeddingDecryptError("Embedding payload is not a float32 vector")
        vector = np.frombuffer(payload, dtype=np.float32)
        if dimensions is not None and vector.size != dimensions:
            raise EmbeddingDecryptError(f"Embedding has {vector.size} values, expected {dimensions}")
        return vector


@lru_cache(maxsize=1)
def get_embedding_crypto() -> EmbeddingCrypto:
    return EmbeddingCrypto(get_settings().embedding_cipher_key)
