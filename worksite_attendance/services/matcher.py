from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass
class MatchResult:
    similarity: float
    score: float
    embedding_index: int | None


def _scaled(vector: np.ndarray) -> np.ndarray:
    # Dividing by the largest magnitude keeps the norm and dot product from overflowing.
    peak = float(np.max(np.abs(vector)))
    if peak == 0.0:
        return vector
    return vector / peak


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """dot(a, b) / (|a| * |b|), or 0.0 when lengths differ, either norm is zero or a value is not finite."""
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    if not (np.all(np.isfinite(va)) and np.all(np.isfinite(vb))):
        return 0.0
    va = _scaled(va)
    vb = _scaled(vb)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    value = float(np.dot(va, vb) / (norm_a * norm_b))
    if not math.isfinite(value):
        return 0.0
    return max(-1.0, min(1.0, value))


def similarity_to_score(similarity: float) -> float:
    return round(similarity * 100.0, 2)


def best_match(descriptor: np.ndarray, enrolled: Sequence[np.ndarray]) -> MatchResult:
    """Compare the descriptor against each enrolled embedding independently; the best one wins."""
    best_similarity = 0.0
    best_index: int | None = None
    for idx, embedding in enumerate(enrolled):
        similarity = cosine_similarity(descriptor, embedding)
        if best_index is None or similarity > best_similarity:
            best_similarity = similarity
            best_index = idx
    return MatchResult(similarity=best_similarity, score=similarity_to_score(best_similarity), embedding_index=best_index)
