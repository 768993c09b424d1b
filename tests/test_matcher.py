import numpy as np
import pytest

from worksite_attendance.core.security import coerce_descriptor, normalize_descriptor
from worksite_attendance.services.matcher import best_match, cosine_similarity, similarity_to_score


def test_identical_vectors_have_similarity_one():
    vector = np.array([0.3, -1.2, 4.0])
    assert cosine_similarity(vector, vector) == pytest.approx(1.0)


def test_cosine_is_symmetric_and_bounded():
    rng = np.random.default_rng(7)
    a = rng.normal(size=64)
    b = rng.normal(size=64)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0


def test_degenerate_inputs_score_zero():
    assert cosine_similarity(np.zeros(4), np.ones(4)) == 0.0
    assert cosine_similarity(np.ones(4), np.ones(5)) == 0.0
    assert cosine_similarity(np.array([]), np.array([])) == 0.0


def test_score_is_rounded_percentage():
    assert similarity_to_score(0.83) == 83.0
    assert similarity_to_score(0.123456) == 12.35


def test_best_match_picks_highest_similarity():
    query = np.array([1.0, 0.0, 0.0])
    enrolled = [np.array([0.0, 1.0, 0.0]), np.array([0.9, 0.1, 0.0]), np.array([-1.0, 0.0, 0.0])]
    match = best_match(query, enrolled)
    assert match.embedding_index == 1
    assert match.score == similarity_to_score(match.similarity)


def test_coerce_descriptor_rejects_garbage():
    assert coerce_descriptor(None) is None
    assert coerce_descriptor([]) is None
    assert coerce_descriptor("0.1,0.2") is None
    assert coerce_descriptor(["a", "b"]) is None
    assert coerce_descriptor([1.0, float("nan")]) is None
    assert coerce_descriptor([[1.0], [2.0]]) is None
    assert coerce_descriptor([1, 2, 3]).tolist() == [1.0, 2.0, 3.0]


def test_normalize_descriptor_enforces_length_and_norm():
    with pytest.raises(ValueError):
        normalize_descriptor([0.1] * 10, min_length=64)
    with pytest.raises(ValueError):
        normalize_descriptor([0.0] * 64, min_length=64)
    vector = normalize_descriptor([2.0] * 64, min_length=64)
    assert np.linalg.norm(vector) == pytest.approx(1.0)


def test_huge_finite_values_do_not_overflow_to_a_match():
    huge = np.full(128, 1e308)
    alternating = np.array([1.0, -1.0] * 64)
    assert cosine_similarity(huge, alternating) == pytest.approx(0.0, abs=1e-12)
    assert cosine_similarity(huge, np.ones(128) / np.sqrt(128)) == pytest.approx(1.0)
    assert cosine_similarity(np.array([np.nan, 1.0]), np.array([1.0, 1.0])) == 0.0
    assert cosine_similarity(np.array([np.inf, 1.0]), np.array([1.0, 1.0])) == 0.0


def test_coerce_descriptor_rejects_overflowing_length():
    assert coerce_descriptor([1e308] * 128) is None
    assert coerce_descriptor([1e150] * 4) is not None
