import math

import pytest

from knowledge_rag.retrieval.normalizer import VectorNormalizer


@pytest.fixture
def normalizer():
    return VectorNormalizer()


def test_normalize_produces_unit_vector(normalizer):
    out = normalizer.normalize([3.0, 4.0])

    assert out == pytest.approx([0.6, 0.8])
    assert normalizer.norm(out) == pytest.approx(1.0)


def test_normalize_is_idempotent(normalizer):
    once = normalizer.normalize([1.0, 2.0, 2.0])
    twice = normalizer.normalize(once)

    assert twice == once


def test_zero_vector_is_returned_unchanged_and_degenerate(normalizer):
    out = normalizer.normalize([0.0, 0.0, 0.0])

    assert out == [0.0, 0.0, 0.0]
    assert normalizer.is_degenerate(out)
    assert normalizer.is_degenerate([])
    assert not normalizer.is_degenerate([0.0, 1e-3])


def test_scores_are_mapped_into_unit_interval(normalizer):
    a = normalizer.normalize([1.0, 0.0])
    assert normalizer.similarity(a, a) == pytest.approx(1.0)
    assert normalizer.similarity(a, normalizer.normalize([-1.0, 0.0])) == pytest.approx(0.0)
    assert normalizer.similarity(a, normalizer.normalize([0.0, 1.0])) == pytest.approx(0.5)


def test_to_score_clamps_rounding_overshoot():
    assert VectorNormalizer.to_score(1.0000001) == 1.0
    assert VectorNormalizer.to_score(-1.0000001) == 0.0


def test_similarity_ordering_is_preserved(normalizer):
    a = normalizer.normalize([1.0, 0.2, 0.0])
    b = normalizer.normalize([0.9, 0.3, 0.1])
    c = normalizer.normalize([0.0, 1.0, 1.0])

    assert normalizer.similarity(a, b) > normalizer.similarity(a, c)
    assert math.isclose(normalizer.dot(a, b), normalizer.dot(b, a))
