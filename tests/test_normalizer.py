"""Tests for vector normalization and cosine similarity."""
import math

import pytest

from embedding_server.errors import DimensionMismatch
from embedding_server.rag.normalizer import (
    average,
    cosine_similarity,
    l2_normalize,
    min_max_normalize,
    normalize,
)


def norm(vector):
    return math.sqrt(sum(v * v for v in vector))


def test_l2_normalize_unit_length():
    """Test that normalized vectors have unit length."""
    result = l2_normalize([3.0, 4.0])
    assert result == pytest.approx([0.6, 0.8])
    assert norm(result) == pytest.approx(1.0)


def test_zero_vector_unchanged():
    """Test that the zero vector is returned as-is."""
    assert l2_normalize([0.0, 0.0, 0.0]) == [0.0, 0.0, 0.0]
    assert normalize([0.0, 0.0]) == [0.0, 0.0]


def test_normalize_components_in_range():
    """Test that every component lies in [-1, 1] after normalization."""
    result = normalize([100.0, -250.0, 3.5, 0.0])
    assert all(-1.0 <= v <= 1.0 for v in result)
    assert norm(result) == pytest.approx(1.0)


def test_normalize_returns_plain_floats():
    """Test that results are JSON-friendly Python floats."""
    result = normalize([1, 2, 2])
    assert isinstance(result, list)
    assert all(type(v) is float for v in result)


def test_cosine_identical_orthogonal_opposite():
    """Test cosine similarity at the extremes."""
    assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_zero_or_empty_is_zero():
    """Test that degenerate vectors score 0.0."""
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_dimension_mismatch():
    """Test that comparing vectors of different length raises."""
    with pytest.raises(DimensionMismatch):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_cosine_is_clamped():
    """Test that rounding never pushes similarity past 1."""
    vector = [0.1] * 768
    assert cosine_similarity(vector, vector) <= 1.0


def test_average_renormalizes():
    """Test that the mean of unit vectors is brought back to unit length."""
    result = average([[1.0, 0.0], [0.0, 1.0]])
    assert result == pytest.approx([math.sqrt(0.5), math.sqrt(0.5)])
    assert norm(result) == pytest.approx(1.0)


def test_average_single_vector_unchanged():
    """Test that a single vector is passed through."""
    assert average([[0.6, 0.8]]) == [0.6, 0.8]


def test_average_dimension_mismatch():
    """Test that averaging vectors of different length raises."""
    with pytest.raises(DimensionMismatch):
        average([[1.0, 0.0], [1.0]])


def test_cosine_is_symmetric():
    """Test that argument order does not change similarity."""
    a, b = [0.3, -1.2, 4.0], [2.5, 0.1, -0.7]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_min_max_normalize_spans_range():
    """Test that min-max scaling maps the extremes to -1 and 1."""
    assert min_max_normalize([2.0, 4.0, 6.0]) == pytest.approx([-1.0, 0.0, 1.0])
    assert min_max_normalize([-10.0, 0.0, 30.0]) == pytest.approx([-1.0, -0.5, 1.0])


def test_min_max_normalize_constant_and_empty():
    """Test that all-equal input maps to zeros and empty stays empty."""
    assert min_max_normalize([3.0, 3.0, 3.0]) == [0.0, 0.0, 0.0]
    assert min_max_normalize([]) == []
