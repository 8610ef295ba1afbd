"""
Tests for Student's-t robust weighting and correspondence search.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.alignment.correspondence import CorrespondenceSearch
from pso_registration.alignment.robust_weighting import (
    estimate_scale,
    least_squares_cost,
    robust_cost,
    student_t_weights,
)
from pso_registration.exceptions import DegenerateGeometryError


def test_weights_follow_student_t_formula():
    sq = np.array([0.0, 1.0, 4.0, 100.0])
    w = student_t_weights(sq, dof=5.0, scale=2.0)

    expected = (5.0 + 1.0) / (5.0 + sq / 2.0)
    assert np.allclose(w, expected)
    # Larger residuals are down-weighted but never discarded
    assert np.all(np.diff(w) < 0)
    assert np.all(w > 0)


def test_zero_residuals_give_zero_cost():
    assert robust_cost(np.zeros(100), dof=5.0) == 0.0


def test_empty_residuals_give_infinite_cost():
    assert robust_cost(np.empty(0), dof=5.0) == float("inf")
    assert least_squares_cost(np.empty(0)) == float("inf")


def test_large_dof_converges_to_least_squares():
    rng = np.random.default_rng(0)
    sq = rng.uniform(0.0, 4.0, size=500) ** 2

    robust = robust_cost(sq, dof=1e12)
    plain = least_squares_cost(sq)

    assert robust == pytest.approx(plain, rel=1e-6)
    assert np.allclose(student_t_weights(sq, dof=1e12, scale=estimate_scale(sq, 1e12)), 1.0, atol=1e-6)


def test_small_dof_reduces_outlier_influence():
    rng = np.random.default_rng(1)
    sq = rng.uniform(0.0, 0.01, size=200)
    with_outliers = np.concatenate([sq, np.full(5, 100.0)])

    plain_increase = least_squares_cost(with_outliers) - least_squares_cost(sq)
    robust_increase = robust_cost(with_outliers, dof=1.0) - robust_cost(sq, dof=1.0)

    assert robust_increase < plain_increase


def test_estimate_scale_is_positive_and_finite():
    assert estimate_scale(np.zeros(10), dof=5.0) > 0
    assert np.isfinite(estimate_scale(np.array([1.0, 2.0, 3.0]), dof=5.0))


def test_correspondence_search_finds_exact_matches():
    rng = np.random.default_rng(2)
    target = rng.normal(size=(200, 3))
    search = CorrespondenceSearch(target)

    corr = search.find(target)

    assert len(corr) == 200
    assert np.array_equal(corr.source_indices, corr.target_indices)
    assert np.allclose(corr.squared_distances, 0.0)


def test_correspondence_gaps_are_excluded():
    target = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    search = CorrespondenceSearch(target, max_distance=0.5)
    query = np.array([
        [0.1, 0.0, 0.0],      # matches target 0
        [np.nan, 0.0, 0.0],   # non-finite: excluded
        [10.0, 10.0, 10.0],   # too far: excluded
        [1.0, 0.2, 0.0],      # matches target 1
    ])

    corr = search.find(query)

    assert len(corr) == 2
    assert corr.source_indices.tolist() == [0, 3]
    assert corr.target_indices.tolist() == [0, 1]
    assert np.allclose(corr.squared_distances, [0.01, 0.04])


def test_correspondence_search_rejects_empty_target():
    with pytest.raises(DegenerateGeometryError):
        CorrespondenceSearch(np.empty((0, 3)))
    with pytest.raises(DegenerateGeometryError):
        CorrespondenceSearch(np.full((3, 3), np.nan))


def test_non_finite_target_rows_are_skipped():
    target = np.array([[np.nan, 0.0, 0.0], [0.0, 0.0, 0.0], [1.0, np.inf, 0.0], [5.0, 0.0, 0.0]])
    search = CorrespondenceSearch(target)

    corr = search.find(np.array([[0.1, 0.0, 0.0], [4.9, 0.0, 0.0]]))

    assert search.n_target == 2
    # Indices refer to rows of the original target
    assert corr.target_indices.tolist() == [1, 3]
    assert np.allclose(corr.squared_distances, [0.01, 0.01])
