"""
Tests for the weighted closed-form alignment and the bounded robust refinement loop.
"""

from pathlib import Path
import sys

import numpy as np

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.alignment.local_refinement import refine, score_transform, weighted_rigid_transform
from pso_registration.alignment.particle import RegistrationProblem
from pso_registration.alignment.transform import RigidTransform, rotation_error_deg, translation_error
from pso_registration.utils.config import RegistrationConfig


def _make_random_cloud(n: int = 400, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate covariance
    return rng.normal(size=(n, 3)) * np.array([1.0, 0.5, 0.2])


def _rz(deg: float) -> RigidTransform:
    return RigidTransform.from_params(np.array([0.0, 0.0, np.radians(deg), 0.0, 0.0, 0.0]))


def test_weighted_rigid_transform_recovers_exact_motion():
    rng = np.random.default_rng(3)
    src = _make_random_cloud(100, seed=3)
    true = RigidTransform.from_params(np.array([0.3, -0.1, 0.5, 1.0, 2.0, -0.5]))
    dst = true.apply(src)

    est = weighted_rigid_transform(src, dst, rng.uniform(0.1, 2.0, size=len(src)))

    assert rotation_error_deg(est, true) < 1e-6
    assert translation_error(est, true) < 1e-9


def test_weighted_rigid_transform_degenerate_inputs():
    pts = np.zeros((2, 3))
    assert weighted_rigid_transform(pts, pts) is None

    src = _make_random_cloud(10)
    assert weighted_rigid_transform(src, src, np.zeros(10)) is None


def test_zero_weight_pairs_are_ignored():
    src = _make_random_cloud(60, seed=4)
    true = RigidTransform.from_params(np.array([0.0, 0.2, 0.0, 0.3, 0.0, 0.0]))
    dst = true.apply(src)
    # Corrupt some pairs but give them no weight
    dst[:10] += 5.0
    weights = np.ones(len(src))
    weights[:10] = 0.0

    est = weighted_rigid_transform(src, dst, weights)

    assert rotation_error_deg(est, true) < 1e-6
    assert translation_error(est, true) < 1e-9


def test_refine_recovers_small_misalignment():
    source = _make_random_cloud(seed=5)
    true = RigidTransform.from_params(np.array([0.0, 0.0, np.radians(8.0), 0.1, -0.05, 0.02]))
    target = true.apply(source)
    problem = RegistrationProblem(
        source, target, RegistrationConfig(n_iter=50, cost_drop_thresh=0.0, n_cost_drop_it=50)
    )

    result = refine(problem, RigidTransform.identity())

    assert rotation_error_deg(result.transform, true) < 0.1
    assert translation_error(result.transform, true) < 1e-3
    assert result.cost < score_transform(problem, RigidTransform.identity())[0]


def test_refine_stops_after_stalled_iterations():
    source = _make_random_cloud(seed=6)
    target = _rz(5.0).apply(source)
    # Every drop is below this threshold, so the streak grows each iteration
    problem = RegistrationProblem(
        source, target, RegistrationConfig(n_iter=50, cost_drop_thresh=1e9, n_cost_drop_it=3)
    )

    result = refine(problem, RigidTransform.identity())

    assert result.n_iterations == 3
    assert result.stopped_early


def test_refine_respects_iteration_cap():
    source = _make_random_cloud(seed=7)
    target = _rz(10.0).apply(source)
    problem = RegistrationProblem(
        source, target, RegistrationConfig(n_iter=2, cost_drop_thresh=0.0, n_cost_drop_it=10)
    )

    result = refine(problem, RigidTransform.identity())

    assert result.n_iterations == 2
    assert not result.stopped_early


def test_refine_never_reports_worse_cost_than_start():
    source = _make_random_cloud(seed=8)
    target = _make_random_cloud(seed=9)
    problem = RegistrationProblem(source, target, RegistrationConfig(n_iter=10))
    start = RigidTransform.from_params(np.array([2.5, 0.3, -0.4, 0.5, 0.5, 0.5]))

    result = refine(problem, start)

    assert result.cost <= score_transform(problem, start)[0]
