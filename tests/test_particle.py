"""
Tests for particle evaluation and PSO velocity/position updates.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pso_registration.alignment.particle import (
    Particle,
    RegistrationProblem,
    evaluate_position,
    sample_initial_position,
)
from pso_registration.alignment.transform import RigidTransform, rotation_error_deg
from pso_registration.exceptions import DegenerateGeometryError
from pso_registration.utils.config import RegistrationConfig


def _make_random_cloud(n: int = 300, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n, 3)) * np.array([1.0, 0.5, 0.2])


def _assert_valid_rotation(R: np.ndarray):
    assert np.allclose(R.T @ R, np.eye(3), atol=1e-9)
    assert np.isclose(np.linalg.det(R), 1.0, atol=1e-9)


def test_identity_on_identical_clouds_costs_zero():
    cloud = _make_random_cloud()
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=0))
    particle = Particle(problem, position=np.zeros(6))

    assert particle.evaluate() == 0.0
    assert particle.best_cost == 0.0


def test_problem_rejects_degenerate_clouds():
    cloud = _make_random_cloud(10)
    with pytest.raises(DegenerateGeometryError):
        RegistrationProblem(cloud, np.empty((0, 3)))
    with pytest.raises(DegenerateGeometryError):
        RegistrationProblem(np.empty((0, 3)), cloud)
    with pytest.raises(DegenerateGeometryError):
        RegistrationProblem(cloud[:, :2], cloud)
    with pytest.raises(DegenerateGeometryError):
        RegistrationProblem(np.full((4, 3), np.nan), cloud)


def test_target_with_non_finite_rows_is_usable():
    cloud = _make_random_cloud(seed=12)
    target = cloud.copy()
    target[0] = np.nan
    target[5, 2] = np.inf
    problem = RegistrationProblem(cloud, target, RegistrationConfig(n_iter=0))

    _, cost, _ = evaluate_position(problem, np.zeros(6))

    assert np.isfinite(cost)
    assert np.all(np.isfinite(problem.target_centroid))


def test_source_with_non_finite_rows_is_usable():
    cloud = _make_random_cloud(seed=13)
    source = cloud.copy()
    source[3] = np.nan
    problem = RegistrationProblem(source, cloud, RegistrationConfig(n_iter=5))
    particle = Particle(problem, position=np.array([0.0, 0.0, 0.05, 0.02, 0.0, 0.0]))

    cost = particle.evaluate()

    assert np.isfinite(cost)
    assert np.all(np.isfinite(problem.source_centroid))


def test_velocity_uses_nearest_rotation_encoding():
    """Nearly equal rotations close to pi do not produce a 2*pi velocity jump."""
    cloud = _make_random_cloud(50, seed=14)
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=0))
    x = np.array([np.pi - 0.01, 0.0, 0.0, 0.0, 0.0, 0.0])
    particle = Particle(problem, position=x)
    particle.best_position = x.copy()
    gbest = np.array([-(np.pi - 0.01), 0.0, 0.0, 0.0, 0.0, 0.0])

    v = particle.update_velocity(gbest, 0.0, 1.0, 1.0, np.random.default_rng(0))

    assert np.linalg.norm(v) <= 0.02 + 1e-9
    particle.update_position()
    assert rotation_error_deg(particle.transform, RigidTransform.from_params(x)) <= np.degrees(0.02) + 1e-6


def test_problem_clouds_are_read_only():
    cloud = _make_random_cloud(20)
    problem = RegistrationProblem(cloud, cloud)
    with pytest.raises(ValueError):
        problem.source[0, 0] = 1.0
    # The caller's array is not shared
    cloud[0, 0] = 123.0
    assert problem.target[0, 0] != 123.0


def test_evaluate_without_refinement_keeps_position():
    cloud = _make_random_cloud(seed=1)
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=0))
    start = np.array([0.05, 0.0, 0.0, 0.1, 0.0, 0.0])

    params, cost, n_inner = evaluate_position(problem, start)

    assert np.allclose(params, start)
    assert cost > 0
    assert n_inner == 0


def test_evaluate_with_refinement_overwrites_position():
    cloud = _make_random_cloud(seed=2)
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=30, cost_drop_thresh=0.0, n_cost_drop_it=30))
    particle = Particle(problem, position=np.array([0.0, 0.0, np.radians(5.0), 0.05, 0.0, 0.0]))

    start_cost = evaluate_position(problem, particle.position)
    cost = particle.evaluate()

    assert cost == pytest.approx(start_cost[1])
    assert rotation_error_deg(particle.transform, RigidTransform.identity()) < 0.1
    assert np.allclose(particle.best_position, particle.position)
    assert particle.last_inner_iterations > 0


def test_update_velocity_follows_pso_formula():
    cloud = _make_random_cloud(50, seed=3)
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=0))
    particle = Particle(problem, position=np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.0]))
    particle.evaluate()
    particle.velocity = np.full(6, 0.01)
    particle.best_position = np.array([0.0, 0.1, 0.0, 0.2, 0.0, 0.0])
    gbest = np.array([0.0, 0.0, 0.1, 0.0, 0.0, 0.3])
    x = particle.position

    v = particle.update_velocity(gbest, 0.5, 1.5, 2.0, np.random.default_rng(42))

    draws = np.random.default_rng(42)
    r1 = draws.random(6)
    r2 = draws.random(6)
    expected = 0.5 * np.full(6, 0.01) + 1.5 * r1 * (particle.best_position - x) + 2.0 * r2 * (gbest - x)
    assert np.allclose(v, expected)
    assert np.allclose(particle.velocity, expected)


def test_rotation_stays_valid_after_position_updates():
    cloud = _make_random_cloud(50, seed=4)
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=0))
    rng = np.random.default_rng(5)
    particle = Particle(problem, rng=rng)

    for _ in range(20):
        particle.velocity = rng.normal(scale=2.0, size=6)
        particle.update_position()
        _assert_valid_rotation(particle.transform.rotation)
        assert np.linalg.norm(particle.position[:3]) <= np.pi + 1e-9


def test_position_update_wraps_rotation_vector():
    cloud = _make_random_cloud(50, seed=6)
    problem = RegistrationProblem(cloud, cloud, RegistrationConfig(n_iter=0))
    particle = Particle(problem, position=np.zeros(6))
    particle.velocity = np.array([4.0, 0.0, 0.0, 1.0, 2.0, 3.0])

    particle.update_position()

    expected = RigidTransform.from_params(np.array([4.0, 0.0, 0.0, 1.0, 2.0, 3.0]))
    assert np.allclose(particle.transform.as_matrix(), expected.as_matrix(), atol=1e-9)
    assert np.linalg.norm(particle.position[:3]) <= np.pi + 1e-9


def test_personal_best_is_non_increasing():
    source = _make_random_cloud(seed=7)
    target = RigidTransform.from_params(np.array([0.0, 0.0, 0.4, 0.2, 0.0, 0.0])).apply(source)
    problem = RegistrationProblem(source, target, RegistrationConfig(n_iter=0))
    rng = np.random.default_rng(8)
    particle = Particle(problem, rng=rng)
    particle.evaluate()

    history = [particle.best_cost]
    for _ in range(15):
        particle.velocity = rng.normal(scale=0.3, size=6)
        particle.update_position()
        particle.evaluate()
        history.append(particle.best_cost)
        assert particle.best_cost <= particle.cost

    assert all(b <= a for a, b in zip(history, history[1:]))


def test_sample_initial_position_respects_bounds():
    source = _make_random_cloud(seed=9)
    target = source + np.array([5.0, 0.0, 0.0])
    config = RegistrationConfig(init_rotation_deg=20.0, init_translation_range=0.5)
    problem = RegistrationProblem(source, target, config)
    rng = np.random.default_rng(10)

    for _ in range(50):
        params = sample_initial_position(problem, rng)
        T = RigidTransform.from_params(params)
        assert T.rotation_angle_deg() <= 20.0 + 1e-9
        centered = problem.target_centroid - T.rotation @ problem.source_centroid
        assert np.all(np.abs(T.translation - centered) <= 0.5 + 1e-9)


def test_sampling_is_reproducible_with_seed():
    cloud = _make_random_cloud(seed=11)
    problem = RegistrationProblem(cloud, cloud)

    a = sample_initial_position(problem, np.random.default_rng(3))
    b = sample_initial_position(problem, np.random.default_rng(3))

    assert np.array_equal(a, b)
