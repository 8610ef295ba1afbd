"""
Particle: one candidate rigid transform of the swarm.

A particle owns its position (parameter vector + transform), its velocity and
its personal best. Evaluation scores the position with the robust
correspondence cost and, when configured, first lets the candidate settle with
a bounded local refinement.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .correspondence import CorrespondenceSearch
from .local_refinement import refine, score_transform
from .transform import PARAM_DIM, RigidTransform, closest_rotation_vector, normalize_params
from ..exceptions import DegenerateGeometryError
from ..utils.config import RegistrationConfig
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def _as_cloud(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] != 3:
        raise DegenerateGeometryError(f"{name} cloud must be an (N x 3) array, got shape {points.shape}")
    if len(points) == 0:
        raise DegenerateGeometryError(f"{name} cloud is empty")
    if not np.all(np.isfinite(points), axis=1).any():
        raise DegenerateGeometryError(f"{name} cloud has no finite point")
    points = points.copy()
    points.setflags(write=False)
    return points


class RegistrationProblem:
    """
    Shared, read-only inputs of a registration run.

    Holds the source and target clouds, the configuration and the k-d tree
    built once on the target. Every particle references the same instance.
    """

    def __init__(self, source: np.ndarray, target: np.ndarray, config: Optional[RegistrationConfig] = None):
        """
        Args:
            source: Moving point cloud (N x 3)
            target: Fixed point cloud (M x 3)
            config: Registration configuration (defaults when None)

        Raises:
            DegenerateGeometryError: If either cloud is empty or malformed
        """
        self.source = _as_cloud(source, "Source")
        self.target = _as_cloud(target, "Target")
        self.config = config if config is not None else RegistrationConfig()
        self.search = CorrespondenceSearch(self.target, max_distance=self.config.max_correspondence_distance)

        finite_source = self.source[np.all(np.isfinite(self.source), axis=1)]
        finite_target = self.target[np.all(np.isfinite(self.target), axis=1)]
        self.source_centroid = finite_source.mean(axis=0)
        self.target_centroid = finite_target.mean(axis=0)
        self.target_diagonal = float(np.linalg.norm(finite_target.max(axis=0) - finite_target.min(axis=0)))

        logger.info(
            "Registration problem with %d source points and %d target points.",
            len(self.source),
            len(self.target),
        )


def sample_initial_position(problem: RegistrationProblem, rng: np.random.Generator) -> np.ndarray:
    """
    Draw a random initial parameter vector.

    Rotation: axis uniform on the sphere, angle uniform in
    [0, init_rotation_deg]. Translation: the centroid-aligning translation for
    that rotation plus a uniform offset in [-r, r]^3, where r is
    ``init_translation_range`` or half the target bounding-box diagonal.
    """
    cfg = problem.config
    axis = rng.normal(size=3)
    norm = np.linalg.norm(axis)
    axis = axis / norm if norm > 0 else np.array([0.0, 0.0, 1.0])
    angle = rng.uniform(0.0, np.radians(cfg.init_rotation_deg))
    rotation = RigidTransform.from_params(np.concatenate([axis * angle, np.zeros(3)])).rotation

    half_range = cfg.init_translation_range
    if half_range is None:
        half_range = 0.5 * problem.target_diagonal
    offset = rng.uniform(-half_range, half_range, size=3)
    translation = problem.target_centroid - rotation @ problem.source_centroid + offset

    return normalize_params(np.concatenate([axis * angle, translation]))


def evaluate_position(problem: RegistrationProblem, params: np.ndarray) -> Tuple[np.ndarray, float, int]:
    """
    Evaluate a parameter vector against the problem.

    Pure function of its inputs so it can run in a worker process.

    Returns:
        Tuple of (params, cost, n_inner_iterations). ``params`` is the refined
        position when local refinement ran, otherwise the input position.
    """
    transform = RigidTransform.from_params(params)
    if problem.config.n_iter > 0:
        result = refine(problem, transform)
        return result.transform.as_params(), result.cost, result.n_iterations
    cost, _, _ = score_transform(problem, transform)
    return np.asarray(params, dtype=float).copy(), cost, 0


class Particle:
    """A candidate transform with PSO velocity and personal-best memory."""

    def __init__(
        self,
        problem: RegistrationProblem,
        position: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Args:
            problem: Shared registration inputs
            position: Initial parameter vector (rotation vector, translation).
                Sampled with ``sample_initial_position`` when None.
            rng: Random generator used for sampling (default: unseeded)
        """
        self.problem = problem
        self.particle_id: Optional[int] = None

        if position is None:
            position = sample_initial_position(problem, rng if rng is not None else np.random.default_rng())
        self._position = normalize_params(position)
        self._transform = RigidTransform.from_params(self._position)
        self.velocity = np.zeros(PARAM_DIM)

        self.cost = float("inf")
        self.best_position = self._position.copy()
        self.best_cost = float("inf")
        self.last_inner_iterations = 0

    # ----------------- State -----------------
    @property
    def position(self) -> np.ndarray:
        return self._position.copy()

    @property
    def transform(self) -> RigidTransform:
        return self._transform

    @property
    def best_transform(self) -> RigidTransform:
        return RigidTransform.from_params(self.best_position)

    def get_transformation(self) -> np.ndarray:
        """Current transform as a 4x4 matrix."""
        return self._transform.as_matrix()

    def _set_position(self, params: np.ndarray) -> None:
        self._position = normalize_params(params)
        self._transform = RigidTransform.from_params(self._position)

    # ----------------- PSO operations -----------------
    def evaluate(self) -> float:
        """
        Score the current position, refining it first when ``n_iter > 0``.

        The position is overwritten by the refined transform and the personal
        best is replaced if the new cost improves on it.

        Returns:
            The current cost after evaluation.
        """
        params, cost, n_inner = evaluate_position(self.problem, self._position)
        self.apply_evaluation(params, cost, n_inner)
        return self.cost

    def apply_evaluation(self, params: np.ndarray, cost: float, n_inner_iterations: int = 0) -> None:
        """Adopt an evaluation result (possibly computed in another process)."""
        self._set_position(params)
        self.cost = float(cost)
        self.last_inner_iterations = int(n_inner_iterations)
        if self.cost < self.best_cost:
            self.best_cost = self.cost
            self.best_position = self._position.copy()

    def update_velocity(
        self,
        global_best: np.ndarray,
        w: float,
        c1: float,
        c2: float,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """
        Canonical PSO velocity update, per parameter dimension:

            v' = w*v + c1*r1*(pbest - x) + c2*r2*(gbest - x)

        with r1, r2 ~ U[0, 1] drawn independently per dimension from ``rng``.
        The rotation part of pbest and gbest is re-encoded as the equivalent
        rotation vector closest to x, so two nearly equal rotations close to
        pi never produce a difference of about 2*pi.
        """
        x = self._position
        r1 = rng.random(PARAM_DIM)
        r2 = rng.random(PARAM_DIM)
        self.velocity = (
            w * self.velocity
            + c1 * r1 * (self._aligned_to_position(self.best_position) - x)
            + c2 * r2 * (self._aligned_to_position(global_best) - x)
        )
        return self.velocity.copy()

    def _aligned_to_position(self, params: np.ndarray) -> np.ndarray:
        params = np.asarray(params, dtype=float).copy()
        params[:3] = closest_rotation_vector(params[:3], self._position[:3])
        return params

    def update_position(self) -> np.ndarray:
        """``x' = x + v'``, followed by rotation re-normalization."""
        self._set_position(self._position + self.velocity)
        return self.position

    def __repr__(self) -> str:
        return (
            f"Particle(id={self.particle_id}, cost={self.cost:.6e}, "
            f"best_cost={self.best_cost:.6e}, transform={self._transform!r})"
        )
