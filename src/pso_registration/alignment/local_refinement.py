"""
Robust Local Refinement

Bounded, Student's-t weighted ICP run inside each particle evaluation.

Each iteration:
1. Weights the current closest-point correspondences with the t-kernel
2. Solves the weighted rigid alignment in closed form
3. Composes it with the current transform
4. Recomputes correspondences and the robust cost

The loop stops after ``n_iter`` iterations, when the cost drop stays below
``cost_drop_thresh`` for ``n_cost_drop_it`` consecutive iterations, or when
too few correspondences remain.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from .correspondence import Correspondences
from .robust_weighting import estimate_scale, student_t_weights
from .transform import RigidTransform
from ..utils.logging import setup_logger

if TYPE_CHECKING:
    from .particle import RegistrationProblem

logger = setup_logger(__name__)

MIN_CORRESPONDENCES = 3


@dataclass(frozen=True)
class RefinementResult:
    transform: RigidTransform
    cost: float
    n_iterations: int
    stopped_early: bool


def weighted_rigid_transform(
    source_points: np.ndarray,
    target_points: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> Optional[RigidTransform]:
    """
    Estimate the rigid transformation minimizing sum(w_i * |R s_i + t - d_i|^2).

    Args:
        source_points: Source points (N x 3).
        target_points: Corresponding target points (N x 3).
        weights: Non-negative weights (N,). Uniform when None.

    Returns:
        The optimal RigidTransform, or None when the problem is degenerate
        (fewer than 3 pairs or no positive weight).
    """
    n = len(source_points)
    if n < MIN_CORRESPONDENCES:
        return None
    if weights is None:
        weights = np.ones(n)
    total = float(np.sum(weights))
    if not np.isfinite(total) or total <= 0:
        return None
    weights = weights / total

    # Weighted centroids
    source_centroid = weights @ source_points
    target_centroid = weights @ target_points

    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Weighted cross-covariance matrix
    H = (source_centered * weights[:, np.newaxis]).T @ target_centered

    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Ensure proper rotation (det(R) should be 1)
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = target_centroid - R @ source_centroid
    return RigidTransform(R, t)


def score_transform(
    problem: "RegistrationProblem",
    transform: RigidTransform,
) -> Tuple[float, Correspondences, float]:
    """
    Robust cost of a transform against the problem's target.

    Returns:
        Tuple of (cost, correspondences, residual_scale). The cost is inf
        when no valid correspondence exists.
    """
    moved = transform.apply(problem.source)
    corr = problem.search.find(moved)
    if len(corr) == 0:
        logger.debug("No valid correspondences for transform %r; cost is inf.", transform)
        return float("inf"), corr, 0.0
    cfg = problem.config
    scale = estimate_scale(corr.squared_distances, cfg.dof, cfg.scale_iterations)
    weights = student_t_weights(corr.squared_distances, cfg.dof, scale)
    return float(np.sum(weights * corr.squared_distances)), corr, scale


def refine(problem: "RegistrationProblem", transform: RigidTransform) -> RefinementResult:
    """
    Run the bounded robust refinement loop from ``transform``.

    Returns the lowest-cost iterate, which is never worse than the start.
    """
    cfg = problem.config
    cost, corr, scale = score_transform(problem, transform)

    best_transform, best_cost = transform, cost
    current = transform
    stall_streak = 0
    n_iterations = 0
    stopped_early = False

    for iteration in range(cfg.n_iter):
        if len(corr) < MIN_CORRESPONDENCES:
            logger.debug("Not enough valid correspondences (%d). Stopping refinement.", len(corr))
            stopped_early = True
            break

        src = current.apply(problem.source[corr.source_indices])
        dst = problem.target[corr.target_indices]
        weights = student_t_weights(corr.squared_distances, cfg.dof, scale)

        delta = weighted_rigid_transform(src, dst, weights)
        if delta is None:
            stopped_early = True
            break

        current = delta.compose(current)
        new_cost, corr, scale = score_transform(problem, current)
        n_iterations = iteration + 1

        cost_drop = cost - new_cost
        if cfg.verbose:
            logger.info(
                "Refinement iteration %d: cost=%.6e, drop=%.3e, pairs=%d",
                n_iterations,
                new_cost,
                cost_drop,
                len(corr),
            )
        cost = new_cost

        if cost < best_cost:
            best_transform, best_cost = current, cost

        if cost_drop < cfg.cost_drop_thresh:
            stall_streak += 1
            if stall_streak >= cfg.n_cost_drop_it:
                stopped_early = True
                break
        else:
            stall_streak = 0

    if cfg.summary:
        logger.info(
            "Refinement finished after %d/%d iterations (early stop: %s). Final cost: %.6e",
            n_iterations,
            cfg.n_iter,
            stopped_early,
            best_cost,
        )

    return RefinementResult(
        transform=best_transform,
        cost=best_cost,
        n_iterations=n_iterations,
        stopped_early=stopped_early,
    )
