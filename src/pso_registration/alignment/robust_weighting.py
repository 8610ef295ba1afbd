"""
Robust residual weighting based on the Student's t-distribution.

Each squared residual r^2 receives the weight

    w = (dof + 1) / (dof + r^2 / sigma^2)

so large residuals (likely mismatches) are down-weighted without being cut
off. sigma^2 is the residual scale, estimated by fixed-point iteration. As
dof grows, every weight tends to 1 and the robust cost tends to the plain sum
of squared residuals.
"""

from typing import Optional

import numpy as np

# Floor for the residual scale; keeps exact fits (all residuals zero) finite
MIN_SCALE = 1e-12


def student_t_weights(sq_residuals: np.ndarray, dof: float, scale: float) -> np.ndarray:
    """
    Compute Student's-t weights for squared residuals.

    Args:
        sq_residuals: Squared residuals (N,)
        dof: Degrees of freedom (> 0)
        scale: Residual variance sigma^2 (> 0)

    Returns:
        Weights (N,)
    """
    sq_residuals = np.asarray(sq_residuals, dtype=float)
    return (dof + 1.0) / (dof + sq_residuals / max(scale, MIN_SCALE))


def estimate_scale(sq_residuals: np.ndarray, dof: float, n_iterations: int = 5) -> float:
    """
    Estimate the residual variance of a Student's-t model.

    Starts from the mean squared residual and iterates
    ``sigma^2 = mean(w(sigma^2) * r^2)``.
    """
    sq_residuals = np.asarray(sq_residuals, dtype=float)
    if sq_residuals.size == 0:
        return MIN_SCALE
    scale = max(float(np.mean(sq_residuals)), MIN_SCALE)
    for _ in range(n_iterations):
        weights = student_t_weights(sq_residuals, dof, scale)
        scale = max(float(np.mean(weights * sq_residuals)), MIN_SCALE)
    return scale


def robust_cost(
    sq_residuals: np.ndarray,
    dof: float,
    scale: Optional[float] = None,
    n_scale_iterations: int = 5,
) -> float:
    """
    Robust weighted sum of squared residuals.

    Args:
        sq_residuals: Squared residuals of the valid correspondences
        dof: Degrees of freedom of the weighting kernel
        scale: Residual variance; estimated from the residuals when None
        n_scale_iterations: Fixed-point iterations for the scale estimate

    Returns:
        sum(w_i * r_i^2), or inf when there is no residual to score
    """
    sq_residuals = np.asarray(sq_residuals, dtype=float)
    if sq_residuals.size == 0:
        return float("inf")
    if scale is None:
        scale = estimate_scale(sq_residuals, dof, n_scale_iterations)
    weights = student_t_weights(sq_residuals, dof, scale)
    return float(np.sum(weights * sq_residuals))


def least_squares_cost(sq_residuals: np.ndarray) -> float:
    sq_residuals = np.asarray(sq_residuals, dtype=float)
    if sq_residuals.size == 0:
        return float("inf")
    return float(np.sum(sq_residuals))
