"""
Spatial Alignment Module

This module aligns a moving source point cloud to a fixed target with a hybrid
optimizer: a particle swarm searches globally over rigid transforms while each
particle refines itself with a Student's-t weighted ICP.
"""

from .transform import (
    RigidTransform,
    project_to_rotation,
    normalize_params,
    closest_rotation_vector,
    rotation_error_deg,
    translation_error,
    save_transform_matrix,
    load_transform_matrix,
)
from .correspondence import CorrespondenceSearch, Correspondences
from .robust_weighting import student_t_weights, estimate_scale, robust_cost, least_squares_cost
from .local_refinement import RefinementResult, refine, score_transform, weighted_rigid_transform
from .particle import Particle, RegistrationProblem, evaluate_position, sample_initial_position
from .swarm import Swarm, SwarmState, build_swarm

__all__ = [
    "RigidTransform",
    "project_to_rotation",
    "normalize_params",
    "closest_rotation_vector",
    "rotation_error_deg",
    "translation_error",
    "save_transform_matrix",
    "load_transform_matrix",
    "CorrespondenceSearch",
    "Correspondences",
    "student_t_weights",
    "estimate_scale",
    "robust_cost",
    "least_squares_cost",
    "RefinementResult",
    "refine",
    "score_transform",
    "weighted_rigid_transform",
    "Particle",
    "RegistrationProblem",
    "evaluate_position",
    "sample_initial_position",
    "Swarm",
    "SwarmState",
    "build_swarm",
]
