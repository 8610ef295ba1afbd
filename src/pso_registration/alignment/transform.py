"""
Rigid Transform Representation

Rotation + translation applied as ``x' = R x + t``. The particle swarm works on
a 6-dimensional parameter vector: a rotation vector (axis * angle, radians)
followed by the translation. Every rotation stored here is projected onto
SO(3), so it stays orthonormal with determinant 1 after any mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from scipy.spatial.transform import Rotation

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

PARAM_DIM = 6


def project_to_rotation(matrix: np.ndarray) -> np.ndarray:
    """
    Project a 3x3 matrix onto the nearest proper rotation (Frobenius norm).

    Args:
        matrix: Approximately orthonormal 3x3 matrix.

    Returns:
        Orthonormal 3x3 matrix with determinant +1.
    """
    U, _, Vt = np.linalg.svd(np.asarray(matrix, dtype=float))
    R = U @ Vt
    # Fix reflection if needed
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1
        R = U @ Vt
    return R


def normalize_params(params: np.ndarray) -> np.ndarray:
    """
    Re-normalize a parameter vector after raw vector arithmetic.

    The rotation vector is mapped to its rotation, projected back onto SO(3)
    and converted to the canonical rotation vector (angle in [0, pi]).
    The translation part is returned unchanged.
    """
    params = np.asarray(params, dtype=float)
    if params.shape != (PARAM_DIM,):
        raise ValueError(f"Expected a parameter vector of length {PARAM_DIM}, got shape {params.shape}")
    R = project_to_rotation(Rotation.from_rotvec(params[:3]).as_matrix())
    out = np.empty(PARAM_DIM)
    out[:3] = Rotation.from_matrix(R).as_rotvec()
    out[3:] = params[3:]
    return out


def closest_rotation_vector(rotvec: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """
    Rotation vector of the same rotation as ``rotvec`` that lies closest to ``reference``.

    A rotation by angle a about axis u equals the rotation by 2*pi - a about
    -u, so near a = pi two nearly equal rotations can have canonical vectors
    almost 2*pi apart. Differences between parameter vectors are taken against
    the closer of the two encodings.
    """
    rotvec = np.asarray(rotvec, dtype=float)
    reference = np.asarray(reference, dtype=float)
    angle = float(np.linalg.norm(rotvec))
    if angle == 0.0:
        return rotvec.copy()
    alternative = rotvec * (1.0 - 2.0 * np.pi / angle)
    if np.linalg.norm(alternative - reference) < np.linalg.norm(rotvec - reference):
        return alternative
    return rotvec.copy()


@dataclass(frozen=True, eq=False)
class RigidTransform:
    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self):
        R = np.asarray(self.rotation, dtype=float)
        t = np.asarray(self.translation, dtype=float).reshape(-1)
        if R.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {R.shape}")
        if t.shape != (3,):
            raise ValueError(f"Translation must have 3 components, got {t.shape}")
        R = project_to_rotation(R)
        R.setflags(write=False)
        t = t.copy()
        t.setflags(write=False)
        object.__setattr__(self, "rotation", R)
        object.__setattr__(self, "translation", t)

    # ----------------- Constructors -----------------
    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "RigidTransform":
        """Build from a 4x4 homogeneous matrix (rotation block is re-projected)."""
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4 matrix, got {matrix.shape}")
        return cls(matrix[:3, :3], matrix[:3, 3])

    @classmethod
    def from_params(cls, params: np.ndarray) -> "RigidTransform":
        """Build from a (rotation vector, translation) parameter vector."""
        params = np.asarray(params, dtype=float)
        if params.shape != (PARAM_DIM,):
            raise ValueError(f"Expected a parameter vector of length {PARAM_DIM}, got shape {params.shape}")
        return cls(Rotation.from_rotvec(params[:3]).as_matrix(), params[3:])

    # ----------------- Conversions -----------------
    def as_params(self) -> np.ndarray:
        out = np.empty(PARAM_DIM)
        out[:3] = Rotation.from_matrix(self.rotation).as_rotvec()
        out[3:] = self.translation
        return out

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    # ----------------- Operations -----------------
    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Apply the transform to a set of points.

        Args:
            points: Point cloud (N x 3).

        Returns:
            Transformed point cloud (N x 3).
        """
        points = np.asarray(points, dtype=float)
        if points.size == 0:
            return points.reshape(0, 3)
        return points @ self.rotation.T + self.translation

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """Return the transform applying ``other`` first, then ``self``."""
        return RigidTransform(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )

    def inverse(self) -> "RigidTransform":
        R_inv = self.rotation.T
        return RigidTransform(R_inv, -R_inv @ self.translation)

    def rotation_angle_deg(self) -> float:
        # Clamp argument to arccos to valid range to avoid NaNs
        cos_theta = max(min((float(np.trace(self.rotation)) - 1.0) * 0.5, 1.0), -1.0)
        return float(np.degrees(np.arccos(cos_theta)))

    def copy(self) -> "RigidTransform":
        return RigidTransform(self.rotation, self.translation)

    def __repr__(self) -> str:
        return (
            f"RigidTransform(angle={self.rotation_angle_deg():.4f} deg, "
            f"translation={np.array2string(self.translation, precision=4)})"
        )


def rotation_error_deg(a: RigidTransform, b: RigidTransform) -> float:
    """Angle of the relative rotation between two transforms, in degrees."""
    return RigidTransform(a.rotation.T @ b.rotation, np.zeros(3)).rotation_angle_deg()


def translation_error(a: RigidTransform, b: RigidTransform) -> float:
    return float(np.linalg.norm(a.translation - b.translation))


def save_transform_matrix(transform: RigidTransform | np.ndarray, output_file: str | Path) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: RigidTransform or 4x4 transformation matrix
        output_file: Path to output file
    """
    matrix = transform.as_matrix() if isinstance(transform, RigidTransform) else np.asarray(transform)
    if matrix.shape != (4, 4):
        raise ValueError(f"Transform must be 4x4 matrix, got {matrix.shape}")
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(output_file, matrix, fmt='%.18e', header='4x4 transformation matrix')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: str | Path) -> RigidTransform:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        RigidTransform read from the 4x4 matrix
    """
    matrix = np.loadtxt(input_file)
    if matrix.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {matrix.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return RigidTransform.from_matrix(matrix)
