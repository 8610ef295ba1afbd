"""
Point Cloud Data Loader

This module handles loading and initial validation of point cloud files.
"""

from pathlib import Path
from typing import List, Optional

import numpy as np

from ..exceptions import LoadError
from ..utils.logging import setup_logger
from ..utils.point_cloud_filters import create_classification_mask, create_finite_mask

logger = setup_logger(__name__)

SUPPORTED_EXTENSIONS = ('.las', '.laz', '.npy', '.xyz', '.txt', '.csv', '.pcd')


def _read_pcd(file_path: Path) -> np.ndarray:
    """Read x/y/z from a PCD file (ASCII, binary or binary_compressed) via Open3D."""
    import open3d as o3d

    pcd = o3d.io.read_point_cloud(str(file_path), format="pcd")
    if not pcd.has_points():
        # Open3D reports parse failures as an empty cloud
        raise LoadError(f"Could not read any point from PCD file: {file_path}")
    return np.asarray(pcd.points, dtype=np.float64)


class PointCloudLoader:
    """
    A class for loading point clouds as (N, 3) coordinate arrays.

    Features:
    - LAS/LAZ via laspy (optional classification filter)
    - NumPy .npy arrays
    - Plain-text XYZ (.xyz, .txt, .csv; first three columns)
    - PCD (ASCII and binary) via Open3D
    - Every failure surfaces as LoadError
    """

    def __init__(self, *, classification_filter: Optional[List[int]] = None, drop_non_finite: bool = True):
        """
        Initialize the point cloud loader.

        Args:
            classification_filter: LAS classification codes to keep (None keeps all points)
            drop_non_finite: If True, rows with NaN/inf coordinates are removed
        """
        self.classification_filter = classification_filter
        self.drop_non_finite = drop_non_finite

    def load(self, file_path: str) -> dict:
        """
        Load a point cloud file and return its points and metadata.

        Args:
            file_path: Path to the point cloud file

        Returns:
            dict: A dictionary with 'points' (N x 3 float64) and 'metadata'

        Raises:
            LoadError: If the file is missing, unsupported or cannot be parsed
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise LoadError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise LoadError(f"Unsupported file format: {file_path.suffix}")

        logger.info(f"Loading point cloud data from {file_path}")

        try:
            if suffix in ('.las', '.laz'):
                points = self._read_las(file_path)
            elif suffix == '.npy':
                points = np.load(file_path, allow_pickle=False)
            elif suffix == '.pcd':
                points = _read_pcd(file_path)
            else:
                delimiter = ',' if suffix == '.csv' else None
                points = np.loadtxt(file_path, delimiter=delimiter, ndmin=2)
        except LoadError:
            raise
        except Exception as e:
            logger.error(f"Error loading point cloud data from {file_path}: {e}")
            raise LoadError(f"Could not read point cloud {file_path}: {e}") from e

        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] < 3:
            raise LoadError(f"Expected at least 3 coordinate columns in {file_path}, got shape {points.shape}")
        points = points[:, :3]

        total_points = len(points)
        if self.drop_non_finite:
            points = points[create_finite_mask(points)]
            if len(points) < total_points:
                logger.warning(f"Dropped {total_points - len(points)} non-finite points from {file_path}")

        if len(points) == 0:
            logger.warning(f"No points found in file: {file_path}")

        metadata = {
            'file_path': str(file_path),
            'filename': file_path.name,
            'format': suffix.lstrip('.'),
            'num_points': len(points),
            'file_size_mb': file_path.stat().st_size / (1024 * 1024),
        }
        if len(points):
            metadata['bounds'] = {
                'min': points.min(axis=0).tolist(),
                'max': points.max(axis=0).tolist(),
            }
            metadata['centroid'] = points.mean(axis=0).tolist()

        logger.info(f"Loaded {len(points)} points from {file_path.name}")
        return {
            'points': points,
            'metadata': metadata,
        }

    def load_points(self, file_path: str) -> np.ndarray:
        """Load a point cloud file and return only its (N, 3) coordinates."""
        return self.load(file_path)['points']

    def validate_file(self, file_path: str) -> bool:
        """
        Validate a point cloud file.

        Args:
            file_path: Path to the point cloud file

        Returns:
            True if the file loads and has at least one finite point, False otherwise
        """
        try:
            points = self.load_points(file_path)
        except LoadError as e:
            logger.warning(f"File validation failed for {file_path}: {e}")
            return False
        if len(points) == 0:
            logger.warning(f"No points found in file: {file_path}")
            return False
        logger.info(f"File validated successfully: {file_path}")
        return True

    def _read_las(self, file_path: Path) -> np.ndarray:
        import laspy

        las = laspy.read(file_path)
        if hasattr(las, 'classification'):
            mask = create_classification_mask(np.asarray(las.classification), self.classification_filter)
        else:
            if self.classification_filter is not None:
                logger.warning("Classification not available; proceeding without classification filtering.")
            mask = np.ones(len(las.points), dtype=bool)

        return np.column_stack([
            np.asarray(las.x, dtype=np.float64)[mask],
            np.asarray(las.y, dtype=np.float64)[mask],
            np.asarray(las.z, dtype=np.float64)[mask],
        ])
