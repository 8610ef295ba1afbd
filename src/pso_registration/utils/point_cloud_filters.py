"""
Point Cloud Filtering Utilities

Shared utilities for filtering point cloud data before registration.
These functions are used by the loader, the exporter and the command-line driver.
"""

from typing import List, Optional

import numpy as np

from ..exceptions import ConfigurationError


def to_open3d_cloud(points: np.ndarray):
    """Wrap an (N, 3) array in an Open3D point cloud."""
    import open3d as o3d

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(points, dtype=np.float64))
    return pcd


def create_finite_mask(points: np.ndarray) -> np.ndarray:
    """Boolean mask of rows whose three coordinates are all finite."""
    points = np.asarray(points)
    if points.size == 0:
        return np.zeros(len(points), dtype=bool)
    return np.all(np.isfinite(points), axis=1)


def create_classification_mask(
    classification: np.ndarray,
    classification_filter: Optional[List[int]] = None,
) -> np.ndarray:
    """Create a boolean mask for point classification filtering.

    Args:
        classification: Array of classification codes for each point
        classification_filter: List of classification codes to accept.
            If None, every point is accepted.

    Returns:
        Boolean array indicating which points pass the filter (True = accept)

    Examples:
        >>> classes = np.array([1, 2, 2, 3, 2, 1])
        >>> create_classification_mask(classes, classification_filter=[2])
        array([False,  True,  True, False,  True, False])
    """
    if classification_filter is None:
        return np.ones(len(classification), dtype=bool)
    return np.isin(classification, np.array(classification_filter))


def voxel_grid_filter(points: np.ndarray, leaf_size: float) -> np.ndarray:
    """Downsample a point cloud on a regular voxel grid.

    Every occupied voxel of edge ``leaf_size`` is replaced by the centroid of
    the points it contains (Open3D ``voxel_down_sample``). Non-finite points
    are dropped. The output order is unspecified.

    Args:
        points: Nx3 array of point coordinates
        leaf_size: Voxel edge length. 0 returns an unfiltered copy.

    Returns:
        Mx3 array with M <= N

    Raises:
        ConfigurationError: If leaf_size is negative or not finite

    Examples:
        >>> pts = np.array([[0.0, 0.0, 0.0], [0.1, 0.1, 0.1], [2.0, 2.0, 2.0]])
        >>> voxel_grid_filter(pts, 1.0).shape
        (2, 3)
    """
    points = np.asarray(points, dtype=float)
    if not np.isfinite(leaf_size) or leaf_size < 0:
        raise ConfigurationError(f"Voxel leaf size must be a finite value >= 0, got {leaf_size}")
    if leaf_size == 0:
        return points.copy()

    points = points[create_finite_mask(points)]
    if len(points) == 0:
        return points.reshape(0, 3)

    downsampled = to_open3d_cloud(points).voxel_down_sample(voxel_size=float(leaf_size))
    return np.asarray(downsampled.points, dtype=np.float64).reshape(-1, 3)


def get_filter_statistics(total_points: int, filtered_points: int, leaf_size: float = 0.0) -> dict:
    """Generate statistics about point filtering results, for logging.

    Args:
        total_points: Number of points before filtering
        filtered_points: Number of points after filtering
        leaf_size: Voxel leaf size that was used

    Returns:
        Dictionary with counts, retained percentage and a filter description
    """
    percentage = (filtered_points / total_points * 100.0) if total_points > 0 else 0.0
    filter_desc = f"voxel grid (leaf {leaf_size:g})" if leaf_size > 0 else "no filter"
    return {
        "total_points": total_points,
        "filtered_points": filtered_points,
        "percentage": percentage,
        "filter_description": filter_desc,
    }
