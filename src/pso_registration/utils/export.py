"""
Export utilities for registration results.

Writes point clouds (typically the aligned source) to:
- LAZ/LAS via laspy
- NumPy .npy
- Plain-text XYZ (.xyz, .txt, .csv)
- PCD (.pcd) via Open3D, ASCII by default, readable by PCL-based tools
"""

from pathlib import Path
from typing import Optional

import numpy as np

from .logging import setup_logger
from .point_cloud_filters import to_open3d_cloud

logger = setup_logger(__name__)

SUPPORTED_EXTENSIONS = (".las", ".laz", ".npy", ".xyz", ".txt", ".csv", ".pcd")


def _write_pcd(points: np.ndarray, output_path: Path, write_ascii: bool) -> None:
    import open3d as o3d

    if not o3d.io.write_point_cloud(str(output_path), to_open3d_cloud(points), write_ascii=write_ascii):
        raise OSError(f"Open3D could not write point cloud to {output_path}")


def _write_las(points: np.ndarray, output_path: Path, scale: float) -> None:
    import laspy

    header = laspy.LasHeader(point_format=3, version="1.2")
    if len(points):
        header.offsets = np.floor(points.min(axis=0))
    header.scales = np.array([scale, scale, scale])

    las = laspy.LasData(header)
    las.x = points[:, 0]
    las.y = points[:, 1]
    las.z = points[:, 2]
    las.write(str(output_path))


def save_point_cloud(
    points: np.ndarray,
    output_path: str,
    *,
    las_scale: float = 0.001,
    delimiter: Optional[str] = None,
    pcd_ascii: bool = True,
) -> str:
    """
    Save an (N, 3) point cloud; the file extension selects the format.

    Args:
        points: (N, 3) array of point coordinates
        output_path: Destination path (.las, .laz, .npy, .xyz, .txt, .csv, .pcd)
        las_scale: Coordinate resolution for LAS/LAZ output
        delimiter: Column delimiter for text output (default: ',' for .csv, ' ' otherwise)
        pcd_ascii: Write PCD as ASCII (True) or binary (False)

    Returns:
        Path to created file

    Raises:
        ValueError: If the array is not (N, 3) or the extension is unsupported
        OSError: If Open3D fails to write a PCD file
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Expected an (N, 3) point array, got shape {points.shape}")

    output_path = Path(output_path)
    suffix = output_path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ValueError(
            f"Unsupported output format: {output_path.suffix} (supported: {', '.join(SUPPORTED_EXTENSIONS)})"
        )
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if suffix in (".las", ".laz"):
        _write_las(points, output_path, las_scale)
    elif suffix == ".npy":
        np.save(output_path, points)
    elif suffix == ".pcd":
        _write_pcd(points, output_path, pcd_ascii)
    else:
        if delimiter is None:
            delimiter = "," if suffix == ".csv" else " "
        np.savetxt(output_path, points, fmt="%.9g", delimiter=delimiter)

    logger.info(f"Saved {len(points)} points to {output_path}")
    return str(output_path)
