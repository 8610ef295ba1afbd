"""
Preprocessing Module

Loading of source/target point clouds from disk.
"""

from .loader import PointCloudLoader

__all__ = [
    "PointCloudLoader",
]
