"""
Utility Functions Module

This module provides common utility functions used across the pso-registration project.
- Logging
- Typed configuration and YAML loading
- Point cloud filtering (voxel grid)
- Point cloud export
"""

from .logging import setup_logger, set_package_log_level
from .config import (
    AppConfig,
    RegistrationConfig,
    load_config,
    with_overrides,
)
from .point_cloud_filters import (
    to_open3d_cloud,
    create_finite_mask,
    create_classification_mask,
    voxel_grid_filter,
    get_filter_statistics,
)
from .export import save_point_cloud

__all__ = [
    "setup_logger",
    "set_package_log_level",
    "AppConfig",
    "RegistrationConfig",
    "load_config",
    "with_overrides",
    "to_open3d_cloud",
    "create_finite_mask",
    "create_classification_mask",
    "voxel_grid_filter",
    "get_filter_statistics",
    "save_point_cloud",
]
