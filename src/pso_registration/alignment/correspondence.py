"""
Nearest-neighbor correspondence search against a fixed target cloud.

The k-d tree is built once per target and only queried afterwards, so a single
instance is shared read-only by every particle evaluation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..exceptions import DegenerateGeometryError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class Correspondences:
    """Valid (source, target) pairs with their squared distances."""

    source_indices: np.ndarray
    target_indices: np.ndarray
    squared_distances: np.ndarray

    def __len__(self) -> int:
        return int(self.source_indices.shape[0])


class CorrespondenceSearch:
    """
    Closest-point correspondences from query points to a fixed target cloud.

    Points without a usable match (non-finite coordinates, or a nearest
    neighbor beyond ``max_distance``) are left out of the result rather than
    failing the whole query. Non-finite target rows are never indexed;
    returned target indices refer to rows of the original target array.
    """

    def __init__(self, target: np.ndarray, max_distance: Optional[float] = None):
        """
        Args:
            target: Target point cloud (M x 3) with at least one finite point.
            max_distance: Optional maximum distance for a valid correspondence.
        """
        target = np.asarray(target, dtype=float)
        if target.ndim != 2 or target.shape[1] != 3 or len(target) == 0:
            raise DegenerateGeometryError(
                f"Correspondence search needs a non-empty (M x 3) target, got shape {target.shape}"
            )
        self._target_rows = np.flatnonzero(np.all(np.isfinite(target), axis=1))
        if len(self._target_rows) == 0:
            raise DegenerateGeometryError("Correspondence search needs a target with at least one finite point")
        if len(self._target_rows) < len(target):
            logger.warning(
                "Excluding %d non-finite target points from the correspondence search.",
                len(target) - len(self._target_rows),
            )
        self.max_distance = max_distance
        self.n_target = len(self._target_rows)

        build_start = time.time()
        self._nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target[self._target_rows])
        logger.debug(
            "KD-Tree built on %d target points in %.4f s.",
            self.n_target,
            time.time() - build_start,
        )

    def find(self, points: np.ndarray) -> Correspondences:
        """
        Find closest target points for every query point.

        Args:
            points: Query points (N x 3), typically the transformed source.

        Returns:
            Correspondences restricted to valid pairs.
        """
        points = np.asarray(points, dtype=float)
        finite = np.all(np.isfinite(points), axis=1) if len(points) else np.zeros(0, dtype=bool)
        query_idx = np.flatnonzero(finite)

        if len(query_idx) == 0:
            empty = np.empty(0, dtype=np.intp)
            return Correspondences(empty, empty.copy(), np.empty(0, dtype=float))

        distances, indices = self._nbrs.kneighbors(points[query_idx])
        distances = distances.ravel()
        indices = self._target_rows[indices.ravel()]

        if self.max_distance is not None:
            valid = distances <= self.max_distance
            query_idx = query_idx[valid]
            indices = indices[valid]
            distances = distances[valid]

        return Correspondences(query_idx, indices, distances ** 2)
