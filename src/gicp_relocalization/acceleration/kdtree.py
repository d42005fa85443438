"""
KD-tree spatial index for exact nearest neighbor queries.

Wraps scikit-learn's NearestNeighbors (kd_tree algorithm) behind the two
queries the registration pipeline needs:
- k nearest neighbors of a batch of query points
- nearest neighbor within a maximum squared distance, or none

The index is built once over a point snapshot and never modified; a changed
point set requires a new KdTree.
"""

from __future__ import annotations

from typing import Optional, Tuple, Union

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..preprocessing.point_set import PointSet
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

# Sentinel index returned when no neighbor lies within range
NO_NEIGHBOR = -1


class KdTree:
    """
    Immutable KD-tree over an (N, 3) point snapshot.

    Distances are returned squared throughout, matching the squared
    correspondence threshold used by the registration rejector.

    Parameters
    ----------
    points : np.ndarray or PointSet
        Points to index
    num_threads : int, default=1
        Parallel jobs used by batch queries
    leaf_size : int, default=30
        Leaf size passed to the underlying KDTree

    Attributes
    ----------
    n_points : int
        Number of indexed points
    """

    def __init__(
        self,
        points: Union[np.ndarray, PointSet],
        num_threads: int = 1,
        leaf_size: int = 30,
    ):
        pts = points.points if isinstance(points, PointSet) else np.asarray(points, dtype=np.float64)
        if pts.size == 0:
            pts = np.empty((0, 3), dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 3:
            raise ValueError(f"Expected Nx3 array of points, got shape {pts.shape}")

        self.num_threads = max(1, int(num_threads))
        self.leaf_size = leaf_size
        self.n_points = int(pts.shape[0])
        self._model: Optional[NearestNeighbors] = None

        if self.n_points > 0:
            self._model = NearestNeighbors(
                n_neighbors=1,
                algorithm="kd_tree",
                leaf_size=leaf_size,
                n_jobs=self.num_threads,
            ).fit(pts)
        logger.debug("Built KD-tree over %d points (leaf_size=%d)", self.n_points, leaf_size)

    def __len__(self) -> int:
        return self.n_points

    def knn_search(self, queries: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find the k nearest indexed points of each query point.

        Args:
            queries: (M, 3) query points, or a single 3-vector
            k: Number of neighbors requested (clamped to the index size)

        Returns:
            Tuple of (squared_distances, indices), each (M, min(k, N)),
            sorted by increasing distance.
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        q = self._as_queries(queries)
        k_eff = min(int(k), self.n_points)

        if k_eff == 0 or len(q) == 0:
            return (
                np.empty((len(q), k_eff), dtype=np.float64),
                np.empty((len(q), k_eff), dtype=np.int64),
            )

        distances, indices = self._model.kneighbors(q, n_neighbors=k_eff)
        return distances**2, indices.astype(np.int64)

    def nearest_neighbor_search(
        self,
        queries: np.ndarray,
        max_sq_dist: float = np.inf,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find the nearest indexed point of each query within `max_sq_dist`.

        Args:
            queries: (M, 3) query points, or a single 3-vector
            max_sq_dist: Squared distance bound (inclusive)

        Returns:
            Tuple of (indices, squared_distances), each (M,). Queries with no
            neighbor in range get index NO_NEIGHBOR and distance inf.
        """
        q = self._as_queries(queries)
        indices = np.full(len(q), NO_NEIGHBOR, dtype=np.int64)
        sq_dists = np.full(len(q), np.inf, dtype=np.float64)
        if self.n_points == 0 or len(q) == 0:
            return indices, sq_dists

        found_sq, found_idx = self.knn_search(q, 1)
        found_sq = found_sq[:, 0]
        in_range = found_sq <= max_sq_dist
        indices[in_range] = found_idx[in_range, 0]
        sq_dists[in_range] = found_sq[in_range]
        return indices, sq_dists

    def nearest(self, query: np.ndarray, max_sq_dist: float = np.inf) -> Optional[Tuple[int, float]]:
        """Single-point variant of nearest_neighbor_search; None when out of range."""
        indices, sq_dists = self.nearest_neighbor_search(np.asarray(query).reshape(1, 3), max_sq_dist)
        if indices[0] == NO_NEIGHBOR:
            return None
        return int(indices[0]), float(sq_dists[0])

    @staticmethod
    def _as_queries(queries: np.ndarray) -> np.ndarray:
        q = np.asarray(queries, dtype=np.float64)
        if q.size == 0:
            return np.empty((0, 3), dtype=np.float64)
        if q.ndim == 1:
            q = q.reshape(1, -1)
        if q.shape[1] != 3:
            raise ValueError(f"Expected query points of shape (M, 3), got {q.shape}")
        return q
