"""
Voxel Grid Downsampling

Reduces a point cloud to one representative per occupied cubic voxel. The
representative is the centroid of the points falling in the voxel.
"""

from __future__ import annotations

from typing import Union

import numpy as np

from .point_set import PointSet
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


def voxelgrid_sampling(points: Union[np.ndarray, PointSet], leaf_size: float) -> PointSet:
    """
    Downsample points by averaging them per voxel of side `leaf_size`.

    Voxel coordinates are floor(p / leaf_size). Output points are ordered by
    voxel key, so a fixed input and leaf size always produce the same result.
    Covariances of an input PointSet are not carried over; they have to be
    re-estimated on the downsampled set.

    Args:
        points: (N, 3) array or PointSet
        leaf_size: Voxel edge length (> 0)

    Returns:
        PointSet with at most one point per occupied voxel

    Raises:
        ValueError: If leaf_size is not strictly positive or points are not (N, 3+)
    """
    if not leaf_size > 0:
        raise ValueError(f"leaf_size must be > 0, got {leaf_size}")

    pts = points.points if isinstance(points, PointSet) else np.asarray(points, dtype=np.float64)
    if pts.size == 0:
        return PointSet(np.empty((0, 3)))
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError(f"Expected (N, 3+) points, got shape {pts.shape}")
    # Extra columns (intensity, ring, ...) are ignored
    pts = pts[:, :3]

    finite = np.all(np.isfinite(pts), axis=1)
    if not np.all(finite):
        logger.debug("Dropping %d non-finite points before voxelization", int((~finite).sum()))
        pts = pts[finite]
        if len(pts) == 0:
            return PointSet(np.empty((0, 3)))

    keys = np.floor(pts / leaf_size).astype(np.int64)

    # Aggregate sums and counts per unique voxel (vectorized)
    _, inv, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inv = inv.reshape(-1)
    sums = np.zeros((len(counts), 3), dtype=np.float64)
    np.add.at(sums, inv, pts)
    centroids = sums / counts[:, None]

    logger.debug(
        "Voxel grid (leaf %.3f): %d -> %d points", leaf_size, len(pts), len(centroids)
    )
    return PointSet(centroids)
