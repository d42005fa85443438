"""
Per-point Covariance Estimation

Each point's covariance is the sample covariance of its k nearest neighbors
(the point itself included). The covariances approximate the local surface
orientation and weight the registration residuals.
"""

from __future__ import annotations

from typing import Literal, Optional, Union, TYPE_CHECKING

import numpy as np

from .point_set import PointSet
from ..utils.logging import setup_logger

if TYPE_CHECKING:
    from ..acceleration.kdtree import KdTree

logger = setup_logger(__name__)

# Eigenvalues imposed by plane regularization, smallest first
PLANE_EIGENVALUES = np.array([1e-3, 1.0, 1.0])

# Minimum neighborhood size for a meaningful covariance
MIN_NEIGHBORS = 3

# Added to raw covariances so the registration weights stay invertible
_RAW_EPSILON = 1e-9


def estimate_covariances(
    points: Union[np.ndarray, PointSet],
    num_neighbors: int = 20,
    *,
    tree: Optional["KdTree"] = None,
    num_threads: int = 1,
    regularization: Literal["plane", "none"] = "plane",
) -> PointSet:
    """
    Estimate a covariance for every point from its k nearest neighbors.

    Points that end up with fewer than 3 neighbors (clouds of one or two
    points) get the identity covariance instead of being dropped.

    Args:
        points: (N, 3) array or PointSet
        num_neighbors: Neighborhood size k (>= 3), clamped to N
        tree: Optional KdTree already built over the same points
        num_threads: Parallel jobs for the neighbor queries
        regularization: "plane" normalizes each covariance to a thin disc
            along the local surface; "none" keeps the sample covariance

    Returns:
        New PointSet carrying (N, 3, 3) covariances

    Raises:
        ValueError: If num_neighbors < 3 or the regularization is unknown
    """
    from ..acceleration.kdtree import KdTree

    if num_neighbors < MIN_NEIGHBORS:
        raise ValueError(f"num_neighbors must be >= {MIN_NEIGHBORS}, got {num_neighbors}")
    if regularization not in ("plane", "none"):
        raise ValueError(f"Unknown covariance regularization '{regularization}'")

    point_set = points if isinstance(points, PointSet) else PointSet(points)
    n = len(point_set)
    if n == 0:
        return point_set.with_covariances(np.empty((0, 3, 3)))

    if n < MIN_NEIGHBORS:
        logger.warning(
            "Only %d points available for covariance estimation; using identity covariances.", n
        )
        return point_set.with_covariances(np.tile(np.eye(3), (n, 1, 1)))

    if tree is None:
        tree = KdTree(point_set.points, num_threads=num_threads)
    elif len(tree) != n:
        raise ValueError(f"KdTree indexes {len(tree)} points but the point set has {n}")

    _, indices = tree.knn_search(point_set.points, num_neighbors)
    neighborhoods = point_set.points[indices]  # (N, k, 3)

    mean = neighborhoods.mean(axis=1, keepdims=True)
    centered = neighborhoods - mean
    covs = np.einsum("nki,nkj->nij", centered, centered) / indices.shape[1]

    if regularization == "plane":
        covs = regularize_covariances(covs)
    else:
        covs = 0.5 * (covs + np.transpose(covs, (0, 2, 1))) + _RAW_EPSILON * np.eye(3)

    return point_set.with_covariances(covs)


def regularize_covariances(covariances: np.ndarray) -> np.ndarray:
    """
    Replace the eigenvalues of each covariance with (1e-3, 1, 1).

    Keeps the eigenvectors, so the smallest-variance direction (the local
    surface normal) gets a small variance and the tangent plane unit
    variance. The result is symmetric positive definite.

    Args:
        covariances: (N, 3, 3) symmetric matrices

    Returns:
        (N, 3, 3) regularized covariances
    """
    covariances = np.asarray(covariances, dtype=np.float64)
    if len(covariances) == 0:
        return covariances.reshape(0, 3, 3)
    sym = 0.5 * (covariances + np.transpose(covariances, (0, 2, 1)))
    # eigh returns eigenvalues in ascending order
    _, eigvecs = np.linalg.eigh(sym)
    scaled = eigvecs * PLANE_EIGENVALUES[None, None, :]
    return np.einsum("nik,njk->nij", scaled, eigvecs)
