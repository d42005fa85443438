"""
Point set container shared by the preprocessing and registration stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


def _frozen(array: np.ndarray) -> np.ndarray:
    # Already-frozen arrays are shared; anything writable is copied so the
    # caller's buffer is neither aliased nor flipped to read-only.
    if not array.flags.writeable and array.flags.c_contiguous and array.dtype == np.float64:
        return array
    array = np.array(array, dtype=np.float64, order="C", copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class PointSet:
    """
    Ordered set of 3D points with optional per-point covariances.

    The arrays are read-only: a PointSet is a snapshot that may be read by a
    registration cycle while a newer one is being built, so it is replaced,
    never modified.

    Attributes:
        points: (N, 3) coordinates
        covariances: (N, 3, 3) symmetric PSD matrices, or None before estimation
    """

    points: np.ndarray
    covariances: Optional[np.ndarray] = field(default=None)

    def __post_init__(self) -> None:
        points = np.asarray(self.points, dtype=np.float64)
        if points.size == 0:
            points = points.reshape(0, 3)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Expected Nx3 array of points, got shape {points.shape}")
        object.__setattr__(self, "points", _frozen(points))

        if self.covariances is not None:
            covs = np.asarray(self.covariances, dtype=np.float64)
            if covs.size == 0:
                covs = covs.reshape(0, 3, 3)
            if covs.shape != (len(points), 3, 3):
                raise ValueError(
                    f"Expected covariances of shape {(len(points), 3, 3)}, got {covs.shape}"
                )
            object.__setattr__(self, "covariances", _frozen(covs))

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def empty(self) -> bool:
        return len(self) == 0

    @property
    def has_covariances(self) -> bool:
        return self.covariances is not None

    def with_covariances(self, covariances: np.ndarray) -> "PointSet":
        """Return a new PointSet sharing the points and carrying `covariances`."""
        return PointSet(self.points, covariances)

    @classmethod
    def from_points(cls, points: np.ndarray) -> "PointSet":
        return cls(np.asarray(points, dtype=np.float64))
