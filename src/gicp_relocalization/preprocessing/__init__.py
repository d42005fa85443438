"""
Preprocessing Module

This module prepares point clouds for registration:
- Loading and writing point cloud files
- Voxel grid downsampling
- Per-point covariance estimation
- The downsample -> index -> covariance chain producing an IndexedCloud
"""

from .point_set import PointSet
from .downsampling import voxelgrid_sampling
from .covariance import estimate_covariances, regularize_covariances
from .loader import PointCloudLoader, save_point_cloud
from .preprocess import IndexedCloud, preprocess_points

__all__ = [
    "PointSet",
    "voxelgrid_sampling",
    "estimate_covariances",
    "regularize_covariances",
    "PointCloudLoader",
    "save_point_cloud",
    "IndexedCloud",
    "preprocess_points",
]
