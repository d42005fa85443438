"""
Acceleration Module

Spatial indexing for nearest neighbor queries (KD-tree).
"""

from .kdtree import KdTree, NO_NEIGHBOR

__all__ = [
    "KdTree",
    "NO_NEIGHBOR",
]
