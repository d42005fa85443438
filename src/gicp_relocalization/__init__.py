"""
GICP Relocalization Package

A Python package for localizing a moving sensor against a prior point cloud
map. Live scans are downsampled, given per-point covariances and aligned to
the map with Generalized ICP; the resulting map <- odom transform is
republished at a fixed rate until the next registration converges.
The GICP solver is implemented from scratch on numpy for fine-grained
control over correspondence rejection and convergence.
"""

__version__ = "0.1.0"

from .preprocessing import *
from .acceleration import *
from .alignment import *
from .pipeline import *
from .utils import *

__all__ = [
    "preprocessing",
    "acceleration",
    "alignment",
    "pipeline",
    "utils",
]
