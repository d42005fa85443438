"""
Utilities Module

Configuration, logging and rigid transform helpers.
"""

from .config import AppConfig, load_config
from .logging import setup_logger, configure_logging
from .rigid_transform import (
    skew,
    make_transform,
    se3_exp,
    apply_transform,
    invert_transform,
    rotation_angle,
    transform_difference,
    matrix_to_quaternion,
    quaternion_to_matrix,
    save_transform_matrix,
    load_transform_matrix,
)

__all__ = [
    "AppConfig",
    "load_config",
    "setup_logger",
    "configure_logging",
    "skew",
    "make_transform",
    "se3_exp",
    "apply_transform",
    "invert_transform",
    "rotation_angle",
    "transform_difference",
    "matrix_to_quaternion",
    "quaternion_to_matrix",
    "save_transform_matrix",
    "load_transform_matrix",
]
