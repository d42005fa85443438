"""
Rigid Transform Utilities

Helpers for 4x4 homogeneous transforms mapping source (odometry) coordinates
into target (map) coordinates, the SE(3) exponential used by the registration
update, quaternion conversion for the published message, and plain-text
persistence of transform matrices.

Tangent vectors are ordered [rotation (3), translation (3)].
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .logging import setup_logger

logger = setup_logger(__name__)

# Below this angle the series expansions of the SE(3) left Jacobian are used
_SMALL_ANGLE = 1e-8


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix [v]x of a 3-vector."""
    v = np.asarray(v, dtype=float).reshape(3)
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ]
    )


def skew_batch(vectors: np.ndarray) -> np.ndarray:
    """Stack of skew-symmetric matrices for an (N, 3) array of vectors."""
    vectors = np.asarray(vectors, dtype=float)
    out = np.zeros((len(vectors), 3, 3), dtype=float)
    out[:, 0, 1] = -vectors[:, 2]
    out[:, 0, 2] = vectors[:, 1]
    out[:, 1, 0] = vectors[:, 2]
    out[:, 1, 2] = -vectors[:, 0]
    out[:, 2, 0] = -vectors[:, 1]
    out[:, 2, 1] = vectors[:, 0]
    return out


def make_transform(rotation: np.ndarray | None = None, translation: np.ndarray | None = None) -> np.ndarray:
    """Build a 4x4 homogeneous transform from a rotation matrix and a translation."""
    T = np.eye(4)
    if rotation is not None:
        T[:3, :3] = np.asarray(rotation, dtype=float)
    if translation is not None:
        T[:3, 3] = np.asarray(translation, dtype=float).reshape(3)
    return T


def se3_exp(delta: np.ndarray) -> np.ndarray:
    """
    Exponential map from a 6-vector [omega, v] to a 4x4 rigid transform.

    Args:
        delta: Tangent vector, rotation part first.

    Returns:
        Transform matrix (4 x 4).
    """
    delta = np.asarray(delta, dtype=float).reshape(6)
    omega = delta[:3]
    v = delta[3:]

    theta = float(np.linalg.norm(omega))
    K = skew(omega)
    if theta < _SMALL_ANGLE:
        V = np.eye(3) + 0.5 * K
    else:
        V = (
            np.eye(3)
            + ((1.0 - np.cos(theta)) / theta**2) * K
            + ((theta - np.sin(theta)) / theta**3) * (K @ K)
        )

    return make_transform(Rotation.from_rotvec(omega).as_matrix(), V @ v)


def apply_transform(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    points = np.asarray(points, dtype=float)
    if points.size == 0:
        return points.reshape(0, 3)
    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def invert_transform(transform: np.ndarray) -> np.ndarray:
    """Inverse of a rigid transform without a general matrix inverse."""
    R = transform[:3, :3]
    t = transform[:3, 3]
    return make_transform(R.T, -R.T @ t)


def rotation_angle(rotation: np.ndarray) -> float:
    """Rotation magnitude (radians) of a 3x3 rotation matrix."""
    # Clamp argument to arccos to valid range to avoid NaNs
    cos_theta = (float(np.trace(rotation)) - 1.0) * 0.5
    return float(np.arccos(max(min(cos_theta, 1.0), -1.0)))


def transform_difference(T_a: np.ndarray, T_b: np.ndarray) -> Tuple[float, float]:
    """
    Rotation (radians) and translation distance between two rigid transforms.

    Returns:
        Tuple of (rotation_error, translation_error) of inv(T_a) @ T_b.
    """
    delta = invert_transform(T_a) @ T_b
    return rotation_angle(delta[:3, :3]), float(np.linalg.norm(delta[:3, 3]))


def matrix_to_quaternion(rotation: np.ndarray) -> Tuple[float, float, float, float]:
    """Convert a rotation matrix to a unit quaternion in (x, y, z, w) order."""
    x, y, z, w = Rotation.from_matrix(np.asarray(rotation, dtype=float)).as_quat()
    return float(x), float(y), float(z), float(w)


def quaternion_to_matrix(quaternion) -> np.ndarray:
    """Convert an (x, y, z, w) quaternion to a rotation matrix."""
    q = np.asarray(quaternion, dtype=float).reshape(-1)
    if len(q) != 4:
        raise ValueError(f"Expected 4-element quaternion, got {len(q)}")
    if np.linalg.norm(q) < 1e-12:
        raise ValueError("Quaternion norm is too small (near zero)")
    return Rotation.from_quat(q).as_matrix()


def save_transform_matrix(transform: np.ndarray, output_file: str) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: 4x4 transformation matrix
        output_file: Path to output file
    """
    transform = np.asarray(transform, dtype=float)
    if transform.shape != (4, 4):
        raise ValueError(f"Transform must be 4x4 matrix, got {transform.shape}")
    np.savetxt(output_file, transform, fmt='%.18e', header='4x4 transformation matrix (map <- odom)')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: str) -> np.ndarray:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        4x4 transformation matrix
    """
    transform = np.loadtxt(input_file)
    if transform.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {transform.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return transform
