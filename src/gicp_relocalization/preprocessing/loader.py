"""
Point Cloud Data Loader

This module handles loading and writing of point cloud files for the
reference map and for recorded scans.

Supported formats:
- PCD via Open3D (DATA ascii, binary or binary_compressed)
- LAS/LAZ via laspy
- NumPy .npy arrays
- Whitespace-separated .xyz/.txt
"""

from pathlib import Path
from typing import Union

import laspy
import numpy as np
import open3d as o3d

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

PathLike = Union[str, Path]

SUPPORTED_SUFFIXES = ('.pcd', '.las', '.laz', '.npy', '.xyz', '.txt')


class PointCloudLoader:
    """
    A class for loading XYZ point coordinates from point cloud files.

    Only coordinates are returned; other per-point attributes (intensity,
    color, ...) are ignored since registration uses geometry alone.
    """

    def load(self, file_path: PathLike) -> np.ndarray:
        """
        Load a point cloud file and return its coordinates.

        Args:
            file_path: Path to the point cloud file

        Returns:
            (N, 3) float64 array of coordinates

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file format is unsupported or invalid
        """
        file_path = Path(file_path)

        if not file_path.exists() or not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        logger.debug(f"Loading point cloud data from {file_path}")

        try:
            if suffix == '.pcd':
                points = _read_pcd(file_path)
            elif suffix in ('.las', '.laz'):
                las = laspy.read(file_path)
                points = np.column_stack([
                    np.asarray(las.x, dtype=np.float64),
                    np.asarray(las.y, dtype=np.float64),
                    np.asarray(las.z, dtype=np.float64),
                ])
            elif suffix == '.npy':
                points = np.load(file_path, allow_pickle=False)
            else:
                points = np.loadtxt(file_path, dtype=np.float64, ndmin=2)
        except ValueError:
            raise
        except Exception as e:
            raise ValueError(f"Error reading point cloud file {file_path}: {e}") from e

        return _as_xyz(points, file_path)

    def validate_file(self, file_path: PathLike) -> bool:
        """
        Check that a file can be loaded and holds at least one point.

        Args:
            file_path: Path to the point cloud file

        Returns:
            True if the file is readable and non-empty
        """
        try:
            return len(self.load(file_path)) > 0
        except (FileNotFoundError, ValueError) as e:
            logger.debug(f"Validation failed for {file_path}: {e}")
            return False


def save_point_cloud(
    points: np.ndarray,
    file_path: PathLike,
    *,
    binary: bool = True,
    compressed: bool = False,
) -> Path:
    """
    Write (N, 3) points to a file whose format follows the suffix.

    Args:
        points: (N, 3) coordinates
        file_path: Output path (.pcd, .las, .laz, .npy, .xyz or .txt)
        binary: For PCD output, write DATA binary (True) or ascii (False)
        compressed: For binary PCD output, write DATA binary_compressed

    Returns:
        The written path
    """
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported file format: {file_path.suffix}")
    points = _as_xyz(points, file_path)

    file_path.parent.mkdir(parents=True, exist_ok=True)

    if suffix == '.pcd':
        _write_pcd(points, file_path, binary=binary, compressed=compressed)
    elif suffix in ('.las', '.laz'):
        header = laspy.LasHeader(point_format=3, version="1.2")
        header.offsets = points.min(axis=0) if len(points) else np.zeros(3)
        header.scales = np.array([0.0001, 0.0001, 0.0001])
        las = laspy.LasData(header)
        las.x = points[:, 0]
        las.y = points[:, 1]
        las.z = points[:, 2]
        las.write(file_path)
    elif suffix == '.npy':
        np.save(file_path, points)
    else:
        np.savetxt(file_path, points, fmt='%.9f')

    logger.debug(f"Wrote {len(points)} points to {file_path}")
    return file_path


def _as_xyz(points: np.ndarray, file_path: Path) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        return np.empty((0, 3))
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"Expected at least 3 coordinate columns in {file_path}, got shape {points.shape}")
    return np.ascontiguousarray(points[:, :3])


def _read_pcd(file_path: Path) -> np.ndarray:
    # Open3D reports read failures on stderr and hands back an empty cloud
    pcd = o3d.io.read_point_cloud(str(file_path), format='pcd')
    points = np.asarray(pcd.points, dtype=np.float64)
    if len(points) == 0:
        raise ValueError(f"No points could be read from PCD file {file_path}")
    return points


def _write_pcd(points: np.ndarray, file_path: Path, *, binary: bool, compressed: bool) -> None:
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points)
    ok = o3d.io.write_point_cloud(
        str(file_path),
        pcd,
        write_ascii=not binary,
        compressed=binary and compressed,
    )
    if not ok:
        raise ValueError(f"Open3D failed to write PCD file {file_path}")
