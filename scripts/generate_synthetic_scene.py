"""
Generate a synthetic prior map and a sequence of displaced scans.

- The map is the surface of a 10 x 10 x 10 room (six walls sampled on a
  regular grid) with two box-shaped obstacles that break its symmetry.
- Each scan re-samples the same scene with sensor noise and expresses it in
  an odometry frame that is offset from the map frame by a small rigid
  transform (translation + yaw), drifting slightly from scan to scan.
- Writes data/synthetic/relocalization/map.pcd and scans/scan_XXX.pcd, plus
  the ground-truth map <- odom transform of the last scan.

Run scripts/run_relocalization.py with --map/--scans on the output to try
the pipeline.
"""
from __future__ import annotations

import argparse
import math
import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).parent.parent / "src"))

from gicp_relocalization.preprocessing.loader import save_point_cloud
from gicp_relocalization.utils.rigid_transform import (
    apply_transform,
    invert_transform,
    make_transform,
    save_transform_matrix,
)


def make_room(size=10.0, spacing=0.1):
    """Points on the six faces of an axis-aligned cube [0, size]^3."""
    ticks = np.arange(int(round(size / spacing)) + 1) * spacing
    U, V = np.meshgrid(ticks, ticks)
    u, v = U.ravel(), V.ravel()
    lo, hi = np.zeros_like(u), np.full_like(u, size)
    faces = [
        np.column_stack([lo, u, v]),
        np.column_stack([hi, u, v]),
        np.column_stack([u, lo, v]),
        np.column_stack([u, hi, v]),
        np.column_stack([u, v, lo]),
        np.column_stack([u, v, hi]),
    ]
    return np.unique(np.vstack(faces), axis=0)


def make_box(corner, extent, spacing=0.1):
    """Surface points of a box standing on the floor."""
    cx, cy, cz = corner
    ex, ey, ez = extent
    xs = cx + np.arange(int(round(ex / spacing)) + 1) * spacing
    ys = cy + np.arange(int(round(ey / spacing)) + 1) * spacing
    zs = cz + np.arange(int(round(ez / spacing)) + 1) * spacing
    parts = []
    for x in (xs[0], xs[-1]):
        Y, Z = np.meshgrid(ys, zs)
        parts.append(np.column_stack([np.full(Y.size, x), Y.ravel(), Z.ravel()]))
    for y in (ys[0], ys[-1]):
        X, Z = np.meshgrid(xs, zs)
        parts.append(np.column_stack([X.ravel(), np.full(X.size, y), Z.ravel()]))
    X, Y = np.meshgrid(xs, ys)
    parts.append(np.column_stack([X.ravel(), Y.ravel(), np.full(X.size, zs[-1])]))
    return np.vstack(parts)


def make_scene(spacing=0.1):
    return np.vstack([
        make_room(10.0, spacing),
        make_box((2.0, 2.0, 0.0), (1.5, 1.0, 2.0), spacing),
        make_box((6.0, 5.5, 0.0), (1.0, 2.5, 1.0), spacing),
    ])


def map_from_odom(step, translation=(0.6, -0.3, 0.1), yaw_deg=2.0, drift=(0.02, 0.01, 0.0)):
    """Ground-truth map <- odom transform for scan `step`."""
    yaw = math.radians(yaw_deg)
    R = np.array([
        [math.cos(yaw), -math.sin(yaw), 0.0],
        [math.sin(yaw), math.cos(yaw), 0.0],
        [0.0, 0.0, 1.0],
    ])
    t = np.asarray(translation) + step * np.asarray(drift)
    return make_transform(R, t)


def make_scan(scene, T_map_odom, keep_ratio=0.6, noise=0.01, seed=0):
    rng = np.random.default_rng(seed)
    idx = rng.choice(len(scene), size=int(keep_ratio * len(scene)), replace=False)
    pts = scene[idx] + noise * rng.standard_normal(size=(len(idx), 3))
    return apply_transform(pts, invert_transform(T_map_odom))


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic relocalization scene")
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(Path(__file__).parent.parent / "data" / "synthetic" / "relocalization"),
        help="Directory receiving map.pcd and scans/",
    )
    parser.add_argument("--num-scans", type=int, default=10, help="Number of scans to write")
    parser.add_argument("--seed", type=int, default=42, help="Seed for scan sampling and noise")
    args = parser.parse_args()

    out = Path(args.output_dir)
    scene = make_scene()

    map_path = save_point_cloud(scene, out / "map.pcd")
    print(f"Wrote: {map_path} ({len(scene)} points)")

    T = np.eye(4)
    for i in range(args.num_scans):
        T = map_from_odom(i)
        scan = make_scan(scene, T, seed=args.seed + i)
        scan_path = save_point_cloud(scan, out / "scans" / f"scan_{i:03d}.pcd")
        print(f"Wrote: {scan_path} ({len(scan)} points)")

    save_transform_matrix(T, str(out / "ground_truth_map_odom.txt"))
    print(f"Wrote: {out / 'ground_truth_map_odom.txt'}")


if __name__ == "__main__":
    main()
