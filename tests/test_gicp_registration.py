"""
Tests for the GICP registration engine.

These tests focus on correctness of the recovered transform, the
Levenberg-Marquardt step acceptance and the non-convergence paths on
synthetic data.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from gicp_relocalization.acceleration.kdtree import KdTree
from gicp_relocalization.alignment.gicp_registration import GICPRegistration
from gicp_relocalization.preprocessing.covariance import estimate_covariances
from gicp_relocalization.preprocessing.point_set import PointSet
from gicp_relocalization.preprocessing.preprocess import IndexedCloud
from gicp_relocalization.utils.config import RegistrationConfig
from gicp_relocalization.utils.rigid_transform import (
    apply_transform,
    invert_transform,
    make_transform,
    transform_difference,
)


def _make_random_cloud(n: int = 3000, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate covariance
    return rng.normal(size=(n, 3)) * np.array([10.0, 5.0, 2.0])


def _rotation(deg_x: float = 0.0, deg_y: float = 0.0, deg_z: float = 0.0) -> np.ndarray:
    rx, ry, rz = np.deg2rad([deg_x, deg_y, deg_z])
    Rx = np.array([[1, 0, 0], [0, np.cos(rx), -np.sin(rx)], [0, np.sin(rx), np.cos(rx)]])
    Ry = np.array([[np.cos(ry), 0, np.sin(ry)], [0, 1, 0], [-np.sin(ry), 0, np.cos(ry)]])
    Rz = np.array([[np.cos(rz), -np.sin(rz), 0], [np.sin(rz), np.cos(rz), 0], [0, 0, 1]])
    return Rz @ Ry @ Rx


def _indexed(points: np.ndarray, k: int = 20) -> IndexedCloud:
    tree = KdTree(points)
    return IndexedCloud(points=estimate_covariances(points, k, tree=tree), tree=tree)


def _tight_gicp(**overrides) -> GICPRegistration:
    params = dict(
        max_iterations=50,
        translation_epsilon=1e-7,
        rotation_epsilon_deg=1e-5,
    )
    params.update(overrides)
    return GICPRegistration(**params)


def test_self_registration_from_identity_is_immediately_converged():
    cloud = _indexed(_make_random_cloud(seed=1))

    result = GICPRegistration().align(cloud, cloud)

    assert result.converged
    assert result.iterations == 1
    assert result.num_inliers == len(cloud)
    np.testing.assert_allclose(result.T_target_source, np.eye(4), atol=1e-12)
    assert result.error == pytest.approx(0.0, abs=1e-12)


def test_identity_recovered_from_small_perturbation():
    cloud = _indexed(_make_random_cloud(seed=2))
    perturbation = make_transform(_rotation(0.5, -0.3, 1.0), [0.05, -0.03, 0.02])

    result = _tight_gicp().align(cloud, cloud, initial_guess=perturbation)

    assert result.converged
    rot_err, trans_err = transform_difference(result.T_target_source, np.eye(4))
    assert rot_err < 1e-3
    assert trans_err < 1e-3


def test_recovers_known_transform():
    """GICP should recover a known rigid transform on noise-free data."""
    target_pts = _make_random_cloud(seed=3)
    T_true = make_transform(_rotation(0.0, 0.5, 2.0), [0.3, -0.2, 0.1])
    source_pts = apply_transform(target_pts, invert_transform(T_true))

    result = _tight_gicp(max_dist_sq=4.0).align(_indexed(target_pts), _indexed(source_pts))

    assert result.converged
    rot_err, trans_err = transform_difference(result.T_target_source, T_true)
    assert rot_err < 1e-3
    assert trans_err < 1e-3


def test_accepted_steps_never_increase_error():
    target_pts = _make_random_cloud(seed=4)
    T_true = make_transform(_rotation(1.0, 0.0, -1.5), [-0.2, 0.25, 0.05])
    source_pts = apply_transform(target_pts, invert_transform(T_true))

    result = GICPRegistration(max_dist_sq=4.0).align(_indexed(target_pts), _indexed(source_pts))

    assert result.converged
    assert result.error_history
    for before, after in result.error_history:
        assert after <= before
    assert result.error <= result.error_history[0][0]


def test_error_sequence_is_non_increasing_across_iterations():
    # Identity covariances give every pair the same weight and the huge
    # threshold keeps every source point matched, so re-matching to the
    # nearest neighbor can only lower the error left by the previous step.
    target_pts = _make_random_cloud(n=1500, seed=8)
    T_true = make_transform(_rotation(2.0, -1.0, 3.0), [0.4, -0.3, 0.2])
    source_pts = apply_transform(target_pts, invert_transform(T_true))
    target = PointSet(target_pts)

    result = GICPRegistration(max_dist_sq=1e6, max_iterations=30).align(
        target, PointSet(source_pts), target_tree=KdTree(target_pts)
    )

    assert result.num_inliers == len(source_pts)
    history = result.error_history
    assert len(history) >= 2
    for (_, after), (next_before, _) in zip(history, history[1:]):
        assert next_before <= after * (1.0 + 1e-9) + 1e-12
    starts = [before for before, _ in history]
    assert all(b <= a * (1.0 + 1e-9) + 1e-12 for a, b in zip(starts, starts[1:]))


def test_no_correspondences_is_not_converged():
    target = _indexed(_make_random_cloud(n=500, seed=5))
    source = _indexed(_make_random_cloud(n=500, seed=6) + 1000.0)
    guess = make_transform(translation=[0.1, 0.0, 0.0])

    result = GICPRegistration().align(target, source, initial_guess=guess)

    assert not result.converged
    assert result.num_inliers == 0
    np.testing.assert_allclose(result.T_target_source, guess)


def test_degenerate_geometry_is_not_converged():
    # Points on a single line leave the rotation about the line unconstrained
    line = np.column_stack([np.linspace(-5.0, 5.0, 200), np.zeros(200), np.zeros(200)])
    cloud = _indexed(line)

    result = GICPRegistration().align(cloud, cloud)

    assert not result.converged
    np.testing.assert_allclose(result.T_target_source, np.eye(4))


def test_empty_inputs_return_initial_guess():
    cloud = _indexed(_make_random_cloud(n=200, seed=7))
    empty = IndexedCloud(points=PointSet(np.empty((0, 3))), tree=KdTree(np.empty((0, 3))))
    guess = make_transform(translation=[1.0, 2.0, 3.0])

    for target, source in ((cloud, empty), (empty, cloud)):
        result = GICPRegistration().align(target, source, initial_guess=guess)
        assert not result.converged
        assert result.iterations == 0
        np.testing.assert_allclose(result.T_target_source, guess)


def test_point_set_target_requires_tree():
    cloud = _indexed(_make_random_cloud(n=200, seed=8))
    gicp = GICPRegistration()

    with pytest.raises(ValueError):
        gicp.align(cloud.points, cloud)

    result = gicp.align(cloud.points, cloud.points, target_tree=cloud.tree)
    assert result.converged


def test_source_without_covariances_is_accepted():
    cloud = _indexed(_make_random_cloud(n=1000, seed=9))
    bare_source = PointSet(cloud.points.points)

    result = GICPRegistration().align(cloud, bare_source)

    assert result.converged
    np.testing.assert_allclose(result.T_target_source, np.eye(4), atol=1e-9)


def test_invalid_parameters_raise():
    with pytest.raises(ValueError):
        GICPRegistration(max_dist_sq=0.0)
    cloud = _indexed(_make_random_cloud(n=100, seed=10))
    with pytest.raises(ValueError):
        GICPRegistration().align(cloud, cloud, initial_guess=np.eye(3))


def test_from_config():
    cfg = RegistrationConfig(max_dist_sq=2.5, max_iterations=7, rotation_epsilon_deg=0.5)
    gicp = GICPRegistration.from_config(cfg)
    assert gicp.max_dist_sq == 2.5
    assert gicp.max_iterations == 7
    assert gicp.rotation_epsilon_rad == pytest.approx(np.deg2rad(0.5))
    assert gicp.translation_epsilon == cfg.translation_epsilon


def test_compute_registration_error():
    cloud = _indexed(_make_random_cloud(n=500, seed=11))
    gicp = GICPRegistration()

    rmse, inlier_ratio = gicp.compute_registration_error(cloud, cloud, np.eye(4))
    assert rmse == pytest.approx(0.0, abs=1e-12)
    assert inlier_ratio == 1.0

    far = make_transform(translation=[1000.0, 0.0, 0.0])
    rmse, inlier_ratio = gicp.compute_registration_error(cloud, cloud, far)
    assert np.isinf(rmse)
    assert inlier_ratio == 0.0
