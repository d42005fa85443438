"""
GICP Registration Implementation

This module implements Generalized ICP (covariance-weighted point-to-plane
ICP) for aligning a live scan (source) to a prior map (target).

Each iteration:
1. Transforms the source by the current estimate and finds the nearest
   target point of every source point
2. Rejects pairs farther apart than the squared distance threshold
3. Weights each residual by the inverse of the combined covariance
   C_target + R C_source R^T and builds the 6x6 normal equations
4. Solves for a pose increment (Levenberg-Marquardt damping) and applies it
   on the right: T <- T * exp(delta)
5. Stops when the increment is below the rotation/translation tolerances
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
import time

import numpy as np

from ..acceleration.kdtree import KdTree
from ..preprocessing.point_set import PointSet
from ..preprocessing.preprocess import IndexedCloud
from ..utils.config import RegistrationConfig
from ..utils.logging import setup_logger
from ..utils.rigid_transform import se3_exp, skew_batch

logger = setup_logger(__name__)

# Keeps the combined covariances invertible for perfectly flat neighborhoods
_COVARIANCE_EPSILON = 1e-9


@dataclass
class RegistrationResult:
    """
    Outcome of one registration run.

    Attributes:
        T_target_source: 4x4 transform mapping source points into the target frame
        converged: True only if the increment fell below tolerance
        iterations: Number of outer iterations performed
        num_inliers: Surviving correspondences of the last linearization
        error: Covariance-weighted sum of squared residuals at the final pose
        H: Last 6x6 normal-equation matrix
        b: Last 6-vector of the normal equations
        error_history: (error before step, error after step) per accepted step
    """

    T_target_source: np.ndarray
    converged: bool = False
    iterations: int = 0
    num_inliers: int = 0
    error: float = float("inf")
    H: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    b: np.ndarray = field(default_factory=lambda: np.zeros(6))
    error_history: List[Tuple[float, float]] = field(default_factory=list)


@dataclass
class _LinearizedSystem:
    H: np.ndarray
    b: np.ndarray
    error: float
    source_points: np.ndarray  # inlier source points, source frame
    target_points: np.ndarray  # matched target points
    weights: np.ndarray  # (n, 3, 3) inverse combined covariances

    @property
    def num_inliers(self) -> int:
        return int(len(self.source_points))


class GICPRegistration:
    """
    Generalized ICP between a target cloud (with KD-tree) and a source cloud.

    Both clouds must carry per-point covariances; a cloud without them is
    treated as isotropic (identity covariances), which reduces the cost to
    point-to-point ICP for that side.
    """

    def __init__(
        self,
        max_dist_sq: float = 1.0,
        max_iterations: int = 20,
        translation_epsilon: float = 1e-3,
        rotation_epsilon_deg: float = 0.1,
        min_correspondences: int = 6,
        lm_init_lambda: float = 1e-6,
        lm_lambda_factor: float = 10.0,
        lm_max_inner_iterations: int = 10,
        max_condition_number: float = 1e12,
    ):
        """
        Initialize GICP parameters.

        Args:
            max_dist_sq: Squared distance above which a correspondence is rejected.
            max_iterations: Maximum number of outer iterations.
            translation_epsilon: Translation increment (map units) below which
                the algorithm is considered converged.
            rotation_epsilon_deg: Rotation increment (degrees) below which the
                algorithm is considered converged.
            min_correspondences: Fewest surviving correspondences for a solvable system.
            lm_init_lambda: Initial Levenberg-Marquardt damping.
            lm_lambda_factor: Damping multiplier on rejected / divisor on accepted steps.
            lm_max_inner_iterations: Damping attempts per outer iteration.
            max_condition_number: Normal equations worse conditioned than this
                are treated as degenerate.
        """
        if max_dist_sq <= 0:
            raise ValueError(f"max_dist_sq must be > 0, got {max_dist_sq}")
        self.max_dist_sq = max_dist_sq
        self.max_iterations = max_iterations
        self.translation_epsilon = translation_epsilon
        # Store rotation epsilon in radians for internal use
        self.rotation_epsilon_rad = np.deg2rad(rotation_epsilon_deg)
        self.min_correspondences = max(3, int(min_correspondences))
        self.lm_init_lambda = lm_init_lambda
        self.lm_lambda_factor = lm_lambda_factor
        self.lm_max_inner_iterations = lm_max_inner_iterations
        self.max_condition_number = max_condition_number

    @classmethod
    def from_config(cls, cfg: RegistrationConfig) -> "GICPRegistration":
        return cls(
            max_dist_sq=cfg.max_dist_sq,
            max_iterations=cfg.max_iterations,
            translation_epsilon=cfg.translation_epsilon,
            rotation_epsilon_deg=cfg.rotation_epsilon_deg,
            min_correspondences=cfg.min_correspondences,
            lm_init_lambda=cfg.lm_init_lambda,
            lm_lambda_factor=cfg.lm_lambda_factor,
            lm_max_inner_iterations=cfg.lm_max_inner_iterations,
            max_condition_number=cfg.max_condition_number,
        )

    def align(
        self,
        target: Union[IndexedCloud, PointSet],
        source: Union[IndexedCloud, PointSet],
        target_tree: Optional[KdTree] = None,
        initial_guess: Optional[np.ndarray] = None,
    ) -> RegistrationResult:
        """
        Estimate the transform that maps `source` onto `target`.

        Args:
            target: Target cloud; an IndexedCloud brings its own KD-tree.
            source: Source cloud.
            target_tree: KD-tree over the target points (required when
                `target` is a bare PointSet).
            initial_guess: Initial 4x4 transform (identity when None).

        Returns:
            RegistrationResult. On empty inputs, too few correspondences or
            a degenerate system the result is returned with converged=False.
        """
        target_set, tree = self._unpack_target(target, target_tree)
        source_set = source.points if isinstance(source, IndexedCloud) else source

        T = np.eye(4) if initial_guess is None else np.array(initial_guess, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"initial_guess must be 4x4, got {T.shape}")
        result = RegistrationResult(T_target_source=T.copy())

        if source_set.empty or target_set.empty:
            logger.warning(
                "GICP called with empty source or target (source=%d, target=%d); "
                "returning the initial guess unconverged.",
                len(source_set),
                len(target_set),
            )
            return result

        target_pts = target_set.points
        target_covs = _covariances_or_identity(target_set)
        source_pts = source_set.points
        source_covs = _covariances_or_identity(source_set)

        lam = self.lm_init_lambda
        start = time.perf_counter()

        for iteration in range(self.max_iterations):
            result.iterations = iteration + 1

            system = self.linearize(target_pts, target_covs, tree, source_pts, source_covs, T)
            result.num_inliers = system.num_inliers
            result.H = system.H
            result.b = system.b
            result.error = system.error

            if system.num_inliers < self.min_correspondences:
                logger.debug(
                    "GICP iteration %d: only %d correspondences within sqrt(%.3f); stopping.",
                    iteration + 1,
                    system.num_inliers,
                    self.max_dist_sq,
                )
                break

            if not self._is_well_conditioned(system.H):
                logger.debug("GICP iteration %d: ill-conditioned normal equations; stopping.", iteration + 1)
                break

            accepted = False
            delta = np.full(6, np.inf)
            for _ in range(self.lm_max_inner_iterations):
                try:
                    delta = np.linalg.solve(system.H + lam * np.eye(6), -system.b)
                except np.linalg.LinAlgError:
                    lam *= self.lm_lambda_factor
                    continue
                if not np.all(np.isfinite(delta)):
                    lam *= self.lm_lambda_factor
                    continue

                T_new = T @ se3_exp(delta)
                new_error = self.compute_error(system, T_new)
                if new_error <= system.error:
                    result.error_history.append((system.error, new_error))
                    result.error = new_error
                    T = T_new
                    lam /= self.lm_lambda_factor
                    accepted = True
                    break
                lam *= self.lm_lambda_factor

            rot_step = float(np.linalg.norm(delta[:3]))
            trans_step = float(np.linalg.norm(delta[3:]))
            logger.debug(
                "Iteration %d: error=%.6e, inliers=%d, |Δθ|=%.3e rad, |Δt|=%.3e, lambda=%.1e%s",
                iteration + 1,
                result.error,
                system.num_inliers,
                rot_step,
                trans_step,
                lam,
                "" if accepted else " (step rejected)",
            )

            small_step = (
                rot_step <= self.rotation_epsilon_rad and trans_step <= self.translation_epsilon
            )
            if small_step:
                # A rejected but negligible step means we already sit at the minimum
                result.converged = True
                break
            if not accepted:
                break

        result.T_target_source = T
        logger.debug(
            "GICP finished in %.4f s (%d iterations, converged=%s, inliers=%d, error=%.6e)",
            time.perf_counter() - start,
            result.iterations,
            result.converged,
            result.num_inliers,
            result.error,
        )
        return result

    def linearize(
        self,
        target_points: np.ndarray,
        target_covs: np.ndarray,
        tree: KdTree,
        source_points: np.ndarray,
        source_covs: np.ndarray,
        T: np.ndarray,
    ) -> _LinearizedSystem:
        """
        Find correspondences at pose T and build the weighted normal equations.

        Returns:
            _LinearizedSystem with H = sum J^T W J, b = sum J^T W e and the
            weighted squared error sum e^T W e over surviving correspondences.
        """
        R = T[:3, :3]
        transformed = source_points @ R.T + T[:3, 3]

        indices, _ = tree.nearest_neighbor_search(transformed, self.max_dist_sq)
        mask = indices >= 0
        if not np.any(mask):
            return _LinearizedSystem(
                H=np.zeros((6, 6)),
                b=np.zeros(6),
                error=0.0,
                source_points=np.empty((0, 3)),
                target_points=np.empty((0, 3)),
                weights=np.empty((0, 3, 3)),
            )

        src = source_points[mask]
        tgt = target_points[indices[mask]]
        src_cov = source_covs[mask]
        tgt_cov = target_covs[indices[mask]]

        # Combined covariance C_t + R C_s R^T (G-ICP formulation)
        combined = tgt_cov + np.einsum("ij,njk,lk->nil", R, src_cov, R)
        combined += _COVARIANCE_EPSILON * np.eye(3)
        weights = np.linalg.inv(combined)

        residuals = tgt - transformed[mask]

        # Jacobian of the residual w.r.t. the right-perturbation [omega, v]
        J = np.empty((len(src), 3, 6))
        J[:, :, :3] = np.einsum("ij,njk->nik", R, skew_batch(src))
        J[:, :, 3:] = -R

        JtW = np.einsum("nji,njk->nik", J, weights)
        H = np.einsum("nij,njk->ik", JtW, J)
        b = np.einsum("nij,nj->i", JtW, residuals)
        error = float(np.einsum("ni,nij,nj->", residuals, weights, residuals))

        return _LinearizedSystem(
            H=H,
            b=b,
            error=error,
            source_points=src,
            target_points=tgt,
            weights=weights,
        )

    @staticmethod
    def compute_error(system: _LinearizedSystem, T: np.ndarray) -> float:
        """Weighted squared error at pose T with the correspondences of `system` held fixed."""
        if system.num_inliers == 0:
            return 0.0
        transformed = system.source_points @ T[:3, :3].T + T[:3, 3]
        residuals = system.target_points - transformed
        return float(np.einsum("ni,nij,nj->", residuals, system.weights, residuals))

    def compute_registration_error(
        self,
        target: Union[IndexedCloud, PointSet],
        source: Union[IndexedCloud, PointSet],
        T: np.ndarray,
        target_tree: Optional[KdTree] = None,
    ) -> Tuple[float, float]:
        """
        Euclidean RMSE and inlier ratio of the source placed at T.

        Args:
            target: Target cloud
            source: Source cloud
            T: Transform mapping source into target frame
            target_tree: KD-tree over the target (when target is a PointSet)

        Returns:
            Tuple of (rmse over inliers, fraction of source points with a
            target neighbor within the distance threshold). RMSE is inf when
            there are no inliers.
        """
        target_set, tree = self._unpack_target(target, target_tree)
        source_set = source.points if isinstance(source, IndexedCloud) else source
        if source_set.empty or target_set.empty:
            logger.warning(
                "compute_registration_error called with empty source or target "
                "(source=%d, target=%d); returning infinite error.",
                len(source_set),
                len(target_set),
            )
            return float("inf"), 0.0

        transformed = source_set.points @ T[:3, :3].T + T[:3, 3]
        indices, sq_dists = tree.nearest_neighbor_search(transformed, self.max_dist_sq)
        valid = indices >= 0
        if not np.any(valid):
            return float("inf"), 0.0
        return float(np.sqrt(np.mean(sq_dists[valid]))), float(np.mean(valid))

    def _is_well_conditioned(self, H: np.ndarray) -> bool:
        if not np.all(np.isfinite(H)):
            return False
        # Singular values in descending order; compare without dividing by zero
        s = np.linalg.svd(H, compute_uv=False)
        return bool(s[-1] > 0.0 and s[0] <= self.max_condition_number * s[-1])

    @staticmethod
    def _unpack_target(
        target: Union[IndexedCloud, PointSet],
        target_tree: Optional[KdTree],
    ) -> Tuple[PointSet, KdTree]:
        if isinstance(target, IndexedCloud):
            return target.points, target_tree if target_tree is not None else target.tree
        if target_tree is None:
            raise ValueError("A KdTree over the target points is required when target is a PointSet")
        return target, target_tree


def _covariances_or_identity(point_set: PointSet) -> np.ndarray:
    if point_set.covariances is not None:
        return point_set.covariances
    logger.debug("Point set without covariances; using identity covariances.")
    return np.broadcast_to(np.eye(3), (len(point_set), 3, 3))
