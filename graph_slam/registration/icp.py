"""
Point-to-point ICP registrar built on scipy's cKDTree.
"""

from typing import Optional, Tuple
import logging

import numpy as np
import gtsam
from scipy.spatial import cKDTree

from graph_slam.common.config import RegistrationConfig
from graph_slam.common.data_structures import PointCloud
from graph_slam.registration.registrar import Registrar, RegistrationResult
from graph_slam.utils.math_utils import make_spd, skew

logger = logging.getLogger(__name__)


def best_fit_transform(moving: np.ndarray, fixed: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Least-squares rigid transform mapping ``moving`` onto ``fixed`` (SVD).

    Args:
        moving: Nx3 points
        fixed: Nx3 corresponding points

    Returns:
        (R, t) with fixed ≈ R @ moving + t
    """
    moving_mean = moving.mean(axis=0)
    fixed_mean = fixed.mean(axis=0)

    H = (moving - moving_mean).T @ (fixed - fixed_mean)
    U, _, Vt = np.linalg.svd(H)

    R = Vt.T @ U.T
    if np.linalg.det(R) < 0:
        # Fix reflection
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = fixed_mean - R @ moving_mean
    return R, t


def point_to_point_hessian(points: np.ndarray) -> np.ndarray:
    """
    Gauss-Newton Hessian of point-to-point residuals w.r.t. a right
    perturbation of the transform, in Pose3 tangent order.

    Args:
        points: Nx3 points in the moving (target) frame

    Returns:
        6x6 matrix sum(J^T J)
    """
    points = np.asarray(points, dtype=float)
    q_sum = skew(points.sum(axis=0))
    H = np.zeros((6, 6))
    # -sum(skew(q) @ skew(q)) == sum(|q|^2) I - Q^T Q
    H[:3, :3] = np.sum(points ** 2) * np.eye(3) - points.T @ points
    H[:3, 3:] = q_sum
    H[3:, :3] = -q_sum
    H[3:, 3:] = len(points) * np.eye(3)
    return H


class IcpRegistrar(Registrar):
    """Align two point clouds with iterative closest points."""

    def __init__(self, config: Optional[RegistrationConfig] = None):
        super().__init__(config)

    def _correspondences(self, tree: cKDTree, moved: np.ndarray):
        distances, indices = tree.query(
            moved, distance_upper_bound=self.config.max_correspondence_distance
        )
        valid = np.isfinite(distances)
        return distances, indices, valid

    def _information(self, target_points: np.ndarray, fitness: float) -> np.ndarray:
        variance = max(fitness, self.config.min_residual_variance)
        info = point_to_point_hessian(target_points) / variance
        # Degenerate geometry (planar or linear clouds) leaves directions unobserved
        return make_spd(info, 1e-6)

    def align(
        self,
        source: PointCloud,
        target: PointCloud,
        initial_guess: gtsam.Pose3,
        defer_compute: bool = False
    ) -> RegistrationResult:
        if len(source) < 3 or len(target) < 3:
            logger.debug("Registration skipped: payload has fewer than 3 points")
            return RegistrationResult.failed()

        tree = cKDTree(source.points)
        T = initial_guess.matrix()
        R, t = T[:3, :3].copy(), T[:3, 3].copy()

        iterations = 0 if defer_compute else self.config.max_iterations
        for _ in range(iterations):
            moved = target.points @ R.T + t
            _, indices, valid = self._correspondences(tree, moved)
            if valid.sum() < 3:
                break
            dR, dt = best_fit_transform(moved[valid], source.points[indices[valid]])
            R, t = dR @ R, dR @ t + dt
            step = np.linalg.norm(dt) + np.linalg.norm(dR - np.eye(3))
            if step < self.config.convergence_threshold:
                break

        moved = target.points @ R.T + t
        distances, _, valid = self._correspondences(tree, moved)
        overlap = float(valid.mean())
        if valid.sum() < 3:
            return RegistrationResult.failed(overlap=overlap)
        fitness = float(np.mean(distances[valid] ** 2))

        success = overlap >= self.config.min_overlap
        if not defer_compute:
            success = success and fitness <= self.config.max_fitness_score
        if not success:
            logger.debug(f"Registration rejected: overlap={overlap:.2f}, fitness={fitness:.4f}")
            return RegistrationResult.failed(fitness_score=fitness, overlap=overlap)

        return RegistrationResult(
            success=True,
            relative_transform=gtsam.Pose3(gtsam.Rot3(R), gtsam.Point3(*t)),
            fitness_score=fitness,
            information=self._information(target.points[valid], fitness),
            overlap=overlap,
            deferred=defer_compute,
        )
