"""
Unit tests for mathematical utilities.
"""

import numpy as np
import pytest

try:
    import gtsam
except ImportError:
    pytest.skip("GTSAM not installed", allow_module_level=True)

from graph_slam.utils.math_utils import (
    combine_pose_covariance,
    information_from_covariance,
    mahalanobis_distance,
    make_spd,
    pose3_from_position_quaternion,
    pose3_from_xyz_yaw,
    positional_block,
    propagate_covariance_delta,
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
    skew,
    translation_distance
)


class TestRotations:
    """Test rotation helpers."""

    def test_skew_matches_cross_product(self):
        a = np.array([1.0, 2.0, 3.0])
        b = np.array([-0.5, 0.3, 2.0])
        np.testing.assert_allclose(skew(a) @ b, np.cross(a, b))

    def test_quaternion_roundtrip(self):
        """Test that [w, x, y, z] ordering survives a conversion."""
        q = np.array([np.cos(0.4), 0.0, 0.0, np.sin(0.4)])
        R = quaternion_to_rotation_matrix(q)
        # q and -q are the same rotation
        assert abs(np.dot(rotation_matrix_to_quaternion(R), q)) == pytest.approx(1.0)


class TestPoses:
    """Test Pose3 constructors."""

    def test_position_quaternion(self):
        pose = pose3_from_position_quaternion([1.0, 2.0, 3.0], [1.0, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(pose.translation(), [1.0, 2.0, 3.0])
        np.testing.assert_allclose(pose.rotation().matrix(), np.eye(3), atol=1e-12)

    def test_xyz_yaw(self):
        pose = pose3_from_xyz_yaw(1.0, 0.0, 0.0, np.pi / 2)
        forward = pose.rotation().matrix()[:, 0]
        np.testing.assert_allclose(forward, [0.0, 1.0, 0.0], atol=1e-12)

    def test_translation_distance(self):
        a = pose3_from_xyz_yaw(0.0, 0.0)
        b = pose3_from_xyz_yaw(3.0, 4.0, 0.0, 1.0)
        assert translation_distance(a, b) == pytest.approx(5.0)


class TestCovariance:
    """Test covariance and information helpers."""

    def test_combine_puts_rotation_first(self):
        cov = combine_pose_covariance(np.eye(3) * 2.0, np.eye(3) * 3.0)
        np.testing.assert_allclose(np.diag(cov), [3, 3, 3, 2, 2, 2])
        np.testing.assert_allclose(positional_block(cov), np.eye(3) * 2.0)

    def test_make_spd_floors_eigenvalues(self):
        cov = np.diag([1.0, 0.0, -2.0])
        spd = make_spd(cov, 1e-3)
        eigvals = np.linalg.eigvalsh(spd)
        assert eigvals.min() >= 1e-3 - 1e-12
        np.testing.assert_allclose(spd, spd.T)

    def test_make_spd_keeps_good_covariance(self):
        cov = np.array([[2.0, 0.5], [0.5, 1.0]])
        np.testing.assert_allclose(make_spd(cov, 1e-6), cov)

    def test_information_is_inverse(self):
        cov = np.diag([0.1, 0.2, 0.3, 1.0, 2.0, 4.0])
        info = information_from_covariance(cov)
        np.testing.assert_allclose(info @ cov, np.eye(6), atol=1e-9)

    def test_propagate_identical_covariances(self):
        """Identical cumulative covariances give the floored delta."""
        delta = propagate_covariance_delta(np.eye(6), np.eye(6), 1e-4)
        np.testing.assert_allclose(delta, np.eye(6) * 1e-4, atol=1e-12)

    def test_propagate_growing_covariance(self):
        delta = propagate_covariance_delta(np.eye(6), np.eye(6) * 3.0, 1e-4)
        np.testing.assert_allclose(delta, np.eye(6) * 2.0)

    def test_mahalanobis_identity_is_euclidean(self):
        delta = np.array([3.0, 4.0, 0.0])
        assert mahalanobis_distance(delta, np.eye(3)) == pytest.approx(5.0)

    def test_mahalanobis_scaled(self):
        delta = np.array([2.0, 0.0, 0.0])
        assert mahalanobis_distance(delta, np.eye(3) * 4.0) == pytest.approx(1.0)

    def test_mahalanobis_singular_covariance(self):
        """Singular covariances fall back to the pseudo-inverse."""
        delta = np.array([1.0, 0.0, 0.0])
        distance = mahalanobis_distance(delta, np.diag([1.0, 0.0, 0.0]))
        assert distance == pytest.approx(1.0)
