"""
Unit tests for core data structures and operation results.
"""

import numpy as np
import pytest

try:
    import gtsam
except ImportError:
    pytest.skip("GTSAM not installed", allow_module_level=True)

from graph_slam.common.data_structures import (
    EdgeCandidate,
    EdgeKind,
    OdometryEdge,
    OdometrySample,
    PointCloud,
    RegistrationEdge,
    Vertex,
    is_loop_closure
)
from graph_slam.common.errors import (
    AddVertexResult,
    GraphStatus,
    InvalidMeasurement,
    OptimizeResult,
    OptimizerFailure,
    RegistrationFailure,
    VertexNotCommitted
)


class TestOdometrySample:
    """Test odometry sample validation and conversion."""

    def test_valid_sample(self):
        sample = OdometrySample(
            timestamp=1.0,
            position=[1.0, 2.0, 3.0],
            quaternion=[1.0, 0.0, 0.0, 0.0]
        )
        assert sample.is_valid()
        np.testing.assert_allclose(sample.to_pose3().translation(), [1.0, 2.0, 3.0])

    def test_non_finite_position(self):
        sample = OdometrySample(timestamp=0.0, position=[np.nan, 0.0, 0.0],
                                quaternion=[1.0, 0.0, 0.0, 0.0])
        assert not sample.is_valid()

    def test_non_finite_covariance(self):
        cov = np.eye(3)
        cov[1, 1] = np.inf
        sample = OdometrySample(timestamp=0.0, position=np.zeros(3),
                                quaternion=[1.0, 0.0, 0.0, 0.0], cov_position=cov)
        assert not sample.is_valid()

    def test_wrong_shapes(self):
        assert not OdometrySample(timestamp=0.0, position=np.zeros(2),
                                  quaternion=[1.0, 0.0, 0.0, 0.0]).is_valid()
        assert not OdometrySample(timestamp=0.0, position=np.zeros(3),
                                  quaternion=[1.0, 0.0, 0.0, 0.0],
                                  cov_orientation=np.eye(6)).is_valid()

    def test_zero_quaternion(self):
        assert not OdometrySample(timestamp=0.0, position=np.zeros(3),
                                  quaternion=np.zeros(4)).is_valid()

    def test_pose_covariance_order(self):
        sample = OdometrySample(timestamp=0.0, position=np.zeros(3),
                                quaternion=[1.0, 0.0, 0.0, 0.0],
                                cov_position=np.eye(3) * 2.0,
                                cov_orientation=np.eye(3) * 5.0)
        np.testing.assert_allclose(np.diag(sample.pose_covariance()), [5, 5, 5, 2, 2, 2])

    def test_from_pose3(self):
        pose = gtsam.Pose3(gtsam.Rot3.Yaw(0.3), gtsam.Point3(1.0, -1.0, 0.5))
        sample = OdometrySample.from_pose3(pose, timestamp=2.0)
        assert sample.to_pose3().equals(pose, 1e-9)


class TestPointCloud:
    def test_downsample(self):
        cloud = PointCloud(points=np.arange(30, dtype=float).reshape(10, 3))
        assert len(cloud.downsample(0.5)) == 5
        assert cloud.downsample(1.0) is cloud

    def test_transformed(self):
        cloud = PointCloud(points=[[1.0, 0.0, 0.0]])
        pose = gtsam.Pose3(gtsam.Rot3.Yaw(np.pi / 2), gtsam.Point3(0.0, 0.0, 1.0))
        np.testing.assert_allclose(cloud.transformed(pose), [[0.0, 1.0, 1.0]], atol=1e-12)


class TestVertexCandidates:
    """Test candidate bookkeeping on vertices."""

    def setup_method(self):
        self.vertex = Vertex(id=0, estimate=gtsam.Pose3(), payload=PointCloud(np.zeros((3, 3))))
        self.vertex.candidates = {
            5: EdgeCandidate.from_distance(2.0),
            7: EdgeCandidate.from_distance(1.0),
            9: EdgeCandidate.from_distance(3.0),
        }

    def test_missing_edge_error_skips_tested(self):
        assert self.vertex.missing_edge_error() == pytest.approx(6.0)
        self.vertex.candidates[9].tested = True
        assert self.vertex.missing_edge_error() == pytest.approx(3.0)

    def test_best_untested(self):
        target_id, candidate = self.vertex.best_untested_candidate()
        assert target_id == 7
        assert candidate.distance == 1.0

    def test_no_untested(self):
        for candidate in self.vertex.candidates.values():
            candidate.tested = True
        assert self.vertex.best_untested_candidate() is None
        assert self.vertex.missing_edge_error() == 0.0

    def test_zero_distance_candidate_keeps_priority(self):
        candidate = EdgeCandidate.from_distance(0.0)
        assert candidate.error > 0.0

    def test_detach_payload(self):
        payload = self.vertex.detach_payload()
        assert payload is not None
        assert not self.vertex.has_payload
        assert self.vertex.candidates == {}


class TestEdges:
    """Test the tagged edge variant."""

    def test_kinds(self):
        odometry = OdometryEdge(0, 1, gtsam.Pose3(), np.eye(6))
        registration = RegistrationEdge(1, 0, gtsam.Pose3(), np.eye(6), fitness_score=0.2)
        assert odometry.kind == EdgeKind.ODOMETRY
        assert registration.kind == EdgeKind.REGISTRATION
        assert odometry.valid and registration.valid
        assert registration.key == (1, 0)

    def test_loop_closure(self):
        assert not is_loop_closure(OdometryEdge(3, 4, gtsam.Pose3(), np.eye(6)))
        assert is_loop_closure(RegistrationEdge(1, 8, gtsam.Pose3(), np.eye(6)))


class TestResults:
    """Test result objects and their error mapping."""

    def test_success(self):
        result = AddVertexResult.success(3)
        assert result.ok
        assert result.vertex_id == 3
        result.raise_for_status()

    def test_failure_raises_matching_error(self):
        with pytest.raises(InvalidMeasurement):
            AddVertexResult.failure(GraphStatus.INVALID_MEASUREMENT, "nan").raise_for_status()
        with pytest.raises(RegistrationFailure):
            AddVertexResult.failure(GraphStatus.REGISTRATION_FAILURE, "icp").raise_for_status()
        with pytest.raises(OptimizerFailure):
            OptimizeResult.failure("update failed").raise_for_status()

    def test_not_committed_is_key_error(self):
        with pytest.raises(KeyError):
            raise VertexNotCommitted("vertex 4")
