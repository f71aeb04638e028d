"""
Unit tests for the primary + shadow optimization engine.
"""

import numpy as np
import pytest

try:
    import gtsam
except ImportError:
    pytest.skip("GTSAM not installed", allow_module_level=True)

from graph_slam.common.config import OptimizerConfig
from graph_slam.common.data_structures import OdometryEdge, RegistrationEdge, Vertex
from graph_slam.common.errors import GraphStatus, VertexNotCommitted
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.optimization.engine import OptimizationEngine
from graph_slam.optimization.optimizer import GtsamOptimizer


class FlakyOptimizer(GtsamOptimizer):
    """GTSAM optimizer whose next commit can be forced to fail."""

    def __init__(self, config, name):
        super().__init__(config, name)
        self.fail_next = False

    def _fail(self) -> bool:
        self.fail_next = False
        self._discard_pending()
        return False

    def initialize_optimization(self) -> bool:
        if self.fail_next:
            return self._fail()
        return super().initialize_optimization()

    def update_initialization(self, new_vertices, new_edges) -> bool:
        if self.fail_next:
            return self._fail()
        return super().update_initialization(new_vertices, new_edges)


def translation(x: float) -> gtsam.Pose3:
    return gtsam.Pose3(gtsam.Rot3(), gtsam.Point3(x, 0.0, 0.0))


def two_vertex_graph(information: float = 100.0) -> PoseGraph:
    graph = PoseGraph()
    graph.add_vertex(Vertex(id=0, estimate=gtsam.Pose3(), fixed=True))
    graph.add_vertex(Vertex(id=1, estimate=translation(0.7)))
    graph.add_edge(OdometryEdge(0, 1, translation(1.0), np.eye(6) * information))
    return graph


class TestOptimizationEngine:
    """Test commits into both graphs."""

    def setup_method(self):
        self.engine = OptimizationEngine(OptimizerConfig())
        self.graph = two_vertex_graph()

    def test_nothing_to_do(self):
        result = self.engine.optimize(PoseGraph(), 5)
        assert result.ok
        assert not result.committed
        assert result.iterations == 0

    def test_commit_clears_staging(self):
        result = self.engine.optimize(self.graph, 5)
        assert result.ok
        assert result.committed
        assert not self.graph.has_staged
        assert self.graph.active == {0, 1}
        assert self.engine.commit_count == 1

    def test_primary_estimate(self):
        self.engine.optimize(self.graph, 5)
        pose = self.engine.estimates([1])[1]
        np.testing.assert_allclose(pose.translation(), [1.0, 0.0, 0.0], atol=1e-6)

    def test_shadow_uses_identity_measurements(self):
        self.engine.optimize(self.graph, 5)
        shadow_pose = self.engine.shadow.estimate(1)
        np.testing.assert_allclose(shadow_pose.translation(), np.zeros(3), atol=1e-9)

    def test_shadow_marginals_sum_information(self):
        """Marginal of vertex 1 = prior covariance + edge covariance."""
        self.engine.optimize(self.graph, 5)
        cov = self.engine.marginal_covariances([1])[1]
        expected = 0.01 + self.engine.config.fixed_vertex_sigma ** 2
        np.testing.assert_allclose(np.diag(cov), np.full(6, expected), rtol=1e-3)

    def test_marginals_of_uncommitted_vertex(self):
        self.engine.optimize(self.graph, 5)
        self.graph.add_vertex(Vertex(id=2, estimate=translation(2.0)))
        with pytest.raises(VertexNotCommitted):
            self.engine.marginal_covariances([2])

    def test_empty_staging_runs_primary_only(self):
        self.engine.optimize(self.graph, 5)
        result = self.engine.optimize(self.graph, 3)
        assert result.ok
        assert not result.committed
        assert result.iterations == 3
        assert self.engine.commit_count == 1

    def test_invalid_edges_stay_out_of_solvers(self):
        self.graph.add_edge(RegistrationEdge(1, 0, translation(-1.0), np.eye(6), valid=False))
        assert self.engine.optimize(self.graph, 5).ok
        assert not self.engine.primary.has_edge(1, 0)
        assert not self.engine.shadow.has_edge(1, 0)
        assert (1, 0) in self.graph.edges

    def test_reset(self):
        self.engine.optimize(self.graph, 5)
        self.engine.reset()
        assert not self.engine.has_committed
        assert not self.engine.primary.initialized


class TestOptimizationEngineFailure:
    """Test that failed commits keep staging intact and can be retried."""

    def setup_method(self):
        self.engine = OptimizationEngine(
            OptimizerConfig(),
            optimizer_factory=lambda cfg, name: FlakyOptimizer(cfg, name)
        )
        self.graph = two_vertex_graph()

    def test_primary_failure_preserves_staging(self):
        self.engine.primary.fail_next = True
        result = self.engine.optimize(self.graph, 5)

        assert not result.ok
        assert result.status == GraphStatus.OPTIMIZER_FAILURE
        assert self.graph.staged_vertices == [0, 1]
        assert self.graph.staged_edges == [(0, 1)]
        assert self.graph.active == set()
        assert self.engine.commit_count == 0

    def test_retry_after_primary_failure(self):
        self.engine.primary.fail_next = True
        self.engine.optimize(self.graph, 5)

        result = self.engine.optimize(self.graph, 5)
        assert result.ok
        assert result.committed
        assert not self.graph.has_staged
        # The shadow graph was not committed twice
        assert self.engine.shadow.vertex_count == 2
        assert self.engine.shadow.edge_count == 1

    def test_shadow_failure(self):
        self.engine.shadow.fail_next = True
        result = self.engine.optimize(self.graph, 5)
        assert result.status == GraphStatus.OPTIMIZER_FAILURE
        assert not self.engine.primary.initialized
        assert self.graph.has_staged

        assert self.engine.optimize(self.graph, 5).ok

    def test_incremental_failure(self):
        self.engine.optimize(self.graph, 5)
        self.graph.add_vertex(Vertex(id=2, estimate=translation(2.0)))
        self.graph.add_edge(OdometryEdge(1, 2, translation(1.0), np.eye(6) * 100.0))

        self.engine.primary.fail_next = True
        assert not self.engine.optimize(self.graph, 5).ok
        assert self.graph.staged_vertices == [2]
        assert self.engine.optimize(self.graph, 5).ok
        assert self.graph.active == {0, 1, 2}
