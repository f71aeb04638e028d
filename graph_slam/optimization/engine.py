"""
Primary + shadow optimization of the pose graph.

The primary optimizer holds the real measurements and produces the pose
estimates. The shadow optimizer mirrors the committed topology with every
measurement replaced by the identity transform while keeping the original
information matrices. Only its marginal covariances are meaningful: they
depend on the graph's information structure and not on the primary solve's
linearization point, unlike covariances chained edge by edge through pose
composition, which degrade after repeated composition.
"""

from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging

import numpy as np
import gtsam

from graph_slam.common.config import OptimizerConfig
from graph_slam.common.data_structures import Edge
from graph_slam.common.errors import OptimizeResult
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.optimization.optimizer import GtsamOptimizer, Optimizer

logger = logging.getLogger(__name__)

OptimizerFactory = Callable[[OptimizerConfig, str], Optimizer]


class OptimizationEngine:
    """Commits staged graph changes into both optimizers and runs the solve."""

    def __init__(
        self,
        config: Optional[OptimizerConfig] = None,
        optimizer_factory: Optional[OptimizerFactory] = None
    ):
        """
        Initialize both optimizers.

        Args:
            config: Solver configuration
            optimizer_factory: Builds an Optimizer from (config, name);
                defaults to GtsamOptimizer
        """
        self.config = config or OptimizerConfig()
        self._factory = optimizer_factory or (lambda cfg, name: GtsamOptimizer(cfg, name))
        self.primary: Optimizer = self._factory(self.config, "primary")
        self.shadow: Optimizer = self._factory(self.config, "shadow")
        self.commit_count = 0

    @property
    def has_committed(self) -> bool:
        return self.commit_count > 0

    def reset(self) -> None:
        self.primary = self._factory(self.config, "primary")
        self.shadow = self._factory(self.config, "shadow")
        self.commit_count = 0

    # Replication

    @staticmethod
    def _solver_edges(graph: PoseGraph) -> List[Edge]:
        """Staged edges that may enter a solver."""
        return [graph.edges[key] for key in graph.staged_edges if graph.edges[key].valid]

    def _replicate(self, optimizer: Optimizer, graph: PoseGraph,
                   identity_measurements: bool) -> Tuple[List[int], List[Tuple[int, int]]]:
        """Queue staged items the optimizer does not know yet."""
        new_vertices, new_edges = [], []
        for vid in graph.staged_vertices:
            if optimizer.has_vertex(vid):
                continue
            vertex = graph.vertex(vid)
            pose = gtsam.Pose3() if identity_measurements else vertex.estimate
            if not optimizer.add_vertex(vid, pose, vertex.fixed):
                raise ValueError(f"vertex {vid} rejected by {type(optimizer).__name__}")
            new_vertices.append(vid)
        for edge in self._solver_edges(graph):
            if optimizer.has_edge(edge.source, edge.target):
                continue
            measurement = gtsam.Pose3() if identity_measurements else edge.measurement
            if not optimizer.add_edge(edge.source, edge.target, measurement, edge.information):
                raise ValueError(f"edge {edge.key} rejected by {type(optimizer).__name__}")
            new_edges.append(edge.key)
        return new_vertices, new_edges

    def _commit(self, optimizer: Optimizer, graph: PoseGraph, identity_measurements: bool) -> bool:
        try:
            new_vertices, new_edges = self._replicate(optimizer, graph, identity_measurements)
        except ValueError as e:
            logger.error(f"Replication failed: {e}")
            for key in graph.staged_edges:
                optimizer.remove_edge(*key)
            for vid in graph.staged_vertices:
                optimizer.remove_vertex(vid)
            return False

        if not new_vertices and not new_edges:
            return True
        if optimizer.initialized:
            return optimizer.update_initialization(new_vertices, new_edges)
        return optimizer.initialize_optimization()

    # Public API

    def optimize(self, graph: PoseGraph, iterations: int) -> OptimizeResult:
        """
        Commit staged items (if any) and iterate the primary solver.

        Args:
            graph: Pose graph whose staging sets are committed
            iterations: Primary solver iterations

        Returns:
            Optimize result; staging sets are untouched on failure
        """
        if not graph.has_staged:
            if not self.has_committed:
                return OptimizeResult.success(0, committed=False)
            return OptimizeResult.success(self.primary.optimize(iterations, True), committed=False)

        n_vertices = len(graph.staged_vertices)
        n_edges = len(graph.staged_edges)

        # (1) shadow graph: identity measurements, batch solve
        if not self._commit(self.shadow, graph, identity_measurements=True):
            return OptimizeResult.failure("shadow graph commit failed")
        self.shadow.optimize(self.config.shadow_iterations, incremental=False)

        # (2) primary graph: initialization or incremental update
        if not self._commit(self.primary, graph, identity_measurements=False):
            return OptimizeResult.failure("primary graph commit failed")

        # (3) iterate, (4) clear staging
        iterations_run = self.primary.optimize(iterations, True)
        graph.clear_staging()
        self.commit_count += 1
        logger.info(f"Commit {self.commit_count}: {n_vertices} vertices, {n_edges} edges, "
                    f"{iterations_run} iterations")
        return OptimizeResult.success(iterations_run, committed=True)

    def marginal_covariances(self, vertex_ids: Iterable[int]) -> Dict[int, np.ndarray]:
        """
        Marginal 6x6 covariances from the shadow graph.

        Raises:
            VertexNotCommitted: if a vertex has not been committed yet
        """
        return self.shadow.compute_marginals(list(vertex_ids))

    def estimates(self, vertex_ids: Iterable[int]) -> Dict[int, gtsam.Pose3]:
        """Primary estimates of the given vertices."""
        return {vid: self.primary.estimate(vid) for vid in vertex_ids}
