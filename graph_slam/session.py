"""
Pose-graph SLAM session.

Owns the pose graph, the primary and shadow optimizers, density control and
the loop-closure search/validation, and wires them to the external Registrar
and MapStore collaborators. Single-threaded; callers serialize access.
"""

from pathlib import Path
from typing import Dict, Optional, Union
import logging

import numpy as np
import gtsam

from graph_slam.common.config import GraphSlamConfig, RegistrationConfig
from graph_slam.common.data_structures import OdometrySample, PointCloud
from graph_slam.common.errors import AddVertexResult, OptimizeResult
from graph_slam.graph.builder import IncrementalBuilder
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.loop_closure.search import CandidateSearch
from graph_slam.loop_closure.validator import CandidateValidator, ValidationSummary
from graph_slam.mapping.density import DensityController
from graph_slam.mapping.map_store import InMemoryMapStore, MapStore
from graph_slam.optimization.engine import OptimizationEngine, OptimizerFactory
from graph_slam.registration.icp import IcpRegistrar
from graph_slam.registration.registrar import Registrar

logger = logging.getLogger(__name__)


class GraphSlamSession:
    """
    Incremental pose-graph SLAM back-end.

    Typical cycle::

        session.add_vertex(sample, cloud)
        session.optimize(5)
        session.search_edge_candidates()
        session.try_best_edge_candidates()
        session.update_map_transforms()
    """

    def __init__(
        self,
        config: Optional[GraphSlamConfig] = None,
        registrar: Optional[Registrar] = None,
        map_store: Optional[MapStore] = None,
        optimizer_factory: Optional[OptimizerFactory] = None
    ):
        """
        Initialize the session.

        Args:
            config: Session configuration
            registrar: Payload registration (defaults to IcpRegistrar)
            map_store: Payload owner (defaults to InMemoryMapStore)
            optimizer_factory: Builds the primary and shadow optimizers
        """
        self.config = config or GraphSlamConfig()
        self.registrar = registrar or IcpRegistrar(self.config.registration)
        self.registrar.configure(self.config.registration)
        self.map_store = map_store or InMemoryMapStore()

        self.graph = PoseGraph()
        self.engine = OptimizationEngine(self.config.optimizer, optimizer_factory)
        self.builder = IncrementalBuilder(self.graph, self.registrar, self.map_store, self.config)
        self.density = DensityController(self.config.density)
        self.search = CandidateSearch(self.config.candidate_search)
        self.validator = CandidateValidator(self.registrar)

        # Last marginal covariance per vertex (6x6, Pose3 tangent order)
        self.marginals: Dict[int, np.ndarray] = {}

    def reset(self) -> None:
        """Drop the whole graph and both optimizers; configuration is kept."""
        for vertex in self.graph.payload_vertices(active_only=False):
            self.map_store.detach_payload(vertex.id)
        self.graph.clear()
        self.engine.reset()
        self.builder.reset()
        self.density.reset()
        self.marginals = {}
        logger.info("Session reset")

    # ========================================================================
    # Graph construction and optimization
    # ========================================================================

    def add_vertex(self, sample: OdometrySample,
                   payload: Optional[PointCloud] = None) -> AddVertexResult:
        """
        Stage a new vertex from a cumulative odometry sample.

        Args:
            sample: Raw odometry pose and covariance
            payload: Optional point cloud observed at this pose

        Returns:
            Result carrying the vertex id, or the failure status
        """
        return self.builder.add_vertex(sample, payload)

    def optimize(self, iterations: int = 5) -> OptimizeResult:
        """
        Commit staged vertices and edges and iterate the primary solver.

        Deferred registrations are refined first. After a commit the primary
        estimates are copied into the graph, payload density is enforced and
        the marginals of the payload vertices are cached. Runs without a
        commit leave the cache untouched.

        Args:
            iterations: Primary solver iterations

        Returns:
            Optimize result; staging is kept on failure so the call can be retried
        """
        self.builder.refine_deferred_edges()
        result = self.engine.optimize(self.graph, iterations)
        if not result.ok:
            logger.error(f"Optimization failed: {result.message}")
            return result
        if not self.engine.has_committed:
            return result

        self._sync_estimates()
        if result.committed:
            self.density.update(self.graph, self.map_store)
            self._cache_marginals()
        return result

    def _sync_estimates(self) -> None:
        estimates = self.engine.estimates(sorted(self.graph.active))
        for vertex_id, pose in estimates.items():
            self.graph.vertex(vertex_id).estimate = pose

    def _cache_marginals(self) -> None:
        # The shadow graph only changes on a commit
        ids = [v.id for v in self.graph.payload_vertices(active_only=True)]
        self.marginals = self.engine.marginal_covariances(ids)

    # ========================================================================
    # Loop closures
    # ========================================================================

    def search_edge_candidates(self) -> int:
        """
        Propose loop-closure candidates among committed payload vertices.

        Returns:
            Number of new candidate pairs
        """
        ids = [v.id for v in self.graph.payload_vertices(active_only=True)]
        if not ids:
            return 0
        missing = [vid for vid in ids if vid not in self.marginals]
        if missing:
            self.marginals.update(self.engine.marginal_covariances(missing))
        return self.search.search(self.graph, {vid: self.marginals[vid] for vid in ids})

    def try_best_edge_candidates(self, limit: Optional[int] = None) -> ValidationSummary:
        """
        Register the most promising candidates and stage the accepted edges.

        Args:
            limit: Registration attempts (defaults to
                ``candidate_validation.max_attempts``)

        Returns:
            Summary of the validation round
        """
        if limit is None:
            limit = self.config.candidate_validation.max_attempts
        if (self.config.candidate_validation.requeue_when_exhausted
                and not self.validator.has_untested(self.graph)):
            requeued = self.validator.requeue_tested_candidates(self.graph)
            if requeued:
                logger.debug(f"Requeued {requeued} tested candidates")

        summary = self.validator.try_best_edge_candidates(self.graph, limit)
        if summary.attempts:
            logger.info(f"Validated {summary.attempts} candidates: "
                        f"{summary.accepted} accepted, {summary.rejected} rejected")
        return summary

    def reset_edge_search(self, vertex_id: Optional[int] = None) -> None:
        """Search again around one vertex, or around all of them."""
        self.search.reset(self.graph, vertex_id)

    # ========================================================================
    # Collaborators
    # ========================================================================

    def update_map_transforms(self) -> bool:
        """
        Push the estimate and marginal of every payload vertex to the map
        store and regenerate it.

        Returns:
            False if the store refused any transform
        """
        ok = True
        for vertex in self.graph.payload_vertices(active_only=True):
            if not self.map_store.set_frame_transform(
                    vertex.id, vertex.estimate, self.marginals.get(vertex.id)):
                logger.warning(f"Map store refused the transform of vertex {vertex.id}")
                ok = False
        self.map_store.regenerate()
        return ok

    def update_registration_config(self, config: RegistrationConfig) -> None:
        """Use ``config`` for all following registrations."""
        self.config = self.config.model_copy(update={'registration': config})
        self.builder.config = self.config
        self.registrar.configure(config)
        logger.info("Registration configuration updated")

    # ========================================================================
    # Inspection
    # ========================================================================

    def estimate(self, vertex_id: int) -> gtsam.Pose3:
        return self.graph.vertex(vertex_id).estimate

    def to_dot(self) -> str:
        """Graphviz dump of the current graph."""
        from graph_slam.diagnostics.graphviz import graph_to_dot
        return graph_to_dot(self.graph)

    def write_dot(self, path: Union[str, Path]) -> None:
        from graph_slam.diagnostics.graphviz import write_dot
        write_dot(self.graph, path)

    def plot(self, title: str = "Pose Graph"):
        """Plotly figure of the current graph."""
        from graph_slam.plotting.graph_plot import plot_pose_graph
        return plot_pose_graph(self.graph, title=title)
