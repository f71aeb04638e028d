"""
Incremental construction of the pose graph from odometry and payloads.

Every new vertex is predicted from the previous estimate and the odometry
delta, linked to its predecessor by an odometry edge and, when both carry a
payload, by a registration edge. A failed registration rolls the vertex back
so the graph never holds half-added state.
"""

from typing import List, Optional
import logging

import numpy as np
import gtsam

from graph_slam.common.config import GraphSlamConfig
from graph_slam.common.data_structures import (
    OdometryEdge,
    OdometrySample,
    PointCloud,
    RegistrationEdge,
    Vertex,
)
from graph_slam.common.errors import AddVertexResult, GraphStatus
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.mapping.map_store import MapStore
from graph_slam.registration.registrar import Registrar
from graph_slam.utils.math_utils import information_from_covariance, propagate_covariance_delta

logger = logging.getLogger(__name__)


class IncrementalBuilder:
    """Turns odometry samples into staged vertices and edges."""

    def __init__(
        self,
        graph: PoseGraph,
        registrar: Registrar,
        map_store: MapStore,
        config: Optional[GraphSlamConfig] = None
    ):
        """
        Initialize the builder.

        Args:
            graph: Pose graph receiving the staged items
            registrar: Aligns the payloads of consecutive vertices
            map_store: Owner of the attached payloads
            config: Session configuration
        """
        self.graph = graph
        self.registrar = registrar
        self.map_store = map_store
        self.config = config or GraphSlamConfig()
        self.reset()

    def reset(self) -> None:
        self.next_id = 0
        self._last_raw_pose = gtsam.Pose3()
        self._last_raw_cov = np.eye(6)

    def add_vertex(self, sample: OdometrySample,
                   payload: Optional[PointCloud] = None) -> AddVertexResult:
        """
        Create the next vertex from a raw odometry sample.

        Args:
            sample: Cumulative odometry pose and covariance
            payload: Optional sensor payload of this pose

        Returns:
            Result with the new vertex id on success
        """
        if self.next_id >= self.config.vertex_limit:
            return AddVertexResult.failure(
                GraphStatus.VERTEX_LIMIT_EXCEEDED,
                f"vertex id space of {self.config.vertex_limit} exhausted",
            )
        if not sample.is_valid():
            return AddVertexResult.failure(
                GraphStatus.INVALID_MEASUREMENT,
                f"odometry sample at t={sample.timestamp} is malformed or not finite",
            )

        raw_pose = sample.to_pose3()
        raw_cov = sample.pose_covariance()
        if payload is not None:
            payload = payload.downsample(self.config.registration.point_cloud_density)

        vertex_id = self.next_id
        previous = self.graph.last_vertex()

        if previous is None:
            vertex = Vertex(id=vertex_id, estimate=raw_pose, fixed=True, payload=payload)
            if not self.graph.add_vertex(vertex):
                return self._rejected(f"vertex {vertex_id} rejected by the pose graph")
            self._attach(vertex)
            self._accept(vertex_id, raw_pose, raw_cov)
            logger.info(f"Added first vertex {vertex_id} (fixed)")
            return AddVertexResult.success(vertex_id)

        delta = self._last_raw_pose.between(raw_pose)
        cov_delta = propagate_covariance_delta(
            self._last_raw_cov, raw_cov, self.config.odometry.covariance_floor
        )
        vertex = Vertex(id=vertex_id, estimate=previous.estimate.compose(delta), payload=payload)
        if not self.graph.add_vertex(vertex):
            return self._rejected(f"vertex {vertex_id} rejected by the pose graph")

        odometry = OdometryEdge(
            source=previous.id,
            target=vertex_id,
            measurement=delta,
            information=information_from_covariance(cov_delta),
        )
        if not self.graph.add_edge(odometry):
            self.graph.remove_vertex(vertex_id)
            return self._rejected(f"odometry edge {previous.id}->{vertex_id} rejected")
        self._attach(vertex)

        if previous.has_payload and vertex.has_payload:
            status = self._register_sequential(vertex, previous)
            if status != GraphStatus.OK:
                self._rollback(vertex, [odometry.key])
                message = f"registration {vertex_id}->{previous.id} failed"
                logger.warning(f"{message}; vertex rolled back")
                return AddVertexResult.failure(status, message)
        else:
            logger.debug(f"Vertex {vertex_id}: no payload pair, odometry edge only")

        self._accept(vertex_id, raw_pose, raw_cov)
        logger.debug(f"Added vertex {vertex_id}")
        return AddVertexResult.success(vertex_id)

    def _register_sequential(self, vertex: Vertex, previous: Vertex) -> GraphStatus:
        """Align the new payload against its predecessor and stage the edge."""
        deferred = self.config.registration.deferred
        guess = vertex.estimate.between(previous.estimate)
        result = self.registrar.align(vertex.payload, previous.payload, guess,
                                      defer_compute=deferred)
        if not result.usable:
            return GraphStatus.REGISTRATION_FAILURE

        edge = RegistrationEdge(
            source=vertex.id,
            target=previous.id,
            measurement=result.relative_transform,
            information=result.information,
            fitness_score=result.fitness_score,
            needs_refinement=deferred,
        )
        if not self.graph.add_edge(edge):
            return GraphStatus.INSERTION_REJECTED
        return GraphStatus.OK

    def refine_deferred_edges(self) -> int:
        """
        Run the full alignment of every staged edge that only passed the
        overlap check. Edges whose refinement fails are kept but marked invalid.

        Returns:
            Number of edges refined successfully
        """
        refined = 0
        for key in list(self.graph.staged_edges):
            edge = self.graph.edges[key]
            if not isinstance(edge, RegistrationEdge) or not edge.needs_refinement:
                continue
            edge.needs_refinement = False

            source = self.graph.vertex(edge.source)
            target = self.graph.vertex(edge.target)
            if not (source.has_payload and target.has_payload):
                edge.valid = False
                logger.warning(f"Edge {edge.source}->{edge.target} lost a payload; marked invalid")
                continue

            result = self.registrar.align(source.payload, target.payload,
                                          source.estimate.between(target.estimate))
            if not result.usable:
                edge.valid = False
                logger.warning(f"Refinement of edge {edge.source}->{edge.target} failed; "
                               f"marked invalid")
                continue
            edge.measurement = result.relative_transform
            edge.information = result.information
            edge.fitness_score = result.fitness_score
            refined += 1

        if refined:
            logger.debug(f"Refined {refined} deferred registration edges")
        return refined

    # Helpers

    def _attach(self, vertex: Vertex) -> None:
        if vertex.has_payload:
            self.map_store.attach_payload(vertex.id, vertex.payload)

    def _accept(self, vertex_id: int, raw_pose: gtsam.Pose3, raw_cov: np.ndarray) -> None:
        self.next_id = vertex_id + 1
        self._last_raw_pose = raw_pose
        self._last_raw_cov = raw_cov

    def _rollback(self, vertex: Vertex, edge_keys: List) -> None:
        for source, target in edge_keys:
            self.graph.remove_edge(source, target)
        self.graph.remove_vertex(vertex.id)
        if vertex.has_payload:
            self.map_store.detach_payload(vertex.id)

    @staticmethod
    def _rejected(message: str) -> AddVertexResult:
        logger.warning(message)
        return AddVertexResult.failure(GraphStatus.INSERTION_REJECTED, message)
