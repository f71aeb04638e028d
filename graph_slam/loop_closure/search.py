"""
Covariance- and distance-gated discovery of loop-closure candidates.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

import numpy as np

from graph_slam.common.config import CandidateSearchConfig
from graph_slam.common.data_structures import EdgeCandidate, Vertex
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.utils.math_utils import mahalanobis_distance, positional_block, translation_distance

logger = logging.getLogger(__name__)


@dataclass
class PairDistance:
    """Gating distances between two vertices."""
    mahalanobis: float
    euclidean: float

    @property
    def gate(self) -> float:
        return min(self.mahalanobis, self.euclidean)


def pair_distance(a: Vertex, b: Vertex, cov_a: np.ndarray, cov_b: np.ndarray) -> PairDistance:
    """
    Distances between two vertex positions.

    Args:
        a, b: Vertices
        cov_a, cov_b: 6x6 marginal covariances of ``a`` and ``b``

    Returns:
        Mahalanobis distance under the summed positional covariance and the
        Euclidean distance
    """
    delta = a.position - b.position
    combined = positional_block(cov_a) + positional_block(cov_b)
    return PairDistance(
        mahalanobis=mahalanobis_distance(delta, combined),
        euclidean=float(np.linalg.norm(delta)),
    )


class CandidateSearch:
    """
    Propose loop-closure candidates between non-adjacent vertices.

    A vertex is searched once; its search state is reset when its estimate
    drifts more than ``pose_drift_threshold`` from the pose it was searched
    at, or explicitly through ``reset``.
    """

    def __init__(self, config: Optional[CandidateSearchConfig] = None):
        self.config = config or CandidateSearchConfig()

    def is_eligible_pair(self, graph: PoseGraph, a: Vertex, b: Vertex) -> bool:
        """Both carry payloads, are not id-adjacent and are not linked yet."""
        if not (a.has_payload and b.has_payload):
            return False
        if abs(a.id - b.id) <= 1:
            return False
        return not graph.has_edge_between(a.id, b.id)

    def retrigger_drifted(self, graph: PoseGraph) -> List[int]:
        """Reset the search state of vertices that moved since their last search."""
        threshold = self.config.pose_drift_threshold
        if threshold is None:
            return []
        reset = []
        for vertex in graph:
            state = vertex.search_state
            if not state.has_run or state.pose_snapshot is None:
                continue
            if translation_distance(vertex.estimate, state.pose_snapshot) > threshold:
                state.reset()
                reset.append(vertex.id)
        if reset:
            logger.debug(f"Pose drift re-triggered edge search for vertices {reset}")
        return reset

    def reset(self, graph: PoseGraph, vertex_id: Optional[int] = None) -> None:
        """Reset the search state of one vertex, or of all vertices."""
        vertices = [graph.vertex(vertex_id)] if vertex_id is not None else list(graph)
        for vertex in vertices:
            vertex.search_state.reset()

    def search(self, graph: PoseGraph, marginals: Dict[int, np.ndarray]) -> int:
        """
        Run the search for every committed payload vertex not searched yet.

        Args:
            graph: Pose graph after a commit
            marginals: 6x6 marginal covariances of the committed payload vertices

        Returns:
            Number of new candidate pairs
        """
        self.retrigger_drifted(graph)

        vertices = [v for v in graph.payload_vertices(active_only=True) if v.id in marginals]
        max_distance = self.config.max_sensor_distance
        new_pairs = 0

        for vertex in vertices:
            if vertex.search_state.has_run:
                continue
            for other in vertices:
                if other.id == vertex.id or not self.is_eligible_pair(graph, vertex, other):
                    continue
                if other.id in vertex.candidates:
                    continue
                distance = pair_distance(vertex, other, marginals[vertex.id], marginals[other.id])
                if distance.gate > max_distance:
                    continue
                vertex.candidates[other.id] = EdgeCandidate.from_distance(distance.gate)
                other.candidates.setdefault(vertex.id, EdgeCandidate.from_distance(distance.gate))
                new_pairs += 1
                logger.debug(f"Candidate {vertex.id}<->{other.id}: "
                             f"mahalanobis={distance.mahalanobis:.3f}, "
                             f"euclidean={distance.euclidean:.3f}")

            vertex.search_state.has_run = True
            vertex.search_state.pose_snapshot = vertex.estimate

        if new_pairs:
            logger.info(f"Edge search found {new_pairs} new candidate pairs")
        return new_pairs
