"""
Best-first validation of loop-closure candidates.

The vertex with the largest missing-edge error (sum of its untested
candidate errors) goes first; its closest untested candidate is registered.
Successful registrations become staged registration edges, failures stay
as tested candidates.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from graph_slam.common.data_structures import RegistrationEdge, Vertex
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.registration.registrar import Registrar

logger = logging.getLogger(__name__)


@dataclass
class ValidationSummary:
    """
    Counters of one validation round.

    Attributes:
        attempts: Registrations performed
        accepted: Candidates promoted to edges
        rejected: Candidates whose registration failed
        dropped: Candidates removed without a registration
    """
    attempts: int = 0
    accepted: int = 0
    rejected: int = 0
    dropped: int = 0


class CandidateValidator:
    """Test candidates with the registrar and promote the good ones."""

    def __init__(self, registrar: Registrar):
        self.registrar = registrar

    @staticmethod
    def select_vertex(graph: PoseGraph) -> Optional[Vertex]:
        """Vertex with the highest positive missing-edge error (lowest id on ties)."""
        best, best_error = None, 0.0
        for vertex in graph:
            error = vertex.missing_edge_error()
            if error > best_error:
                best, best_error = vertex, error
        return best

    @staticmethod
    def _drop(graph: PoseGraph, source: Vertex, target_id: int) -> None:
        source.candidates.pop(target_id, None)
        if target_id in graph:
            graph.vertex(target_id).candidates.pop(source.id, None)

    def _register(self, graph: PoseGraph, a: Vertex, b: Vertex) -> bool:
        """Align the pair and stage the edge on success."""
        # Edges point from the older to the newer vertex
        source, target = (a, b) if a.id < b.id else (b, a)
        guess = source.estimate.between(target.estimate)
        result = self.registrar.align(source.payload, target.payload, guess)
        if not result.usable:
            return False
        edge = RegistrationEdge(
            source=source.id,
            target=target.id,
            measurement=result.relative_transform,
            information=result.information,
            fitness_score=result.fitness_score,
        )
        if not graph.add_edge(edge):
            return False
        logger.info(f"Loop closure {source.id}->{target.id} accepted "
                    f"(fitness {result.fitness_score:.4f})")
        return True

    def try_best_edge_candidates(self, graph: PoseGraph, limit: int) -> ValidationSummary:
        """
        Validate candidates best-first.

        Args:
            graph: Pose graph holding the candidates
            limit: Maximum registrations to perform

        Returns:
            Summary of the round
        """
        summary = ValidationSummary()
        while summary.attempts < limit:
            source = self.select_vertex(graph)
            if source is None:
                break
            target_id, candidate = source.best_untested_candidate()

            target = graph.vertices.get(target_id)
            if (target is None or not target.has_payload or not source.has_payload
                    or graph.has_edge_between(source.id, target_id)):
                self._drop(graph, source, target_id)
                summary.dropped += 1
                continue

            summary.attempts += 1
            if self._register(graph, source, target):
                self._drop(graph, source, target_id)
                summary.accepted += 1
                continue

            candidate.tested = True
            reverse = target.candidates.get(source.id)
            if reverse is not None:
                reverse.tested = True
            summary.rejected += 1
            logger.debug(f"Loop closure {source.id}<->{target_id} rejected")

        return summary

    @staticmethod
    def requeue_tested_candidates(graph: PoseGraph) -> int:
        """Mark every tested candidate untested again; returns how many."""
        count = 0
        for vertex in graph:
            for candidate in vertex.candidates.values():
                if candidate.tested:
                    candidate.tested = False
                    count += 1
        return count

    @staticmethod
    def has_untested(graph: PoseGraph) -> bool:
        return any(v.missing_edge_error() > 0 for v in graph)
