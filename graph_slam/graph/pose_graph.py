"""
Vertex and edge store of the pose graph.

The graph owns every vertex and edge. Newly inserted items sit in the
staging sets until the optimization engine commits them; committed vertices
form the active subset seen by the solver.
"""

from typing import Dict, Iterator, List, Optional, Set, Tuple
import logging

from graph_slam.common.data_structures import Edge, Vertex

logger = logging.getLogger(__name__)


class PoseGraph:
    """
    Id-indexed vertices, pair-indexed edges and the staging sets.

    An ordered vertex pair holds at most one edge. Consecutive vertices carry
    the odometry edge forwards and the sequential registration edge backwards.
    """

    def __init__(self):
        self.vertices: Dict[int, Vertex] = {}
        self.edges: Dict[Tuple[int, int], Edge] = {}
        self.active: Set[int] = set()

        self.staged_vertices: List[int] = []
        self.staged_edges: List[Tuple[int, int]] = []

    def __len__(self) -> int:
        return len(self.vertices)

    def __contains__(self, vertex_id: int) -> bool:
        return vertex_id in self.vertices

    def __iter__(self) -> Iterator[Vertex]:
        return iter(self.vertices[vid] for vid in sorted(self.vertices))

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def vertex(self, vertex_id: int) -> Vertex:
        return self.vertices[vertex_id]

    def last_vertex(self) -> Optional[Vertex]:
        if not self.vertices:
            return None
        return self.vertices[max(self.vertices)]

    def has_edge_between(self, a: int, b: int) -> bool:
        """Edge in either direction."""
        return (a, b) in self.edges or (b, a) in self.edges

    def edges_of(self, vertex_id: int) -> List[Edge]:
        return [e for key, e in self.edges.items() if vertex_id in key]

    # Insertion and rollback

    def add_vertex(self, vertex: Vertex) -> bool:
        """Insert and stage a vertex; False on duplicate id."""
        if vertex.id in self.vertices:
            logger.warning(f"Vertex {vertex.id} already exists")
            return False
        self.vertices[vertex.id] = vertex
        self.staged_vertices.append(vertex.id)
        return True

    def add_edge(self, edge: Edge) -> bool:
        """Insert and stage an edge; False on unknown endpoint or existing pair."""
        if edge.source == edge.target:
            logger.warning(f"Self edge on vertex {edge.source} rejected")
            return False
        if edge.source not in self.vertices or edge.target not in self.vertices:
            logger.warning(f"Edge {edge.source}->{edge.target} references an unknown vertex")
            return False
        if edge.key in self.edges:
            logger.warning(f"Edge {edge.source}->{edge.target} already exists")
            return False
        self.edges[edge.key] = edge
        self.staged_edges.append(edge.key)
        return True

    def remove_edge(self, source: int, target: int) -> bool:
        """Remove a staged edge; committed edges are permanent."""
        key = (source, target)
        if key not in self.edges or key not in self.staged_edges:
            return False
        del self.edges[key]
        self.staged_edges.remove(key)
        return True

    def remove_vertex(self, vertex_id: int) -> bool:
        """Remove a staged vertex that no longer has edges."""
        if vertex_id not in self.vertices or vertex_id not in self.staged_vertices:
            return False
        if self.edges_of(vertex_id):
            logger.warning(f"Vertex {vertex_id} still has edges; not removed")
            return False
        del self.vertices[vertex_id]
        self.staged_vertices.remove(vertex_id)
        return True

    # Commit bookkeeping

    @property
    def has_staged(self) -> bool:
        return bool(self.staged_vertices or self.staged_edges)

    def clear_staging(self) -> None:
        """Mark every staged vertex active and empty both staging sets."""
        self.active.update(self.staged_vertices)
        self.staged_vertices = []
        self.staged_edges = []

    def payload_vertices(self, active_only: bool = True) -> List[Vertex]:
        """Vertices that still carry a payload, in id order."""
        return [v for v in self if v.has_payload and (not active_only or v.id in self.active)]

    def clear(self) -> None:
        self.vertices.clear()
        self.edges.clear()
        self.active.clear()
        self.staged_vertices = []
        self.staged_edges = []
