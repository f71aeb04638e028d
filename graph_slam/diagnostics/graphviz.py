"""
Graphviz text dump of the pose graph.

Render with ``neato -n -Tsvg graph.dot``: vertex positions are pinned to the
(x, y) of their estimates.
"""

from pathlib import Path
from typing import List, Union

from graph_slam.common.data_structures import Edge, RegistrationEdge, Vertex, is_loop_closure
from graph_slam.graph.pose_graph import PoseGraph


def vertex_line(vertex: Vertex) -> str:
    x, y = vertex.position[:2]
    attrs = [f'label="{vertex.id}"', f'pos="{x:.3f},{y:.3f}!"']
    if not vertex.has_payload:
        attrs.append("style=dashed")
    return f"  {vertex.id} [{', '.join(attrs)}];"


def edge_line(edge: Edge) -> str:
    attrs = []
    if isinstance(edge, RegistrationEdge):
        if not edge.valid:
            attrs.append("color=red")
        elif is_loop_closure(edge):
            attrs.append("color=blue")
        attrs.append(f'label="{edge.fitness_score:.2f}"')
    elif is_loop_closure(edge):
        attrs.append("color=blue")
    suffix = f" [{', '.join(attrs)}]" if attrs else ""
    return f"  {edge.source} -> {edge.target}{suffix};"


def graph_to_dot(graph: PoseGraph, name: str = "pose_graph") -> str:
    """
    Dump the graph as a Graphviz digraph.

    One line per vertex (id, 2D position, dashed when its payload is gone)
    and one per edge (red for invalid registrations, blue for loop closures,
    labelled with the registration fitness score).
    """
    lines: List[str] = [f"digraph {name} {{"]
    lines.extend(vertex_line(v) for v in graph)
    lines.extend(edge_line(graph.edges[key]) for key in sorted(graph.edges))
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_dot(graph: PoseGraph, path: Union[str, Path]) -> Path:
    """Write ``graph_to_dot`` output to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(graph_to_dot(graph))
    return path
