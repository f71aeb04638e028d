"""
Unit tests for the Graphviz dump and the Plotly figure.
"""

import numpy as np
import pytest

try:
    import gtsam
except ImportError:
    pytest.skip("GTSAM not installed", allow_module_level=True)

import plotly.graph_objects as go

from graph_slam.common.data_structures import OdometryEdge, PointCloud, RegistrationEdge, Vertex
from graph_slam.diagnostics.graphviz import edge_line, graph_to_dot, vertex_line, write_dot
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.plotting.graph_plot import plot_pose_graph, save_graph_plot


def sample_graph() -> PoseGraph:
    graph = PoseGraph()
    for i, x in enumerate([0.0, 1.0, 2.0, 0.1]):
        graph.add_vertex(Vertex(
            id=i,
            estimate=gtsam.Pose3(gtsam.Rot3(), gtsam.Point3(x, 0.5, 0.0)),
            payload=None if i == 2 else PointCloud(np.zeros((3, 3))),
        ))
    graph.add_edge(OdometryEdge(0, 1, gtsam.Pose3(), np.eye(6)))
    graph.add_edge(RegistrationEdge(1, 0, gtsam.Pose3(), np.eye(6), fitness_score=0.0123))
    graph.add_edge(OdometryEdge(1, 2, gtsam.Pose3(), np.eye(6)))
    graph.add_edge(RegistrationEdge(0, 3, gtsam.Pose3(), np.eye(6), fitness_score=0.456))
    graph.add_edge(RegistrationEdge(3, 2, gtsam.Pose3(), np.eye(6), valid=False))
    return graph


class TestGraphviz:
    """Test the text dump."""

    def setup_method(self):
        self.graph = sample_graph()

    def test_vertex_lines(self):
        assert vertex_line(self.graph.vertex(1)) == '  1 [label="1", pos="1.000,0.500!"];'
        assert "style=dashed" in vertex_line(self.graph.vertex(2))
        assert "style=dashed" not in vertex_line(self.graph.vertex(0))

    def test_edge_lines(self):
        assert edge_line(self.graph.edges[(0, 1)]) == "  0 -> 1;"
        assert edge_line(self.graph.edges[(1, 0)]) == '  1 -> 0 [label="0.01"];'
        assert edge_line(self.graph.edges[(0, 3)]) == '  0 -> 3 [color=blue, label="0.46"];'
        assert "color=red" in edge_line(self.graph.edges[(3, 2)])

    def test_one_line_per_item(self):
        lines = graph_to_dot(self.graph).strip().splitlines()
        assert lines[0] == "digraph pose_graph {"
        assert lines[-1] == "}"
        assert len(lines) == 2 + len(self.graph) + self.graph.edge_count

    def test_write_dot(self, tmp_path):
        path = write_dot(self.graph, tmp_path / "out" / "graph.dot")
        assert path.read_text() == graph_to_dot(self.graph)


class TestGraphPlot:
    """Test the Plotly figure."""

    def test_plot_pose_graph(self):
        fig = plot_pose_graph(sample_graph(), title="Test")
        assert isinstance(fig, go.Figure)
        names = {trace.name for trace in fig.data}
        assert {'Odometry', 'Registration', 'Loop Closure', 'Invalid',
                'Vertices', 'Vertices (no payload)'} <= names

    def test_empty_graph(self):
        fig = plot_pose_graph(PoseGraph())
        assert len(fig.data) == 0

    def test_save(self, tmp_path):
        path = save_graph_plot(plot_pose_graph(sample_graph()), tmp_path / "graph")
        assert path.suffix == '.html'
        assert path.exists()
