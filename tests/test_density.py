"""
Unit tests for density-bounded payload retention.
"""

import numpy as np
import pytest

try:
    import gtsam
except ImportError:
    pytest.skip("GTSAM not installed", allow_module_level=True)

from graph_slam.common.config import DensityConfig
from graph_slam.common.data_structures import EdgeCandidate, PointCloud, Vertex
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.mapping.density import DensityController, VertexGrid

from fakes import RecordingMapStore


def graph_with_vertices(xs, payload=True, commit=True) -> PoseGraph:
    graph = PoseGraph()
    for i, x in enumerate(xs):
        graph.add_vertex(Vertex(
            id=i,
            estimate=gtsam.Pose3(gtsam.Rot3(), gtsam.Point3(x, 0.0, 0.0)),
            payload=PointCloud(np.zeros((3, 3))) if payload else None,
        ))
    if commit:
        graph.clear_staging()
    return graph


class TestVertexGrid:
    def test_cell_of(self):
        grid = VertexGrid(2.0)
        assert grid.cell_of(np.array([0.5, 1.9, 7.0])) == (0, 0)
        assert grid.cell_of(np.array([-0.5, 2.0, 0.0])) == (-1, 1)

    def test_eviction_candidates_are_eldest(self):
        grid = VertexGrid(1.0)
        for vid in [4, 2, 9, 7]:
            grid.insert(vid, np.zeros(3))
        grid.insert(11, np.array([5.0, 5.0, 0.0]))
        assert grid.overfull_cells(2) == [(0, 0)]
        assert grid.eviction_candidates(2) == [2, 4]


class TestDensityController:
    """Test payload detachment in overfull cells."""

    def setup_method(self):
        self.controller = DensityController(DensityConfig(grid_resolution=1.0,
                                                          max_vertices_per_cell=5))
        self.map_store = RecordingMapStore()

    def test_detaches_eldest_payloads(self):
        graph = graph_with_vertices([0.1 * i for i in range(7)])
        evicted = self.controller.update(graph, self.map_store)

        assert evicted == [0, 1]
        assert self.map_store.detached == [0, 1]
        assert not graph.vertex(0).has_payload
        assert graph.vertex(6).has_payload
        # Vertices themselves are kept
        assert len(graph) == 7

    def test_detach_clears_candidates(self):
        graph = graph_with_vertices([0.1 * i for i in range(7)])
        graph.vertex(0).candidates[5] = EdgeCandidate.from_distance(1.0)
        self.controller.update(graph, self.map_store)
        assert graph.vertex(0).candidates == {}

    def test_cells_within_limit_untouched(self):
        graph = graph_with_vertices([float(i) for i in range(7)])
        assert self.controller.update(graph, self.map_store) == []
        assert len(graph.payload_vertices()) == 7

    def test_staged_vertices_ignored(self):
        graph = graph_with_vertices([0.1 * i for i in range(7)], commit=False)
        assert self.controller.update(graph, self.map_store) == []

    def test_disabled(self):
        controller = DensityController(DensityConfig(enabled=False, max_vertices_per_cell=1))
        graph = graph_with_vertices([0.0, 0.1, 0.2])
        assert controller.update(graph, self.map_store) == []

    def test_repeated_update_is_stable(self):
        graph = graph_with_vertices([0.1 * i for i in range(7)])
        self.controller.update(graph, self.map_store)
        assert self.controller.update(graph, self.map_store) == []
        assert sum(len(ids) for ids in self.controller.grid.cells.values()) == 5
