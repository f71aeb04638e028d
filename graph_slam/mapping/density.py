"""
Density-bounded payload retention.

Vertices carrying a payload are bucketed into a 2D grid. Cells holding more
than the configured maximum give up their eldest payloads; the vertices
themselves stay in the graph.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple
import logging

import numpy as np

from graph_slam.common.config import DensityConfig
from graph_slam.common.data_structures import Vertex
from graph_slam.graph.pose_graph import PoseGraph
from graph_slam.mapping.map_store import MapStore

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]


class VertexGrid:
    """Fixed-resolution (x, y) cell -> vertex ids."""

    def __init__(self, resolution: float):
        self.resolution = resolution
        self.cells: Dict[Cell, List[int]] = defaultdict(list)

    def cell_of(self, position: np.ndarray) -> Cell:
        return (int(np.floor(position[0] / self.resolution)),
                int(np.floor(position[1] / self.resolution)))

    def insert(self, vertex_id: int, position: np.ndarray) -> Cell:
        cell = self.cell_of(position)
        self.cells[cell].append(vertex_id)
        return cell

    def clear(self) -> None:
        self.cells.clear()

    def overfull_cells(self, max_per_cell: int) -> List[Cell]:
        return [cell for cell, ids in self.cells.items() if len(ids) > max_per_cell]

    def eviction_candidates(self, max_per_cell: int) -> List[int]:
        """Eldest vertex ids beyond the per-cell maximum, over all cells."""
        evicted = []
        for cell in self.overfull_cells(max_per_cell):
            ids = sorted(self.cells[cell])
            evicted.extend(ids[:len(ids) - max_per_cell])
        return sorted(evicted)


class DensityController:
    """Detach payloads from vertices in overcrowded grid cells."""

    def __init__(self, config: Optional[DensityConfig] = None):
        self.config = config or DensityConfig()
        self.grid = VertexGrid(self.config.grid_resolution)

    def rebuild(self, vertices: Iterable[Vertex]) -> None:
        """Re-bucket every payload-carrying vertex at its current estimate."""
        self.grid.clear()
        for vertex in vertices:
            if vertex.has_payload:
                self.grid.insert(vertex.id, vertex.position)

    def update(self, graph: PoseGraph, map_store: Optional[MapStore] = None) -> List[int]:
        """
        Bucket committed vertices and detach surplus payloads.

        Args:
            graph: Pose graph after a commit
            map_store: Store told about every detached payload

        Returns:
            Ids of the vertices that lost their payload
        """
        if not self.config.enabled:
            return []

        self.rebuild(graph.payload_vertices(active_only=True))
        evicted = self.grid.eviction_candidates(self.config.max_vertices_per_cell)
        for vertex_id in evicted:
            graph.vertex(vertex_id).detach_payload()
            if map_store is not None:
                map_store.detach_payload(vertex_id)

        if evicted:
            logger.info(f"Detached payloads of {len(evicted)} vertices: {evicted}")
            # Cells now hold only the retained vertices
            self.rebuild(graph.payload_vertices(active_only=True))
        return evicted

    def reset(self) -> None:
        self.grid = VertexGrid(self.config.grid_resolution)
