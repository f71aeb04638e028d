"""
Optimizer contract and its GTSAM implementation.

Vertices and edges are first added to pending buffers. They join the solver's
linear system only through ``initialize_optimization`` (first commit) or
``update_initialization`` (incremental commits). A failed commit leaves the
pending buffers empty and the solver rebuilt from what was already committed,
so the caller can replicate the same items again and retry.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set, Tuple
import logging

import numpy as np

try:
    import gtsam
except ImportError:
    raise ImportError(
        "GTSAM is required for the pose-graph optimizer. "
        "Install it with: pip install gtsam"
    )

from graph_slam.common.config import OptimizerConfig
from graph_slam.common.errors import VertexNotCommitted

logger = logging.getLogger(__name__)

EdgeKey = Tuple[int, int]


class Optimizer(ABC):
    """
    Abstract nonlinear least-squares back-end over a pose graph.

    This class defines the interface the optimization engine drives twice:
    once for the primary graph and once for the shadow graph.
    """

    @abstractmethod
    def add_vertex(self, vertex_id: int, pose: gtsam.Pose3, fixed: bool = False) -> bool:
        """Queue a vertex; False if the id is already known."""

    @abstractmethod
    def add_edge(self, source: int, target: int, measurement: gtsam.Pose3,
                 information: np.ndarray) -> bool:
        """Queue a relative-pose edge; False on duplicate pair or unknown endpoint."""

    @abstractmethod
    def remove_vertex(self, vertex_id: int) -> bool:
        """Drop a queued vertex and its queued edges."""

    @abstractmethod
    def remove_edge(self, source: int, target: int) -> bool:
        """Drop a queued edge."""

    @abstractmethod
    def initialize_optimization(self) -> bool:
        """Build the solver from everything queued so far."""

    @abstractmethod
    def update_initialization(self, new_vertices: Iterable[int],
                              new_edges: Iterable[EdgeKey]) -> bool:
        """Fold the given queued items into the existing solver."""

    @abstractmethod
    def optimize(self, iterations: int, incremental: bool = True) -> int:
        """Run solver iterations; returns the number of iterations run."""

    @abstractmethod
    def compute_marginals(self, vertex_ids: Iterable[int]) -> Dict[int, np.ndarray]:
        """6x6 marginal covariance per committed vertex."""

    @abstractmethod
    def estimate(self, vertex_id: int) -> gtsam.Pose3:
        """Current pose estimate of a known vertex."""

    @property
    @abstractmethod
    def initialized(self) -> bool:
        """Whether a first commit has happened."""

    @abstractmethod
    def has_vertex(self, vertex_id: int) -> bool:
        """Whether the vertex is queued or committed."""

    @abstractmethod
    def has_edge(self, source: int, target: int) -> bool:
        """Whether the edge is queued or committed."""


class GtsamOptimizer(Optimizer):
    """
    Optimizer backed by GTSAM.

    Provides:
    - ISAM2 for commits and incremental iterations (reuses the factorization)
    - Gauss-Newton for batch iterations over the whole committed graph
    - Marginal covariances straight from the ISAM2 Bayes tree

    Fixed vertices are held by a tight ``PriorFactorPose3``.
    """

    def __init__(self, config: Optional[OptimizerConfig] = None, name: str = "primary"):
        """
        Initialize the optimizer.

        Args:
            config: Solver configuration
            name: Label used in log messages
        """
        self.config = config or OptimizerConfig()
        self.name = name

        self._fixed_noise = gtsam.noiseModel.Isotropic.Sigma(6, self.config.fixed_vertex_sigma)

        # Committed graph and the latest linearization point
        self._graph = gtsam.NonlinearFactorGraph()
        self._values = gtsam.Values()
        self._vertices: Set[int] = set()
        self._edges: Set[EdgeKey] = set()

        # Queued, not yet part of the linear system
        self._pending_vertices: Dict[int, Tuple[gtsam.Pose3, bool]] = {}
        self._pending_edges: Dict[EdgeKey, Tuple[gtsam.Pose3, np.ndarray]] = {}

        self._isam = self._make_isam()
        self._initialized = False

    def _make_isam(self) -> gtsam.ISAM2:
        params = gtsam.ISAM2Params()
        params.setRelinearizeThreshold(self.config.relinearize_threshold)
        params.relinearizeSkip = self.config.relinearize_skip
        return gtsam.ISAM2(params)

    @staticmethod
    def key(vertex_id: int) -> int:
        """Solver key of a vertex."""
        return int(vertex_id)

    # Graph construction

    def add_vertex(self, vertex_id: int, pose: gtsam.Pose3, fixed: bool = False) -> bool:
        if self.has_vertex(vertex_id):
            logger.warning(f"[{self.name}] vertex {vertex_id} already exists")
            return False
        self._pending_vertices[vertex_id] = (pose, fixed)
        return True

    def add_edge(self, source: int, target: int, measurement: gtsam.Pose3,
                 information: np.ndarray) -> bool:
        if source == target or self.has_edge(source, target):
            logger.warning(f"[{self.name}] edge {source}->{target} rejected")
            return False
        if not (self.has_vertex(source) and self.has_vertex(target)):
            logger.warning(f"[{self.name}] edge {source}->{target} references an unknown vertex")
            return False
        self._pending_edges[(source, target)] = (measurement, np.asarray(information, dtype=float))
        return True

    def remove_vertex(self, vertex_id: int) -> bool:
        if vertex_id not in self._pending_vertices:
            return False
        del self._pending_vertices[vertex_id]
        for edge_key in [k for k in self._pending_edges if vertex_id in k]:
            del self._pending_edges[edge_key]
        return True

    def remove_edge(self, source: int, target: int) -> bool:
        return self._pending_edges.pop((source, target), None) is not None

    def has_vertex(self, vertex_id: int) -> bool:
        return vertex_id in self._vertices or vertex_id in self._pending_vertices

    def has_edge(self, source: int, target: int) -> bool:
        return (source, target) in self._edges or (source, target) in self._pending_edges

    def is_committed(self, vertex_id: int) -> bool:
        return vertex_id in self._vertices

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def vertex_count(self) -> int:
        return len(self._vertices)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    # Commits

    def _build_batch(self, vertex_ids: Iterable[int], edge_keys: Iterable[EdgeKey]):
        graph = gtsam.NonlinearFactorGraph()
        values = gtsam.Values()
        for vid in vertex_ids:
            pose, fixed = self._pending_vertices[vid]
            values.insert(self.key(vid), pose)
            if fixed:
                graph.add(gtsam.PriorFactorPose3(self.key(vid), pose, self._fixed_noise))
        for source, target in edge_keys:
            measurement, information = self._pending_edges[(source, target)]
            noise = gtsam.noiseModel.Gaussian.Information(information)
            graph.add(gtsam.BetweenFactorPose3(
                self.key(source), self.key(target), measurement, noise
            ))
        return graph, values

    def _absorb(self, vertex_ids: List[int], edge_keys: List[EdgeKey],
                graph: gtsam.NonlinearFactorGraph, values: gtsam.Values) -> None:
        for i in range(graph.size()):
            self._graph.add(graph.at(i))
        self._values.insert(values)
        for vid in vertex_ids:
            del self._pending_vertices[vid]
            self._vertices.add(vid)
        for edge_key in edge_keys:
            del self._pending_edges[edge_key]
            self._edges.add(edge_key)

    def _discard_pending(self) -> None:
        self._pending_vertices.clear()
        self._pending_edges.clear()

    def _rebuild(self) -> None:
        """Recreate ISAM2 from the committed graph after a failed update."""
        self._isam = self._make_isam()
        if self._graph.size() > 0:
            self._isam.update(self._graph, self._values)
            self._values = self._isam.calculateEstimate()

    def initialize_optimization(self) -> bool:
        vertex_ids = list(self._pending_vertices)
        edge_keys = list(self._pending_edges)
        try:
            graph, values = self._build_batch(vertex_ids, edge_keys)
            self._isam = self._make_isam()
            self._isam.update(graph, values)
        except (RuntimeError, ValueError) as e:
            logger.error(f"[{self.name}] initialize optimization failed: {e}")
            self._isam = self._make_isam()
            self._discard_pending()
            return False
        self._absorb(vertex_ids, edge_keys, graph, values)
        self._values = self._isam.calculateEstimate()
        self._initialized = True
        logger.debug(f"[{self.name}] initialized with {len(vertex_ids)} vertices, "
                     f"{len(edge_keys)} edges")
        return True

    def update_initialization(self, new_vertices: Iterable[int],
                              new_edges: Iterable[EdgeKey]) -> bool:
        vertex_ids = [v for v in new_vertices if v in self._pending_vertices]
        edge_keys = [e for e in new_edges if e in self._pending_edges]
        try:
            graph, values = self._build_batch(vertex_ids, edge_keys)
            self._isam.update(graph, values)
        except (RuntimeError, ValueError) as e:
            logger.error(f"[{self.name}] update optimization failed: {e}")
            self._discard_pending()
            self._rebuild()
            return False
        self._absorb(vertex_ids, edge_keys, graph, values)
        self._values = self._isam.calculateEstimate()
        return True

    # Solving

    def optimize(self, iterations: int, incremental: bool = True) -> int:
        """
        Run solver iterations on the committed graph.

        Args:
            iterations: Iterations to run
            incremental: ISAM2 relinearization steps if True, otherwise a
                Gauss-Newton batch solve followed by an ISAM2 rebuild

        Returns:
            Number of iterations actually run
        """
        if not self._initialized or iterations <= 0:
            return 0

        if incremental:
            for _ in range(iterations):
                self._isam.update(gtsam.NonlinearFactorGraph(), gtsam.Values())
            self._values = self._isam.calculateEstimate()
            return iterations

        params = gtsam.GaussNewtonParams()
        params.setMaxIterations(iterations)
        optimizer = gtsam.GaussNewtonOptimizer(self._graph, self._values, params)
        self._values = optimizer.optimize()
        self._rebuild()
        return int(optimizer.iterations())

    def compute_marginals(self, vertex_ids: Iterable[int]) -> Dict[int, np.ndarray]:
        marginals = {}
        for vid in vertex_ids:
            if vid not in self._vertices:
                raise VertexNotCommitted(f"[{self.name}] vertex {vid} is not committed")
            marginals[vid] = np.asarray(self._isam.marginalCovariance(self.key(vid)))
        return marginals

    def estimate(self, vertex_id: int) -> gtsam.Pose3:
        if vertex_id in self._vertices:
            return self._values.atPose3(self.key(vertex_id))
        if vertex_id in self._pending_vertices:
            return self._pending_vertices[vertex_id][0]
        raise KeyError(f"[{self.name}] unknown vertex {vertex_id}")

    def estimates(self) -> Dict[int, gtsam.Pose3]:
        """Current estimate of every committed vertex."""
        return {vid: self._values.atPose3(self.key(vid)) for vid in self._vertices}

    def error(self) -> float:
        """Total graph error at the current estimate."""
        return float(self._graph.error(self._values))
