"""
Incremental pose-graph SLAM back-end.

Builds a graph of odometry-linked poses, optimizes it with GTSAM, and
discovers loop closures gated by marginal covariances from a shadow graph.
"""

from .common.config import GraphSlamConfig, load_graph_slam_config
from .common.data_structures import OdometrySample, PointCloud
from .common.errors import AddVertexResult, GraphSlamError, GraphStatus, OptimizeResult
from .session import GraphSlamSession

__version__ = "0.1.0"

__all__ = [
    'GraphSlamSession',
    'GraphSlamConfig',
    'load_graph_slam_config',
    'OdometrySample',
    'PointCloud',
    'GraphStatus',
    'GraphSlamError',
    'AddVertexResult',
    'OptimizeResult'
]
