"""
Pose graph storage and incremental construction.
"""

from .pose_graph import PoseGraph
from .builder import IncrementalBuilder

__all__ = [
    'PoseGraph',
    'IncrementalBuilder'
]
