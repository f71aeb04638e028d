"""
Map store contract and an in-memory implementation.

The map store owns the sensor payloads; vertices only reference them.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
import logging

import numpy as np
import gtsam

from graph_slam.common.data_structures import PointCloud

logger = logging.getLogger(__name__)


class MapStore(ABC):
    """Holds payloads and their world-frame transforms."""

    @abstractmethod
    def attach_payload(self, vertex_id: int, payload: PointCloud) -> None:
        """Register ``payload`` under ``vertex_id``."""

    @abstractmethod
    def detach_payload(self, vertex_id: int) -> Optional[PointCloud]:
        """Forget the payload of ``vertex_id``; returns it if it was known."""

    @abstractmethod
    def set_frame_transform(self, vertex_id: int, pose: gtsam.Pose3,
                            covariance: Optional[np.ndarray] = None) -> bool:
        """Place the payload frame of ``vertex_id`` in the world."""

    def regenerate(self) -> None:
        """Rebuild derived representations after a batch of pose updates."""


class InMemoryMapStore(MapStore):
    """
    Dict-backed map store.

    The derived representation is the merged world-frame point cloud,
    rebuilt on ``regenerate``. ``on_regenerate`` callbacks receive it.
    """

    def __init__(self):
        self.payloads: Dict[int, PointCloud] = {}
        self.transforms: Dict[int, gtsam.Pose3] = {}
        self.covariances: Dict[int, Optional[np.ndarray]] = {}
        self.world_cloud = np.zeros((0, 3))
        self.on_regenerate: List[Callable[[np.ndarray], None]] = []

    def __contains__(self, vertex_id: int) -> bool:
        return vertex_id in self.payloads

    def attach_payload(self, vertex_id: int, payload: PointCloud) -> None:
        self.payloads[vertex_id] = payload

    def detach_payload(self, vertex_id: int) -> Optional[PointCloud]:
        self.transforms.pop(vertex_id, None)
        self.covariances.pop(vertex_id, None)
        return self.payloads.pop(vertex_id, None)

    def set_frame_transform(self, vertex_id: int, pose: gtsam.Pose3,
                            covariance: Optional[np.ndarray] = None) -> bool:
        if vertex_id not in self.payloads:
            logger.warning(f"No payload for vertex {vertex_id}; transform ignored")
            return False
        self.transforms[vertex_id] = pose
        self.covariances[vertex_id] = covariance
        return True

    def regenerate(self) -> None:
        clouds = [
            self.payloads[vid].transformed(pose)
            for vid, pose in sorted(self.transforms.items())
            if vid in self.payloads
        ]
        self.world_cloud = np.vstack(clouds) if clouds else np.zeros((0, 3))
        logger.debug(f"Map regenerated from {len(clouds)} payloads, "
                     f"{len(self.world_cloud)} points")
        for callback in self.on_regenerate:
            callback(self.world_cloud)
