"""
Registrar contract: estimate the relative transform between two payloads.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import gtsam

from graph_slam.common.config import RegistrationConfig
from graph_slam.common.data_structures import PointCloud


@dataclass
class RegistrationResult:
    """
    Outcome of aligning a target payload onto a source payload.

    Attributes:
        success: Whether the alignment passed the acceptance gates
        relative_transform: Pose of the target frame in the source frame
        fitness_score: Mean squared correspondence residual (m²)
        information: 6x6 information of ``relative_transform``
        overlap: Fraction of target points that found a correspondence
        deferred: Only the initial guess was checked; a full alignment is pending
    """
    success: bool
    relative_transform: gtsam.Pose3 = field(default_factory=gtsam.Pose3)
    fitness_score: float = float("inf")
    information: np.ndarray = field(default_factory=lambda: np.eye(6))
    overlap: float = 0.0
    deferred: bool = False

    @property
    def usable(self) -> bool:
        """Successful with a finite transform and information matrix."""
        return (self.success
                and bool(np.all(np.isfinite(self.relative_transform.matrix())))
                and bool(np.all(np.isfinite(self.information))))

    @classmethod
    def failed(cls, fitness_score: float = float("inf"), overlap: float = 0.0) -> 'RegistrationResult':
        return cls(success=False, fitness_score=fitness_score, overlap=overlap)


class Registrar(ABC):
    """Pairwise payload registration."""

    def __init__(self, config: Optional[RegistrationConfig] = None):
        self.config = config or RegistrationConfig()

    def configure(self, config: RegistrationConfig) -> None:
        """Use ``config`` for every following alignment."""
        self.config = config

    @abstractmethod
    def align(
        self,
        source: PointCloud,
        target: PointCloud,
        initial_guess: gtsam.Pose3,
        defer_compute: bool = False
    ) -> RegistrationResult:
        """
        Align ``target`` onto ``source``.

        Args:
            source: Payload of the source vertex
            target: Payload of the target vertex
            initial_guess: Expected pose of the target frame in the source frame
            defer_compute: Only validate the initial guess

        Returns:
            Registration result
        """
