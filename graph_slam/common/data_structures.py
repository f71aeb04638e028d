"""
Core data structures for the pose graph.
Poses are ``gtsam.Pose3``; covariances and information matrices use GTSAM's
Pose3 tangent order [rx, ry, rz, tx, ty, tz].
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import numpy as np
import gtsam


# ============================================================================
# Sensor inputs
# ============================================================================

@dataclass
class OdometrySample:
    """Raw odometry pose with its cumulative uncertainty."""
    timestamp: float  # Time in seconds
    position: np.ndarray  # 3x1 position [x, y, z]
    quaternion: np.ndarray  # 4x1 quaternion [w, x, y, z]
    cov_position: np.ndarray = field(default_factory=lambda: np.eye(3))
    cov_orientation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self):
        """Convert to float arrays; validity is checked by ``is_valid``."""
        self.position = np.asarray(self.position, dtype=float).flatten()
        self.quaternion = np.asarray(self.quaternion, dtype=float).flatten()
        self.cov_position = np.asarray(self.cov_position, dtype=float)
        self.cov_orientation = np.asarray(self.cov_orientation, dtype=float)

    def is_valid(self) -> bool:
        """Shapes are right and every value is finite."""
        if self.position.shape != (3,) or self.quaternion.shape != (4,):
            return False
        if self.cov_position.shape != (3, 3) or self.cov_orientation.shape != (3, 3):
            return False
        arrays = (self.position, self.quaternion, self.cov_position, self.cov_orientation)
        if not all(np.all(np.isfinite(a)) for a in arrays):
            return False
        return np.linalg.norm(self.quaternion) > 1e-9

    def to_pose3(self) -> gtsam.Pose3:
        """Convert to a GTSAM pose."""
        from graph_slam.utils.math_utils import pose3_from_position_quaternion
        return pose3_from_position_quaternion(self.position, self.quaternion)

    def pose_covariance(self) -> np.ndarray:
        """6x6 covariance in Pose3 tangent order."""
        from graph_slam.utils.math_utils import combine_pose_covariance
        return combine_pose_covariance(self.cov_position, self.cov_orientation)

    @classmethod
    def from_pose3(cls, pose: gtsam.Pose3, timestamp: float = 0.0,
                   cov_position: Optional[np.ndarray] = None,
                   cov_orientation: Optional[np.ndarray] = None) -> 'OdometrySample':
        """Create from a GTSAM pose."""
        from graph_slam.utils.math_utils import rotation_matrix_to_quaternion
        return cls(
            timestamp=timestamp,
            position=np.asarray(pose.translation()),
            quaternion=rotation_matrix_to_quaternion(pose.rotation().matrix()),
            cov_position=np.eye(3) if cov_position is None else cov_position,
            cov_orientation=np.eye(3) if cov_orientation is None else cov_orientation,
        )


@dataclass
class PointCloud:
    """Sensor payload: a point cloud in the sensor frame."""
    points: np.ndarray  # Nx3
    frame_id: str = "sensor"

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=float).reshape(-1, 3)

    def __len__(self) -> int:
        return len(self.points)

    def downsample(self, density: float) -> 'PointCloud':
        """Keep roughly ``density`` of the points with a fixed stride."""
        if density >= 1.0 or len(self.points) == 0:
            return self
        stride = max(1, int(round(1.0 / density)))
        return PointCloud(points=self.points[::stride], frame_id=self.frame_id)

    def transformed(self, pose: gtsam.Pose3) -> np.ndarray:
        """Points expressed in the frame ``pose`` maps into."""
        R = pose.rotation().matrix()
        t = np.asarray(pose.translation())
        return self.points @ R.T + t


# ============================================================================
# Graph elements
# ============================================================================

@dataclass
class EdgeCandidate:
    """Proposed loop closure towards another vertex."""
    distance: float
    tested: bool = False
    error: float = 0.0

    # Keeps coincident candidates selectable
    MIN_ERROR = 1e-9

    @classmethod
    def from_distance(cls, distance: float) -> 'EdgeCandidate':
        """New untested candidate whose priority is its gating distance."""
        return cls(distance=float(distance), error=max(float(distance), cls.MIN_ERROR))


@dataclass
class EdgeSearchState:
    """Whether and where a vertex was last searched for candidates."""
    has_run: bool = False
    pose_snapshot: Optional[gtsam.Pose3] = None

    def reset(self) -> None:
        self.has_run = False
        self.pose_snapshot = None


@dataclass
class Vertex:
    """Pose node with an optional payload reference."""
    id: int
    estimate: gtsam.Pose3
    fixed: bool = False
    payload: Optional[PointCloud] = None
    search_state: EdgeSearchState = field(default_factory=EdgeSearchState)
    candidates: Dict[int, EdgeCandidate] = field(default_factory=dict)

    @property
    def has_payload(self) -> bool:
        return self.payload is not None

    @property
    def position(self) -> np.ndarray:
        return np.asarray(self.estimate.translation(), dtype=float)

    def missing_edge_error(self) -> float:
        """Sum of the errors of all untested candidates."""
        return float(sum(c.error for c in self.candidates.values() if not c.tested))

    def best_untested_candidate(self) -> Optional[Tuple[int, EdgeCandidate]]:
        """Untested candidate with the smallest distance."""
        untested = [(tid, c) for tid, c in self.candidates.items() if not c.tested]
        if not untested:
            return None
        return min(untested, key=lambda item: (item[1].distance, item[0]))

    def detach_payload(self) -> Optional[PointCloud]:
        """Drop the payload reference and the candidates that depended on it."""
        payload = self.payload
        self.payload = None
        self.candidates.clear()
        return payload


class EdgeKind(str, Enum):
    """Tag of the edge variant."""
    ODOMETRY = "odometry"
    REGISTRATION = "registration"


@dataclass
class OdometryEdge:
    """Constraint from the odometry delta between consecutive vertices."""
    source: int
    target: int
    measurement: gtsam.Pose3
    information: np.ndarray
    kind: EdgeKind = field(default=EdgeKind.ODOMETRY, init=False)

    @property
    def key(self) -> Tuple[int, int]:
        return (self.source, self.target)

    @property
    def valid(self) -> bool:
        return True


@dataclass
class RegistrationEdge:
    """Constraint from aligning the two vertices' payloads."""
    source: int
    target: int
    measurement: gtsam.Pose3
    information: np.ndarray
    fitness_score: float = 0.0
    valid: bool = True
    needs_refinement: bool = False
    kind: EdgeKind = field(default=EdgeKind.REGISTRATION, init=False)

    @property
    def key(self) -> Tuple[int, int]:
        return (self.source, self.target)


Edge = Union[OdometryEdge, RegistrationEdge]


def is_loop_closure(edge: Edge) -> bool:
    """Edge links vertices that are not id-adjacent."""
    return abs(edge.target - edge.source) > 1
