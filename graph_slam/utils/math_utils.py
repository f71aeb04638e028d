"""
Mathematical utilities for the pose graph.
Uses scipy.spatial.transform.Rotation for rotations and GTSAM for poses.
6x6 pose covariances follow GTSAM's Pose3 tangent order [rx, ry, rz, tx, ty, tz].
"""

import numpy as np
from scipy.spatial.transform import Rotation

import gtsam


# ============================================================================
# SO3 Operations
# ============================================================================

def skew(v: np.ndarray) -> np.ndarray:
    """
    Convert 3D vector to skew-symmetric matrix (hat operator).

    Args:
        v: 3x1 vector

    Returns:
        3x3 skew-symmetric matrix
    """
    v = np.asarray(v).flatten()
    return np.array([
        [0, -v[2], v[1]],
        [v[2], 0, -v[0]],
        [-v[1], v[0], 0]
    ])


def quaternion_normalize(q: np.ndarray) -> np.ndarray:
    """
    Normalize quaternion to unit norm.

    Args:
        q: Quaternion [w, x, y, z]

    Returns:
        Normalized quaternion
    """
    q = np.asarray(q, dtype=float).flatten()
    norm = np.linalg.norm(q)
    if norm < 1e-10:
        return np.array([1.0, 0.0, 0.0, 0.0])
    return q / norm


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """
    Convert quaternion [w, x, y, z] to rotation matrix.
    """
    q = quaternion_normalize(q)
    # scipy expects [x, y, z, w]
    return Rotation.from_quat([q[1], q[2], q[3], q[0]]).as_matrix()


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert rotation matrix to quaternion [w, x, y, z]."""
    q = Rotation.from_matrix(np.asarray(R)).as_quat()  # [x, y, z, w]
    return np.array([q[3], q[0], q[1], q[2]])


# ============================================================================
# SE3 / Pose3 helpers
# ============================================================================

def pose3_from_position_quaternion(position: np.ndarray, quaternion: np.ndarray) -> gtsam.Pose3:
    """Build a Pose3 from a position and a [w, x, y, z] quaternion."""
    R = quaternion_to_rotation_matrix(quaternion)
    return gtsam.Pose3(gtsam.Rot3(R), gtsam.Point3(*np.asarray(position, dtype=float)))


def pose3_from_xyz_yaw(x: float, y: float, z: float = 0.0, yaw: float = 0.0) -> gtsam.Pose3:
    """Planar convenience constructor."""
    return gtsam.Pose3(gtsam.Rot3.Yaw(yaw), gtsam.Point3(x, y, z))


def translation_distance(a: gtsam.Pose3, b: gtsam.Pose3) -> float:
    """Euclidean distance between the translations of two poses."""
    return float(np.linalg.norm(np.asarray(a.translation()) - np.asarray(b.translation())))


# ============================================================================
# Covariance / information
# ============================================================================

def combine_pose_covariance(cov_position: np.ndarray, cov_orientation: np.ndarray) -> np.ndarray:
    """
    Assemble a 6x6 pose covariance from position and orientation blocks.

    Args:
        cov_position: 3x3 position covariance
        cov_orientation: 3x3 orientation covariance

    Returns:
        6x6 covariance in Pose3 tangent order (rotation first)
    """
    cov = np.zeros((6, 6))
    cov[:3, :3] = np.asarray(cov_orientation, dtype=float)
    cov[3:, 3:] = np.asarray(cov_position, dtype=float)
    return cov


def make_spd(cov: np.ndarray, floor: float = 1e-9) -> np.ndarray:
    """
    Symmetrize a covariance and clamp its eigenvalues to ``floor``.

    Nearly singular covariances (e.g. two identical cumulative odometry
    covariances) become well-conditioned instead of exploding on inversion.
    """
    cov = np.asarray(cov, dtype=float)
    cov = 0.5 * (cov + cov.T)
    eigvals, eigvecs = np.linalg.eigh(cov)
    eigvals = np.maximum(eigvals, floor)
    return (eigvecs * eigvals) @ eigvecs.T


def information_from_covariance(cov: np.ndarray, floor: float = 1e-9) -> np.ndarray:
    """Direct inverse of a floored covariance."""
    spd = make_spd(cov, floor)
    info = np.linalg.inv(spd)
    return 0.5 * (info + info.T)


def propagate_covariance_delta(previous_cov: np.ndarray, current_cov: np.ndarray,
                               floor: float) -> np.ndarray:
    """
    Covariance gained between two cumulative odometry samples.

    A sensor that reports a constant, non-cumulative covariance yields the
    floored delta here, i.e. very stiff odometry edges.

    Args:
        previous_cov: 6x6 cumulative covariance at the previous vertex
        current_cov: 6x6 cumulative covariance at the new vertex
        floor: Smallest eigenvalue kept

    Returns:
        6x6 symmetric positive-definite covariance delta
    """
    return make_spd(np.asarray(current_cov) - np.asarray(previous_cov), floor)


def positional_block(cov: np.ndarray) -> np.ndarray:
    """Translation block of a 6x6 Pose3 covariance."""
    return np.asarray(cov)[3:, 3:]


def mahalanobis_distance(delta: np.ndarray, cov: np.ndarray) -> float:
    """
    Covariance-normalized length of ``delta``.

    Falls back to the pseudo-inverse when ``cov`` is singular.
    """
    delta = np.asarray(delta, dtype=float).flatten()
    cov = np.asarray(cov, dtype=float)
    try:
        weighted = np.linalg.solve(cov, delta)
    except np.linalg.LinAlgError:
        weighted = np.linalg.pinv(cov) @ delta
    return float(np.sqrt(max(delta @ weighted, 0.0)))
