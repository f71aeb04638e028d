"""
Synthetic loop trajectories with noisy odometry and point cloud scans.

Used by the CLI demo and the end-to-end tests: a robot drives circular laps
through a static point world, so later laps revisit earlier poses.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import gtsam

from graph_slam.common.data_structures import OdometrySample, PointCloud
from graph_slam.utils.math_utils import pose3_from_xyz_yaw


@dataclass
class LoopScenarioConfig:
    """Configuration for the synthetic loop scenario."""
    # Trajectory
    radius: float = 8.0
    poses_per_lap: int = 32
    laps: int = 2

    # World points inside [-extent, extent]^2 x [0, height]
    num_world_points: int = 3000
    extent: float = 15.0
    height: float = 3.0

    # Sensor
    sensor_range: float = 8.0
    point_noise: float = 0.01

    # Odometry noise per step (translation m, rotation rad)
    translation_sigma: float = 0.02
    rotation_sigma: float = 0.005

    seed: Optional[int] = None


@dataclass
class ScenarioStep:
    """One pose of the scenario."""
    ground_truth: gtsam.Pose3
    odometry: OdometrySample
    scan: PointCloud


@dataclass
class LoopScenario:
    """Generated scenario data."""
    world: np.ndarray
    steps: List[ScenarioStep] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)


def circle_poses(radius: float, poses_per_lap: int, laps: int) -> List[gtsam.Pose3]:
    """Planar poses on a circle, heading along the tangent."""
    poses = []
    for k in range(poses_per_lap * laps):
        theta = 2.0 * np.pi * k / poses_per_lap
        poses.append(pose3_from_xyz_yaw(
            radius * np.sin(theta),
            radius * (1.0 - np.cos(theta)),
            0.0,
            theta,
        ))
    return poses


def observe(world: np.ndarray, pose: gtsam.Pose3, sensor_range: float,
            rng: np.random.Generator, point_noise: float = 0.0) -> PointCloud:
    """World points within range, expressed in the sensor frame."""
    R = pose.rotation().matrix()
    t = np.asarray(pose.translation())
    local = (world - t) @ R
    visible = local[np.linalg.norm(local, axis=1) <= sensor_range]
    if point_noise > 0:
        visible = visible + rng.normal(0.0, point_noise, visible.shape)
    return PointCloud(points=visible)


def generate_loop_scenario(config: Optional[LoopScenarioConfig] = None) -> LoopScenario:
    """
    Generate a multi-lap loop with drifting odometry.

    Odometry is the integral of noisy ground-truth increments; its cumulative
    covariance grows linearly with the number of steps.

    Args:
        config: Scenario configuration

    Returns:
        Scenario with the world points and one step per pose
    """
    config = config or LoopScenarioConfig()
    rng = np.random.default_rng(config.seed)

    world = np.column_stack([
        rng.uniform(-config.extent, config.extent, config.num_world_points),
        rng.uniform(-config.extent + config.radius, config.extent + config.radius,
                    config.num_world_points),
        rng.uniform(0.0, config.height, config.num_world_points),
    ])
    scenario = LoopScenario(world=world)

    sigmas = np.array([config.rotation_sigma] * 3 + [config.translation_sigma] * 3)
    odometry_pose = gtsam.Pose3()
    previous_truth = None

    for k, truth in enumerate(circle_poses(config.radius, config.poses_per_lap, config.laps)):
        if previous_truth is None:
            odometry_pose = truth
        else:
            noise = rng.normal(0.0, 1.0, 6) * sigmas
            step = previous_truth.between(truth).compose(gtsam.Pose3.Expmap(noise))
            odometry_pose = odometry_pose.compose(step)
        previous_truth = truth

        sample = OdometrySample.from_pose3(
            odometry_pose,
            timestamp=float(k),
            cov_position=np.eye(3) * (k + 1) * config.translation_sigma ** 2,
            cov_orientation=np.eye(3) * (k + 1) * config.rotation_sigma ** 2,
        )
        scan = observe(world, truth, config.sensor_range, rng, config.point_noise)
        scenario.steps.append(ScenarioStep(ground_truth=truth, odometry=sample, scan=scan))

    return scenario
