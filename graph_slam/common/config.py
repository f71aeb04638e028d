"""
Configuration models using Pydantic for type safety and validation.
"""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


# gtsam keys are unsigned 64-bit
MAX_VERTEX_ID = 2**64 - 1


class OdometryConfig(BaseModel):
    """How odometry samples become odometry edges."""
    covariance_floor: float = Field(
        1e-4,
        gt=0,
        description="Smallest eigenvalue allowed in a propagated covariance delta"
    )


class RegistrationConfig(BaseModel):
    """Point cloud registration (ICP) parameters."""
    max_correspondence_distance: float = Field(
        0.5,
        gt=0,
        description="Maximum point pair distance used for alignment (m)"
    )
    max_iterations: int = Field(30, ge=1, le=500, description="Maximum ICP iterations")
    convergence_threshold: float = Field(
        1e-6,
        gt=0,
        description="Stop when the transform update norm drops below this"
    )
    max_fitness_score: float = Field(
        0.05,
        gt=0,
        description="Largest mean squared residual accepted as success (m²)"
    )
    min_overlap: float = Field(
        0.3,
        gt=0,
        le=1,
        description="Fraction of points that must find a correspondence"
    )
    min_residual_variance: float = Field(
        1e-4,
        gt=0,
        description="Variance floor used when deriving the information matrix (m²)"
    )
    point_cloud_density: float = Field(
        1.0,
        gt=0,
        le=1,
        description="Fraction of payload points kept when attached to a vertex"
    )
    deferred: bool = Field(
        False,
        description="Check overlap only when adding vertices; align at the next optimize"
    )


class OptimizerConfig(BaseModel):
    """GTSAM solver parameters for the primary and shadow graphs."""
    relinearize_threshold: float = Field(0.01, gt=0, description="ISAM2 relinearization threshold")
    relinearize_skip: int = Field(1, ge=1, description="ISAM2 relinearization skip")
    fixed_vertex_sigma: float = Field(
        1e-4,
        gt=0,
        description="Prior sigma used to hold fixed vertices in place"
    )
    shadow_iterations: int = Field(
        5,
        ge=1,
        description="Batch iterations run on the shadow graph per commit"
    )


class DensityConfig(BaseModel):
    """Spatial grid that bounds how many vertices keep their payload."""
    enabled: bool = Field(True, description="Detach payloads from overfull cells")
    grid_resolution: float = Field(1.0, gt=0, description="Grid cell size (m)")
    max_vertices_per_cell: int = Field(
        5,
        ge=1,
        description="Payload-carrying vertices allowed per cell"
    )


class CandidateSearchConfig(BaseModel):
    """Loop-closure candidate gating."""
    max_sensor_distance: float = Field(
        5.0,
        gt=0,
        description="Accept pairs whose min(Mahalanobis, Euclidean) distance is below this"
    )
    pose_drift_threshold: Optional[float] = Field(
        0.5,
        description="Re-run search for vertices that moved more than this since their last search (m)"
    )

    @field_validator('pose_drift_threshold')
    @classmethod
    def validate_drift(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError('pose_drift_threshold must be positive or None')
        return v


class CandidateValidationConfig(BaseModel):
    """Best-first candidate validation."""
    max_attempts: int = Field(
        10,
        ge=0,
        description="Default registration attempts per validation round"
    )
    requeue_when_exhausted: bool = Field(
        False,
        description="Give tested candidates another chance once nothing untested remains"
    )


class GraphSlamConfig(BaseModel):
    """Complete pose-graph session configuration."""
    odometry: OdometryConfig = Field(default_factory=OdometryConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    density: DensityConfig = Field(default_factory=DensityConfig)
    candidate_search: CandidateSearchConfig = Field(default_factory=CandidateSearchConfig)
    candidate_validation: CandidateValidationConfig = Field(
        default_factory=CandidateValidationConfig
    )
    max_vertices: Optional[int] = Field(
        None,
        ge=1,
        description="Cap on vertex count (defaults to the full id space)"
    )

    @model_validator(mode='after')
    def validate_vertex_cap(self):
        """Keep the cap inside the solver's key space."""
        if self.max_vertices is not None and self.max_vertices > MAX_VERTEX_ID:
            raise ValueError(f'max_vertices must not exceed {MAX_VERTEX_ID}')
        return self

    @property
    def vertex_limit(self) -> int:
        return self.max_vertices if self.max_vertices is not None else MAX_VERTEX_ID


def load_graph_slam_config(path: Union[str, Path]) -> GraphSlamConfig:
    """Load session configuration from YAML file."""
    path = Path(path)
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    return GraphSlamConfig(**data)


def save_config(config: BaseModel, path: Union[str, Path]) -> None:
    """Save configuration to YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Convert to dict and handle enums
    data = config.model_dump(mode='json')

    with open(path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
