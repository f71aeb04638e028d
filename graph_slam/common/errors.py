"""
Error kinds and operation results for the pose-graph session.

Public session operations return a result object carrying a ``GraphStatus``
instead of raising, so callers can pick retry or abort per error kind.
``raise_for_status()`` turns a failed result into the matching exception.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class GraphStatus(str, Enum):
    """Outcome of a session operation."""
    OK = "ok"
    VERTEX_LIMIT_EXCEEDED = "vertex_limit_exceeded"
    INVALID_MEASUREMENT = "invalid_measurement"
    REGISTRATION_FAILURE = "registration_failure"
    OPTIMIZER_FAILURE = "optimizer_failure"
    INSERTION_REJECTED = "insertion_rejected"


class GraphSlamError(Exception):
    """Base class for all pose-graph errors."""
    status = GraphStatus.OK


class VertexLimitExceeded(GraphSlamError):
    """The vertex id space is exhausted."""
    status = GraphStatus.VERTEX_LIMIT_EXCEEDED


class InvalidMeasurement(GraphSlamError):
    """Odometry pose or covariance is malformed or non-finite."""
    status = GraphStatus.INVALID_MEASUREMENT


class RegistrationFailure(GraphSlamError):
    """Mandatory registration against the previous vertex failed."""
    status = GraphStatus.REGISTRATION_FAILURE


class OptimizerFailure(GraphSlamError):
    """Optimizer initialization or incremental update failed."""
    status = GraphStatus.OPTIMIZER_FAILURE


class InsertionRejected(GraphSlamError):
    """The graph or the solver refused a vertex or edge."""
    status = GraphStatus.INSERTION_REJECTED


class VertexNotCommitted(GraphSlamError, KeyError):
    """Vertex is unknown to an optimizer's committed graph."""


_ERRORS = {
    cls.status: cls
    for cls in (VertexLimitExceeded, InvalidMeasurement, RegistrationFailure,
                OptimizerFailure, InsertionRejected)
}


def error_for_status(status: GraphStatus) -> type:
    """Return the exception class for a failed status."""
    return _ERRORS[status]


@dataclass
class _Result:
    status: GraphStatus
    message: str

    @property
    def ok(self) -> bool:
        return self.status == GraphStatus.OK

    def raise_for_status(self) -> None:
        """Raise the exception matching ``status`` unless it is OK."""
        if not self.ok:
            raise error_for_status(self.status)(self.message)


@dataclass
class AddVertexResult(_Result):
    """Result of ``GraphSlamSession.add_vertex``."""
    vertex_id: Optional[int] = None

    @classmethod
    def success(cls, vertex_id: int) -> 'AddVertexResult':
        return cls(status=GraphStatus.OK, message="", vertex_id=vertex_id)

    @classmethod
    def failure(cls, status: GraphStatus, message: str) -> 'AddVertexResult':
        return cls(status=status, message=message)


@dataclass
class OptimizeResult(_Result):
    """Result of ``GraphSlamSession.optimize``.

    Attributes:
        iterations: Solver iterations run on the primary graph
        committed: Whether staged vertices/edges were folded in
    """
    iterations: int = 0
    committed: bool = False

    @classmethod
    def success(cls, iterations: int, committed: bool) -> 'OptimizeResult':
        return cls(status=GraphStatus.OK, message="", iterations=iterations,
                   committed=committed)

    @classmethod
    def failure(cls, message: str) -> 'OptimizeResult':
        return cls(status=GraphStatus.OPTIMIZER_FAILURE, message=message)
