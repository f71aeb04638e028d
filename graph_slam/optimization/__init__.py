"""
Optimizer contract, GTSAM back-end and the primary/shadow engine.
"""

from .optimizer import Optimizer, GtsamOptimizer
from .engine import OptimizationEngine

__all__ = [
    'Optimizer',
    'GtsamOptimizer',
    'OptimizationEngine'
]
