"""
Payload ownership and density-bounded retention.
"""

from .map_store import MapStore, InMemoryMapStore
from .density import DensityController, VertexGrid

__all__ = [
    'MapStore',
    'InMemoryMapStore',
    'DensityController',
    'VertexGrid'
]
