"""
Text diagnostics of the pose graph.
"""

from .graphviz import graph_to_dot, write_dot

__all__ = [
    'graph_to_dot',
    'write_dot'
]
