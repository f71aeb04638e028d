"""
Visualization of the pose graph.
"""

from .graph_plot import (
    plot_pose_graph,
    save_graph_plot
)

__all__ = [
    'plot_pose_graph',
    'save_graph_plot'
]
