"""
Pose graph visualization using Plotly.
"""

import numpy as np
import plotly.graph_objects as go
from typing import Dict, List, Union
from pathlib import Path

from graph_slam.common.data_structures import RegistrationEdge, is_loop_closure
from graph_slam.graph.pose_graph import PoseGraph


EDGE_STYLES = {
    'odometry': dict(color='gray', width=2),
    'registration': dict(color='green', width=2),
    'loop_closure': dict(color='blue', width=3),
    'invalid': dict(color='red', width=2, dash='dot'),
}


def _edge_style(edge) -> str:
    if isinstance(edge, RegistrationEdge) and not edge.valid:
        return 'invalid'
    if is_loop_closure(edge):
        return 'loop_closure'
    return edge.kind.value


def plot_pose_graph(
    graph: PoseGraph,
    title: str = "Pose Graph",
    show_edges: bool = True
) -> go.Figure:
    """
    Create 3D pose graph plot using Plotly.

    Args:
        graph: Pose graph to plot
        title: Plot title
        show_edges: Whether to draw the edges

    Returns:
        Plotly figure object
    """
    vertices = list(graph)
    if vertices:
        positions = np.array([v.position for v in vertices])
    else:
        positions = np.zeros((0, 3))

    fig = go.Figure()

    # One trace per edge style so the legend stays short
    if show_edges:
        segments: Dict[str, List[List[float]]] = {style: [[], [], []] for style in EDGE_STYLES}
        for key in sorted(graph.edges):
            edge = graph.edges[key]
            a = graph.vertex(edge.source).position
            b = graph.vertex(edge.target).position
            xs, ys, zs = segments[_edge_style(edge)]
            xs.extend([a[0], b[0], None])
            ys.extend([a[1], b[1], None])
            zs.extend([a[2], b[2], None])

        for style, (xs, ys, zs) in segments.items():
            if not xs:
                continue
            fig.add_trace(go.Scatter3d(
                x=xs, y=ys, z=zs,
                mode='lines',
                name=style.replace('_', ' ').title(),
                line=EDGE_STYLES[style],
                hoverinfo='skip'
            ))

    has_payload = np.array([v.has_payload for v in vertices], dtype=bool)
    for mask, name, symbol in ((has_payload, 'Vertices', 'circle'),
                               (~has_payload, 'Vertices (no payload)', 'circle-open')):
        if not mask.any():
            continue
        fig.add_trace(go.Scatter3d(
            x=positions[mask, 0],
            y=positions[mask, 1],
            z=positions[mask, 2],
            mode='markers',
            name=name,
            marker=dict(
                size=4,
                color='black',
                symbol=symbol
            ),
            hovertemplate=(
                '<b>%{text}</b><br>' +
                'X: %{x:.3f}<br>' +
                'Y: %{y:.3f}<br>' +
                'Z: %{z:.3f}<br>' +
                '<extra></extra>'
            ),
            text=[f'vertex {v.id}' for v, m in zip(vertices, mask) if m]
        ))

    fig.update_layout(
        title=title,
        scene=dict(
            xaxis=dict(title='X (m)'),
            yaxis=dict(title='Y (m)'),
            zaxis=dict(title='Z (m)'),
            aspectmode='data'
        ),
        showlegend=True,
        legend=dict(
            yanchor="top",
            y=0.99,
            xanchor="left",
            x=0.01
        ),
        margin=dict(l=0, r=0, t=40, b=0),
        hovermode='closest'
    )

    return fig


def save_graph_plot(
    fig: go.Figure,
    filepath: Union[str, Path],
    include_plotlyjs: str = 'cdn'
) -> Path:
    """
    Save pose graph plot to HTML file.

    Returns:
        Path to saved file
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if filepath.suffix != '.html':
        filepath = filepath.with_suffix('.html')

    fig.write_html(str(filepath), include_plotlyjs=include_plotlyjs)
    return filepath
