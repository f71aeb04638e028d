#!/usr/bin/env python3
"""
Pose-graph SLAM - Command Line Interface
"""

import sys
import os
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
# Add parent directory to path for graph_slam imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from graph_slam.common.config import GraphSlamConfig, load_graph_slam_config, save_config
from graph_slam.common.data_structures import is_loop_closure
from graph_slam.plotting.graph_plot import plot_pose_graph, save_graph_plot
from graph_slam.session import GraphSlamSession
from graph_slam.simulation.synthetic import LoopScenarioConfig, generate_loop_scenario
from graph_slam.utils.math_utils import translation_distance

app = typer.Typer(
    name="graph-slam",
    help="Incremental pose-graph SLAM CLI",
    add_completion=False,
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(name)s - %(message)s',
        handlers=[RichHandler(console=console, show_path=False)]
    )


@app.command()
def run(
    config: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to session config YAML file"
    ),
    laps: int = typer.Option(
        2,
        "--laps", "-l",
        help="Number of laps around the loop"
    ),
    poses_per_lap: int = typer.Option(
        32,
        "--poses-per-lap", "-p",
        help="Vertices added per lap"
    ),
    radius: float = typer.Option(
        8.0,
        "--radius", "-r",
        help="Loop radius in meters"
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed", "-s",
        help="Random seed for reproducibility"
    ),
    iterations: int = typer.Option(
        5,
        "--iterations", "-i",
        help="Solver iterations per optimize call"
    ),
    optimize_every: int = typer.Option(
        4,
        "--optimize-every",
        help="Optimize and search for loop closures every N vertices"
    ),
    dot: Optional[Path] = typer.Option(
        None,
        "--dot",
        help="Write the Graphviz dump of the final graph"
    ),
    html: Optional[Path] = typer.Option(
        None,
        "--html",
        help="Write an interactive Plotly figure of the final graph"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logging"
    ),
):
    """Run the session on a synthetic multi-lap loop."""
    _setup_logging(verbose)

    session_config = load_graph_slam_config(config) if config else GraphSlamConfig()
    scenario = generate_loop_scenario(LoopScenarioConfig(
        radius=radius,
        poses_per_lap=poses_per_lap,
        laps=laps,
        seed=seed,
    ))
    session = GraphSlamSession(session_config)

    console.print("[bold green]Running pose-graph SLAM[/bold green]")
    console.print(f"  Poses: [cyan]{len(scenario)}[/cyan] ({laps} laps)")
    if config:
        console.print(f"  Config: [cyan]{config}[/cyan]")

    vertex_truth = {}
    rejected = 0
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        task = progress.add_task("Adding vertices...", total=len(scenario))
        for k, step in enumerate(scenario.steps):
            result = session.add_vertex(step.odometry, step.scan)
            if result.ok:
                vertex_truth[result.vertex_id] = step.ground_truth
            else:
                rejected += 1
                console.print(f"[yellow]Pose {k} rejected: {result.status.value}[/yellow]")

            if (k + 1) % optimize_every == 0:
                optimized = session.optimize(iterations)
                if not optimized.ok:
                    console.print(f"[red]Optimization failed: {optimized.message}[/red]")
                    raise typer.Exit(1)
                session.search_edge_candidates()
                session.try_best_edge_candidates()
            progress.update(task, advance=1)

    final = session.optimize(iterations)
    if not final.ok:
        console.print(f"[red]Optimization failed: {final.message}[/red]")
        raise typer.Exit(1)
    session.update_map_transforms()

    graph = session.graph
    errors = np.array([
        translation_distance(graph.vertex(vid).estimate, truth)
        for vid, truth in vertex_truth.items()
    ])
    loop_closures = sum(1 for e in graph.edges.values() if is_loop_closure(e))

    table = Table(title="Pose Graph")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Vertices", str(graph.vertex_count))
    table.add_row("Rejected poses", str(rejected))
    table.add_row("Edges", str(graph.edge_count))
    table.add_row("Loop closures", str(loop_closures))
    table.add_row("Payloads retained", str(len(graph.payload_vertices(active_only=False))))
    table.add_row("Commits", str(session.engine.commit_count))
    if len(errors):
        table.add_row("Translation RMSE (m)", f"{np.sqrt(np.mean(errors ** 2)):.4f}")
        table.add_row("Max translation error (m)", f"{errors.max():.4f}")
    console.print(table)

    if dot:
        session.write_dot(dot)
        console.print(f"[green]Graphviz dump written to {dot}[/green]")
    if html:
        path = save_graph_plot(plot_pose_graph(graph), html)
        console.print(f"[green]Plot written to {path}[/green]")


@app.command()
def config(
    output: Path = typer.Argument(
        Path("config/graph_slam.yaml"),
        help="Where to write the default configuration"
    ),
):
    """Write the default session configuration as YAML."""
    save_config(GraphSlamConfig(), output)
    console.print(f"[green]Default configuration written to {output}[/green]")


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
