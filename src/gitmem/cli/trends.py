"""Trends command: change activity over time for a file or directory."""

import click
import typer
from rich.table import Table

from ..exceptions import NotFoundError
from ..persistence.aggregates import AggregateEngine
from ..persistence.trends import WINDOW_FORMATS
from . import app
from ._common import console, emit_json, error_boundary, format_complexity, is_json, open_index

_ARROWS = {"increasing": "[red]↑ increasing[/red]", "decreasing": "[green]↓ decreasing[/green]"}


@app.command()
def trends(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File path, or directory with a trailing /"),
    window: str = typer.Option(
        "monthly",
        "--window",
        "-w",
        help="Bucket size: weekly | monthly | quarterly",
        click_type=click.Choice(list(WINDOW_FORMATS), case_sensitive=False),
    ),
    limit: int = typer.Option(12, "--limit", "-n", help="Number of periods", min=1, max=520),
):
    """
    Show per-period changes, bug fixes and complexity, most recent first.

    [bold cyan]Examples:[/bold cyan]

      gitmem trends src/app.py

      gitmem trends src/ --window quarterly
    """
    with error_boundary(ctx):
        with open_index(ctx) as db:
            engine = AggregateEngine(db)
            periods, summary = engine.get_trend_summary(path, window.lower(), limit)
            if not periods:
                raise NotFoundError(path, hint="Use a trailing / for directories")

    if is_json(ctx):
        emit_json({"path": path, "window": window.lower(), "periods": periods, "trend": summary})
        return

    table = Table(title=f"{path} ({window.lower()})", show_lines=False, pad_edge=True)
    table.add_column("Period", style="cyan")
    table.add_column("Changes", justify="right", style="bold")
    table.add_column("Bug fixes", justify="right", style="red")
    table.add_column("Features", justify="right", style="green")
    table.add_column("Refactors", justify="right")
    table.add_column("+/-", justify="right", style="dim")
    table.add_column("Avg complexity", justify="right")
    for p in periods:
        table.add_row(
            p.period,
            str(p.total_changes),
            str(p.bug_fix_count),
            str(p.feature_count),
            str(p.refactor_count),
            f"+{p.additions} -{p.deletions}",
            format_complexity(p.avg_complexity),
        )
    console.print()
    console.print(table)

    if summary:
        console.print(
            f"Activity: {_ARROWS.get(summary.direction, 'stable')} "
            f"[dim](recent {summary.recent_avg}/period vs {summary.historical_avg})[/dim]"
        )
        console.print(f"Bug fixes: {_ARROWS.get(summary.bug_fix_trend, 'stable')}")
        console.print(f"Complexity: {_ARROWS.get(summary.complexity_trend, 'stable')}")
