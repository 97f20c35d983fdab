"""Hotspots command: files that change most, by type, complexity or both."""

from typing import Optional

import click
import typer
from rich.table import Table

from ..persistence.aggregates import SORT_CHOICES, AggregateEngine
from ..persistence.models import FileStats
from . import app
from ._common import (
    console,
    emit_json,
    error_boundary,
    excluded_from_flags,
    format_complexity,
    is_json,
    open_index,
    resolve_config,
    scope_from_flags,
    short_date,
)


@app.command()
def hotspots(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", help="Number of files to show", min=1, max=1000),
    sort: str = typer.Option(
        "total",
        "--sort",
        "-s",
        help="Rank by: total, a classification (bug-fix, feature, ...), complexity, combined",
        click_type=click.Choice(list(SORT_CHOICES), case_sensitive=False),
    ),
    path: Optional[str] = typer.Option(None, "--path", "-p", help="Only files under this prefix"),
    include_tests: bool = typer.Option(False, "--include-tests", help="Include test files"),
    include_docs: bool = typer.Option(False, "--include-docs", help="Include documentation files"),
    include_generated: bool = typer.Option(
        False, "--include-generated", help="Include generated files and lockfiles"
    ),
    include: Optional[list[str]] = typer.Option(
        None, "--include", "-I", help="Only paths matching this pattern (repeatable, * matches anything)"
    ),
    exclude: Optional[list[str]] = typer.Option(
        None, "--exclude", "-X", help="Skip paths matching this pattern (repeatable)"
    ),
    include_all: bool = typer.Option(
        False, "--all", help="Include every file category and ignore the configured scope"
    ),
):
    """
    List the most frequently changed files.

    [bold cyan]Examples:[/bold cyan]

      gitmem hotspots

      gitmem hotspots --sort bug-fix --limit 20

      gitmem hotspots --sort combined --path src/

      gitmem hotspots --include "src/*" --exclude "src/vendor/"
    """
    with error_boundary(ctx):
        with open_index(ctx) as db:
            config = resolve_config(ctx)
            excluded = excluded_from_flags(
                config, include_tests, include_docs, include_generated, include_all
            )
            scope = scope_from_flags(config, include, exclude, include_all)
            rows = AggregateEngine(db).get_hotspots(
                limit=limit, sort=sort.lower(), path_prefix=path, excluded=excluded, scope=scope
            )

    if is_json(ctx):
        emit_json(
            {
                "sort": sort.lower(),
                "excluded": list(excluded),
                "scope": scope.to_dict(),
                "hotspots": rows,
            }
        )
        return

    if not rows:
        console.print("[yellow]No hotspots yet.[/yellow] Run [bold]gitmem index[/bold] until it reports done.")
        return
    _print_table(rows, sort.lower())


def _print_table(rows: list[FileStats], sort: str) -> None:
    table = Table(title=f"Hotspots by {sort}", show_lines=False, pad_edge=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Changes", justify="right", style="bold")
    table.add_column("Bug fixes", justify="right", style="red")
    table.add_column("Features", justify="right", style="green")
    table.add_column("Complexity", justify="right")
    if sort == "combined":
        table.add_column("Score", justify="right", style="magenta")
    table.add_column("Last changed", style="dim")

    for i, s in enumerate(rows, 1):
        cells = [
            str(i),
            s.file_path,
            str(s.total_changes),
            str(s.bug_fix_count),
            str(s.feature_count),
            format_complexity(s.current_complexity),
        ]
        if sort == "combined":
            cells.append(f"{s.combined_score:.2f}" if s.combined_score is not None else "-")
        cells.append(short_date(s.last_changed))
        table.add_row(*cells)

    console.print()
    console.print(table)
