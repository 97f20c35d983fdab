"""Coupling command: files that change together."""

from typing import Optional

import typer
from rich.table import Table

from ..exceptions import NotFoundError
from ..persistence.aggregates import AggregateEngine
from . import app
from ._common import (
    console,
    emit_json,
    error_boundary,
    excluded_from_flags,
    is_json,
    open_index,
    resolve_config,
    scope_from_flags,
)


@app.command()
def coupling(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(
        None, help="File or directory (trailing /) to anchor on; omit for the top pairs"
    ),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of rows to show", min=1, max=1000),
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
    Show co-change coupling.

    With no PATH, lists the most frequently co-changed file pairs. With a
    file, lists the files that change alongside it and how often
    (co-changes / changes of the file). With a directory, lists files
    outside it that change together with files inside it.

    [bold cyan]Examples:[/bold cyan]

      gitmem coupling

      gitmem coupling src/db/commits.py

      gitmem coupling src/db/

      gitmem coupling --exclude "*.lock"
    """
    with error_boundary(ctx):
        with open_index(ctx) as db:
            config = resolve_config(ctx)
            excluded = excluded_from_flags(
                config, include_tests, include_docs, include_generated, include_all
            )
            scope = scope_from_flags(config, include, exclude, include_all)
            engine = AggregateEngine(db)

            if path is None:
                pairs = engine.get_top_coupled_pairs(limit=limit, excluded=excluded, scope=scope)
                payload = {"pairs": pairs}
            else:
                prefix = path if path.endswith("/") else path + "/"
                is_dir = path.endswith("/") or (
                    engine.get_file_stats(path) is None and engine.directory_file_count(prefix, scope) > 0
                )
                if is_dir:
                    rows = engine.get_coupled_files_for_directory(
                        prefix, limit=limit, excluded=excluded, scope=scope
                    )
                    payload = {"directory": prefix, "coupled": rows}
                else:
                    if engine.get_file_stats(path) is None:
                        raise NotFoundError(path, hint="Check the path, or run `gitmem index`")
                    rows = engine.get_coupled_files_with_ratio(
                        path, limit=limit, excluded=excluded, scope=scope
                    )
                    payload = {"file": path, "coupled": rows}

    if is_json(ctx):
        emit_json({**payload, "scope": scope.to_dict()})
        return

    if "pairs" in payload:
        _print_pairs(payload["pairs"])
    else:
        anchor = payload.get("file") or payload.get("directory")
        _print_coupled(anchor, payload["coupled"])


def _print_pairs(pairs) -> None:
    if not pairs:
        console.print("[yellow]No co-changing files found.[/yellow]")
        return
    table = Table(title="Most coupled file pairs", show_lines=False, pad_edge=True)
    table.add_column("File A", style="cyan")
    table.add_column("File B", style="cyan")
    table.add_column("Co-changes", justify="right", style="bold")
    for p in pairs:
        table.add_row(p.file_a, p.file_b, str(p.co_change_count))
    console.print()
    console.print(table)


def _print_coupled(anchor: str, rows) -> None:
    if not rows:
        console.print(f"[yellow]Nothing changes together with {anchor}.[/yellow]")
        return
    table = Table(title=f"Coupled with {anchor}", show_lines=False, pad_edge=True)
    table.add_column("File", style="cyan")
    table.add_column("Co-changes", justify="right", style="bold")
    table.add_column("Ratio", justify="right")
    for r in rows:
        table.add_row(r.file, str(r.co_change_count), f"{r.coupling_ratio:.0%}")
    console.print()
    console.print(table)
