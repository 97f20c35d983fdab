"""Stats command: change history summary for one file or directory."""

from typing import Optional

import typer
from rich.table import Table

from ..exceptions import NotFoundError
from ..persistence.aggregates import AggregateEngine
from ..persistence.commits import CommitStore
from ..temporal.models import CLASSIFICATIONS
from . import app
from ._common import (
    console,
    emit_json,
    error_boundary,
    format_complexity,
    is_json,
    open_index,
    resolve_config,
    scope_from_flags,
    short_date,
    short_hash,
)


@app.command()
def stats(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File path, or directory with a trailing /"),
    recent: int = typer.Option(5, "--recent", "-r", help="Recent commits to list", min=0, max=100),
    include: Optional[list[str]] = typer.Option(
        None, "--include", "-I", help="Only paths matching this pattern (repeatable, * matches anything)"
    ),
    exclude: Optional[list[str]] = typer.Option(
        None, "--exclude", "-X", help="Skip paths matching this pattern (repeatable)"
    ),
    include_all: bool = typer.Option(False, "--all", help="Ignore the configured scope"),
):
    """
    Summarize how a file or directory has changed.

    [bold cyan]Examples:[/bold cyan]

      gitmem stats src/app.py

      gitmem stats src/

      gitmem stats src/ --exclude "src/generated/"
    """
    with error_boundary(ctx):
        with open_index(ctx) as db:
            scope = scope_from_flags(resolve_config(ctx), include, exclude, include_all)
            engine = AggregateEngine(db)
            is_dir = path.endswith("/")
            if not is_dir and engine.get_file_stats(path) is None:
                if engine.directory_file_count(path + "/", scope) > 0:
                    path, is_dir = path + "/", True

            if is_dir:
                file_stats = engine.get_directory_stats(path, scope)
                file_count = engine.directory_file_count(path, scope)
            else:
                file_stats = engine.get_file_stats(path)
                file_count = 1
            if file_stats is None:
                raise NotFoundError(path, hint="Check the path, or run `gitmem index`")

            contributors = engine.get_top_contributors(path, scope=scope)
            commits = CommitStore(db).recent_for_path(path, limit=recent, scope=scope)

    if is_json(ctx):
        emit_json(
            {
                "path": path,
                "is_directory": is_dir,
                "file_count": file_count,
                "scope": scope.to_dict(),
                "stats": file_stats,
                "contributors": contributors,
                "recent_commits": [
                    {
                        "hash": c.hash,
                        "committed_at": c.committed_at,
                        "classification": c.classification,
                        "summary": c.summary,
                        "subject": c.subject,
                    }
                    for c in commits
                ],
            }
        )
        return

    s = file_stats
    console.print()
    title = f"[bold cyan]{path}[/bold cyan]"
    if is_dir:
        title += f" [dim]({file_count} files)[/dim]"
    console.print(title)
    console.print(
        f"Changes: [bold]{s.total_changes}[/bold]   "
        f"+{s.total_additions} -{s.total_deletions}   "
        f"first {short_date(s.first_seen)}, last {short_date(s.last_changed)}"
    )
    console.print(
        f"Lines of code: {s.current_loc if s.current_loc is not None else '-'}   "
        f"Complexity: {format_complexity(s.current_complexity)} "
        f"(avg {format_complexity(s.avg_complexity)}, max {format_complexity(s.max_complexity)})"
    )

    breakdown = [(cls, s.count_for(cls)) for cls in CLASSIFICATIONS if s.count_for(cls)]
    if breakdown:
        console.print("By type: " + ", ".join(f"{cls} {n}" for cls, n in breakdown))

    if contributors:
        table = Table(title="Top contributors", show_lines=False, pad_edge=True)
        table.add_column("Author", style="cyan")
        table.add_column("Email", style="dim")
        table.add_column("Commits", justify="right")
        for c in contributors:
            table.add_row(c.author_name, c.author_email, str(c.commit_count))
        console.print()
        console.print(table)

    if commits:
        table = Table(title="Recent commits", show_lines=False, pad_edge=True)
        table.add_column("Commit", style="cyan")
        table.add_column("Date", style="green")
        table.add_column("Type")
        table.add_column("Summary")
        for c in commits:
            table.add_row(
                short_hash(c.hash),
                short_date(c.committed_at),
                c.classification or "-",
                c.summary or c.subject,
            )
        console.print()
        console.print(table)
