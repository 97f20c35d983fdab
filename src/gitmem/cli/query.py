"""Query command: full-text search over classified commits."""

import typer
from rich.table import Table

from ..persistence.search import SearchIndex
from . import app
from ._common import console, emit_json, error_boundary, is_json, open_index, short_date, short_hash


@app.command()
def query(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Search terms (SQLite FTS5 syntax)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results", min=1, max=500),
):
    """
    Search commit messages, classifications and summaries.

    Only classified commits are searchable; the index is refreshed when
    `gitmem index` reports done.

    [bold cyan]Examples:[/bold cyan]

      gitmem query "race condition"

      gitmem query "classification:refactor AND parser"
    """
    with error_boundary(ctx):
        with open_index(ctx) as db:
            hits = SearchIndex(db).search(text, limit=limit)

    if is_json(ctx):
        emit_json({"query": text, "results": hits})
        return

    if not hits:
        console.print(f"[yellow]No commits match[/yellow] {text!r}")
        return

    table = Table(title=f"Results for {text!r}", show_lines=False, pad_edge=True)
    table.add_column("Commit", style="cyan")
    table.add_column("Date", style="green")
    table.add_column("Type")
    table.add_column("Author", style="dim")
    table.add_column("Summary")
    for h in hits:
        table.add_row(
            short_hash(h.hash),
            short_date(h.committed_at),
            h.classification or "-",
            h.author_name,
            h.summary or h.message.split("\n", 1)[0],
        )
    console.print()
    console.print(table)
