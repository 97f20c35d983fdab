"""Status command: index coverage, batch jobs and lock state."""

import typer
from rich.table import Table

from ..lock import WriteLock, format_lock_age
from ..persistence.batch_jobs import BatchJobStore
from ..persistence.commits import CommitStore
from . import app
from ._common import console, emit_json, error_boundary, is_json, open_index, resolve_config, short_date


@app.command()
def status(
    ctx: typer.Context,
    jobs_limit: int = typer.Option(5, "--jobs", "-n", help="Recent batch jobs to list", min=0, max=100),
):
    """
    Show how much of the history is indexed and classified.

    [bold cyan]Examples:[/bold cyan]

      gitmem status

      gitmem --format json status
    """
    with error_boundary(ctx):
        with open_index(ctx) as db:
            config = resolve_config(ctx)
            commits = CommitStore(db)
            jobs = BatchJobStore(db)
            lock = WriteLock(db.index_dir)
            holder = lock.read()

            data = {
                "total_commits": commits.total_count(),
                "enriched": commits.enriched_count(),
                "failed": commits.failed_count(),
                "pending": commits.count_unenriched(config.ai_start_date) if config.ai_enabled else 0,
                "ai": config.ai,
                "model": config.index_model,
                "classifications": commits.classification_counts(),
                "open_jobs": [j.id for j in jobs.list_open(kind=None)],
                "recent_jobs": jobs.list_all(limit=jobs_limit),
                "last_run": db.get_meta("last_run"),
                "aggregates_rebuilt_at": db.get_meta("aggregates_rebuilt_at"),
                "locked": lock.is_locked(),
                "lock_holder": holder.to_dict() if holder else None,
                "lock_stale": lock.is_stale(),
            }

    if is_json(ctx):
        emit_json(data)
        return

    total = data["total_commits"]
    enriched = data["enriched"]
    pct = f" ({enriched / total:.0%})" if total else ""
    console.print()
    console.print(f"[bold]Commits indexed:[/bold] {total}")
    if config.ai_enabled:
        console.print(f"[bold]Classified:[/bold] {enriched}{pct}")
        console.print(f"[bold]Pending:[/bold] {data['pending']}")
        if data["failed"]:
            console.print(
                f"[bold]Failed:[/bold] [yellow]{data['failed']}[/yellow] "
                "[dim](gitmem index --retry-failed)[/dim]"
            )
        if config.ai_start_date:
            console.print(f"[dim]Classifying commits since {config.ai_start_date}[/dim]")
    else:
        console.print("[dim]AI classification disabled[/dim]")
    console.print(f"[bold]Last run:[/bold] {data['last_run'] or 'never'}")

    if data["classifications"]:
        table = Table(title="Classifications", show_lines=False, pad_edge=True)
        table.add_column("Type", style="cyan")
        table.add_column("Commits", justify="right")
        for cls, count in data["classifications"].items():
            table.add_row(cls, str(count))
        console.print()
        console.print(table)

    if data["recent_jobs"]:
        table = Table(title="Batch jobs", show_lines=False, pad_edge=True)
        table.add_column("ID", style="bold")
        table.add_column("Kind")
        table.add_column("Status")
        table.add_column("Created", style="green")
        table.add_column("Requests", justify="right")
        table.add_column("OK", justify="right")
        table.add_column("Failed", justify="right", style="yellow")
        for job in data["recent_jobs"]:
            table.add_row(
                job.id,
                job.kind,
                job.status,
                short_date(job.created_at),
                str(job.request_count),
                str(job.succeeded_count),
                str(job.failed_count),
            )
        console.print()
        console.print(table)

    if holder:
        console.print()
        state = "[red]stale[/red]" if data["lock_stale"] else "held"
        console.print(
            f"[bold]Write lock:[/bold] {state} by pid {holder.pid} on {holder.hostname} "
            f"({format_lock_age(holder)} ago)"
        )
        if data["lock_stale"]:
            console.print("[dim]Remove it with `gitmem unlock`[/dim]")
