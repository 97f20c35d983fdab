"""Index command: advance the enrichment pipeline by one phase."""

from typing import Optional

import typer

from ..config import resolve_api_key
from ..enrichment.models import CyclePhase, CycleResult
from ..enrichment.orchestrator import EnrichmentOrchestrator
from ..enrichment.service import create_service
from ..exceptions import GitError
from ..lock import WriteLock
from ..persistence.aggregates import AggregateEngine
from ..persistence.batch_jobs import BatchJobStore
from ..persistence.commits import CommitStore
from ..persistence.models import FAILED, IN_PROGRESS
from ..persistence.search import SearchIndex
from ..temporal.git_extractor import GitExtractor
from . import app
from ._common import (
    console,
    emit_json,
    err_console,
    error_boundary,
    is_json,
    open_index,
    repo_root,
    resolve_config,
)
from .progress import IndexProgressDisplay


@app.command()
def index(
    ctx: typer.Context,
    direct: bool = typer.Option(
        False, "--direct", help="Classify synchronously with one request per commit instead of a batch"
    ),
    model: Optional[str] = typer.Option(None, "--model", help="Override the classification model"),
    retry_failed: bool = typer.Option(
        False, "--retry-failed", help="Make commits whose classification failed eligible again"
    ),
):
    """
    Run one indexing cycle.

    Each run does one step: submit a batch of commits for classification,
    check on (and import) a submitted batch, or, when every commit is
    classified, rebuild hotspots, coupling and the search index. Re-run
    until it reports the index is up to date.

    [bold cyan]Examples:[/bold cyan]

      gitmem index

      gitmem index --direct

      gitmem index --retry-failed
    """
    root = repo_root(ctx)
    json_output = is_json(ctx)

    with error_boundary(ctx):
        with open_index(ctx) as db:
            config = resolve_config(ctx, index_model=model, batch_mode=False if direct else None)
            git = GitExtractor(str(root), max_diff_chars=config.max_diff_chars)
            if not git.is_git_repo():
                raise GitError(f"{root} is not a git repository")

            with WriteLock(db.index_dir):
                commits = CommitStore(db)
                if retry_failed:
                    cleared = commits.clear_failures()
                    if not json_output:
                        console.print(f"Retrying {cleared} previously failed commits")

                orchestrator = EnrichmentOrchestrator(
                    config,
                    git,
                    commits,
                    BatchJobStore(db),
                    AggregateEngine(
                        db,
                        min_cochanges=config.min_cochanges,
                        max_files_per_commit=config.max_coupling_files_per_commit,
                    ),
                    SearchIndex(db),
                    service_factory=lambda: create_service(config, resolve_api_key()),
                )
                with IndexProgressDisplay(err_console, enabled=not json_output) as display:
                    result = orchestrator.run_cycle(display.update)

    if json_output:
        emit_json({"success": True, **result.model_dump(mode="json")})
        return
    _print_result(result)


def _print_result(result: CycleResult) -> None:
    if result.discovered:
        console.print(f"Discovered [bold]{result.discovered}[/bold] new commits")

    if result.phase == CyclePhase.DONE:
        console.print(
            f"[green]Index up to date.[/green] "
            f"{result.total_enriched}/{result.total_commits} commits classified"
        )
        return

    if result.batch_status == IN_PROGRESS:
        console.print(f"Batch [cyan]{result.batch_id}[/cyan] is still processing.")
    elif result.batch_status == FAILED:
        console.print(
            f"[yellow]Batch {result.batch_id} did not complete;[/yellow] "
            f"{result.failed_this_run} commits marked failed "
            "(retry with [bold]gitmem index --retry-failed[/bold])"
        )
    elif result.phase == CyclePhase.SUBMITTING:
        console.print(f"Submitted batch [cyan]{result.batch_id}[/cyan].")
    else:
        console.print(
            f"Classified [bold]{result.enriched_this_run}[/bold] commits"
            + (f", {result.failed_this_run} failed" if result.failed_this_run else "")
        )

    console.print(
        f"[dim]{result.total_enriched}/{result.total_commits} classified, "
        f"{result.pending} pending.[/dim] Run [bold]gitmem index[/bold] again to continue."
    )
