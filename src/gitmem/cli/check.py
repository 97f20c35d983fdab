"""Check command: grade stored classifications with a judge model."""

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from ..config import resolve_api_key
from ..enrichment.checker import CommitChecker, default_output_path, write_results
from ..enrichment.models import CheckOutcome, CheckResult, CheckSummary, EvalVerdict
from ..enrichment.service import create_judge_service
from ..exceptions import GitError, InvalidQueryError
from ..lock import WriteLock
from ..persistence.batch_jobs import BatchJobStore
from ..persistence.commits import CommitStore
from ..temporal.git_extractor import GitExtractor
from . import app
from ._common import (
    console,
    emit_json,
    error_boundary,
    is_json,
    open_index,
    repo_root,
    resolve_config,
    short_hash,
)


@app.command()
def check(
    ctx: typer.Context,
    commit: Optional[str] = typer.Argument(None, help="Commit hash (or unique prefix) to grade"),
    sample: Optional[int] = typer.Option(
        None, "--sample", "-s", help="Grade this many random classified commits", min=1, max=1000
    ),
    batch: bool = typer.Option(
        False, "--batch", "-b", help="Grade the sample through the Message Batches API (re-run to collect)"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Override the judge model"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Where to write sample results (default: .gitmem/check-<time>.json)"
    ),
):
    """
    Grade stored classifications and summaries with a judge model.

    Each commit is graded on classification correctness, summary accuracy
    and summary completeness. A classification the judge fails but would
    have chosen itself counts as a pass.

    [bold cyan]Examples:[/bold cyan]

      gitmem check 3f2a9c1

      gitmem check --sample 20

      gitmem check --sample 200 --batch   (re-run until it reports results)
    """
    root = repo_root(ctx)
    json_output = is_json(ctx)

    with error_boundary(ctx):
        if commit is None and sample is None:
            raise InvalidQueryError("check", "give a commit hash or --sample N")
        if commit is not None and sample is not None:
            raise InvalidQueryError("check", "a commit hash and --sample cannot be combined")
        if batch and sample is None:
            raise InvalidQueryError("check", "--batch requires --sample")

        with open_index(ctx) as db:
            config = resolve_config(ctx, judge_model=model)
            git = GitExtractor(str(root), max_diff_chars=config.max_diff_chars)
            if not git.is_git_repo():
                raise GitError(f"{root} is not a git repository")

            with WriteLock(db.index_dir):
                checker = CommitChecker(
                    git,
                    CommitStore(db),
                    BatchJobStore(db),
                    create_judge_service(config, resolve_api_key(), batch=batch),
                )
                if commit is not None:
                    result = checker.check_one(commit)
                    outcome = None
                else:
                    output_path = output or default_output_path(db.index_dir)
                    outcome = checker.check_sample(sample, output_path)
                    result = None

    if commit is not None:
        if output is not None:
            write_results(output, [result])
        if json_output:
            emit_json({"success": True, "result": result})
        else:
            _print_result(result)
        return

    if json_output:
        emit_json({"success": True, **outcome.model_dump(mode="json")})
        return
    _print_outcome(outcome)


def _mark(verdict: EvalVerdict) -> str:
    return "[green]pass[/green]" if verdict.passed else "[red]fail[/red]"


def _print_result(result: CheckResult) -> None:
    v = result.verdicts
    console.print()
    console.print(f"[bold cyan]{short_hash(result.hash)}[/bold cyan] {result.classification}: {result.summary}")
    console.print(f"Classification  {_mark(v.classification)}  [dim]{v.classification.reasoning}[/dim]")
    if not v.classification.passed and v.classification.suggested_classification:
        console.print(f"  suggested: [bold]{v.classification.suggested_classification}[/bold]")
    console.print(f"Accuracy        {_mark(v.accuracy)}  [dim]{v.accuracy.reasoning}[/dim]")
    console.print(f"Completeness    {_mark(v.completeness)}  [dim]{v.completeness.reasoning}[/dim]")


def _pct(count: int, total: int) -> str:
    return f"{count}/{total} ({count / total:.0%})" if total else "0/0"


def _print_summary(summary: CheckSummary) -> None:
    table = Table(title=f"Quality check ({summary.total} commits)", show_lines=False, pad_edge=True)
    table.add_column("Dimension", style="cyan")
    table.add_column("Passed", justify="right", style="bold")
    table.add_row("Classification correct", _pct(summary.classification_correct, summary.total))
    table.add_row("Summary accurate", _pct(summary.summary_accurate, summary.total))
    table.add_row("Summary complete", _pct(summary.summary_complete, summary.total))
    console.print()
    console.print(table)


def _print_outcome(outcome: CheckOutcome) -> None:
    if outcome.kind == "empty":
        console.print("[yellow]No classified commits to check.[/yellow] Run [bold]gitmem index[/bold] first.")
    elif outcome.kind == "submitted":
        console.print(
            f"Submitted check batch [cyan]{outcome.batch_id}[/cyan]. "
            "Run [bold]gitmem check --sample N --batch[/bold] again to collect results."
        )
    elif outcome.kind == "in_progress":
        console.print(f"Check batch [cyan]{outcome.batch_id}[/cyan] is still processing.")
    elif outcome.kind == "failed":
        console.print(f"[yellow]Check batch {outcome.batch_id} did not complete.[/yellow]")
    else:
        _print_summary(outcome.summary)
        for r in outcome.results:
            if r.verdicts.all_passed:
                continue
            _print_result(r)
        if outcome.failed:
            console.print(f"[yellow]{outcome.failed} commits could not be graded.[/yellow]")
        console.print(f"[dim]Results written to {outcome.output_path}[/dim]")
