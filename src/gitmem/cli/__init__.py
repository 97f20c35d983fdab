"""CLI entry point: registers all subcommands."""

from pathlib import Path
from typing import Optional

import click
import typer

from .. import __version__
from ..logging_config import setup_logging
from ._common import OUTPUT_FORMATS, console

app = typer.Typer(
    name="gitmem",
    help="gitmem - classified commit history, hotspots and co-change coupling for a git repository",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"gitmem {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    path: Optional[Path] = typer.Option(
        None,
        "-C",
        "--path",
        help="Repository root (default: current directory)",
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
    ),
    output_format: str = typer.Option(
        "rich",
        "--format",
        "-f",
        help="Output format: rich | json",
        click_type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also append logs to this file"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """
    Index a repository's commit history, classify commits with an LLM,
    and query hotspots, coupling and trends.

    [bold cyan]Getting started:[/bold cyan]

      gitmem init

      gitmem index        (re-run until it reports done)

      gitmem hotspots
    """
    setup_logging(verbose=verbose, quiet=quiet, log_file=str(log_file) if log_file else None)
    ctx.ensure_object(dict)
    ctx.obj["path"] = (path or Path.cwd()).resolve()
    ctx.obj["format"] = output_format.lower()
    ctx.obj["verbose"] = verbose


# Import subcommands to register them
from .init import init as _init  # noqa: F401, E402
from .index import index as _index  # noqa: F401, E402
from .status import status as _status  # noqa: F401, E402
from .hotspots import hotspots as _hotspots  # noqa: F401, E402
from .coupling import coupling as _coupling  # noqa: F401, E402
from .stats import stats as _stats  # noqa: F401, E402
from .trends import trends as _trends  # noqa: F401, E402
from .query import query as _query  # noqa: F401, E402
from .check import check as _check  # noqa: F401, E402
from .unlock import unlock as _unlock  # noqa: F401, E402


def run() -> None:
    app()
