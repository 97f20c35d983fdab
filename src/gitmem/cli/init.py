"""Init command: create the .gitmem index for a repository."""

from typing import Optional

import typer

from ..config import load_config, write_config
from ..exceptions import ConfigurationError, GitError
from ..persistence.database import IndexDB
from ..temporal.git_extractor import GitExtractor
from . import app
from ._common import console, emit_json, error_boundary, is_json, repo_root


@app.command()
def init(
    ctx: typer.Context,
    no_ai: bool = typer.Option(False, "--no-ai", help="Index history without LLM classification"),
    ai_since: Optional[str] = typer.Option(
        None, "--ai-since", help="Only classify commits on or after this date (YYYY-MM-DD)"
    ),
    since: Optional[str] = typer.Option(
        None, "--since", help="Ignore commits before this date (YYYY-MM-DD)"
    ),
    model: Optional[str] = typer.Option(None, "--model", help="Model used for classification"),
):
    """
    Create the .gitmem/ index directory, its database and config.toml.

    [bold cyan]Examples:[/bold cyan]

      gitmem init

      gitmem init --ai-since 2024-01-01

      gitmem init --no-ai
    """
    root = repo_root(ctx)
    with error_boundary(ctx):
        if not GitExtractor(str(root)).is_git_repo():
            raise GitError(f"{root} is not a git repository")

        db = IndexDB(str(root))
        if db.exists:
            raise ConfigurationError(
                "Already initialized",
                details={"index_dir": str(db.index_dir)},
                hint="Run `gitmem index` to update the index",
            )

        ai = False if no_ai else (ai_since or None)
        config = load_config(ai=ai, index_start_date=since, index_model=model)

        with db:
            config_path = write_config(db.index_dir, config)

    if is_json(ctx):
        emit_json({"success": True, "index_dir": str(db.index_dir), "config": config.to_dict()})
        return

    console.print(f"[green]Initialized[/green] {db.index_dir}")
    console.print(f"[dim]Settings written to {config_path}[/dim]")
    if config.ai_enabled:
        console.print("Next: set ANTHROPIC_API_KEY and run [bold]gitmem index[/bold]")
    else:
        console.print("Next: run [bold]gitmem index[/bold]")
