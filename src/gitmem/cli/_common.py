"""Shared CLI helpers."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from ..config import GitmemConfig, load_config
from ..exceptions import GitmemError
from ..file_filter import Scope, resolve_excluded, resolve_scope
from ..persistence.database import IndexDB, index_dir_for

console = Console()
err_console = Console(stderr=True)

OUTPUT_FORMATS = ["rich", "json"]


def repo_root(ctx: typer.Context) -> Path:
    obj = ctx.obj or {}
    return obj.get("path") or Path.cwd().resolve()


def is_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj) and ctx.obj.get("format") == "json"


def render_error(error: GitmemError, json_output: bool) -> None:
    if json_output:
        print(json.dumps(error.to_dict(), indent=2))
        return
    err_console.print(f"[red]Error:[/red] {error}")
    if error.hint:
        err_console.print(f"[dim]{error.hint}[/dim]")


@contextmanager
def error_boundary(ctx: typer.Context) -> Iterator[None]:
    """Turn a GitmemError into a message and the error's exit code."""
    try:
        yield
    except GitmemError as e:
        render_error(e, is_json(ctx))
        raise typer.Exit(code=e.exit_code) from e


@contextmanager
def open_index(ctx: typer.Context) -> Iterator[IndexDB]:
    """Open an existing index; raises NotInitializedError if there is none."""
    with IndexDB(str(repo_root(ctx)), create=False) as db:
        yield db


def resolve_config(ctx: typer.Context, **overrides) -> GitmemConfig:
    return load_config(index_dir_for(str(repo_root(ctx))), **overrides)


def excluded_from_flags(
    config: GitmemConfig,
    include_tests: bool,
    include_docs: bool,
    include_generated: bool,
    include_all: bool,
) -> tuple[str, ...]:
    return resolve_excluded(
        include_tests=include_tests,
        include_docs=include_docs,
        include_generated=include_generated,
        include_all=include_all,
        base=config.excluded_categories,
    )


def scope_from_flags(
    config: GitmemConfig,
    include: Optional[list[str]],
    exclude: Optional[list[str]],
    include_all: bool,
) -> Scope:
    return resolve_scope(include=include, exclude=exclude, include_all=include_all, base=config.scope)


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return to_jsonable(asdict(value))
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


def emit_json(payload: Any) -> None:
    """Machine-readable output on stdout."""
    print(json.dumps(to_jsonable(payload), indent=2))


def short_hash(commit_hash: str) -> str:
    return commit_hash[:7]


def short_date(timestamp: Optional[str]) -> str:
    return timestamp[:10] if timestamp else "-"


def format_complexity(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}"
