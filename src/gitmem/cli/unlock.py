"""Unlock command: remove a write lock left behind by a crashed run."""

import typer

from ..exceptions import LockHeldError
from ..lock import WriteLock, format_lock_age
from ..persistence.database import index_dir_for
from . import app
from ._common import console, emit_json, error_boundary, is_json, repo_root


@app.command()
def unlock(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", help="Remove the lock even if its holder looks alive"
    ),
):
    """
    Remove .gitmem/index.lock.

    Without --force only a stale lock (its process is gone) is removed.
    """
    lock = WriteLock(index_dir_for(str(repo_root(ctx))))
    with error_boundary(ctx):
        holder = lock.read()
        if lock.is_locked() and not force and not lock.is_stale():
            raise LockHeldError(
                str(lock.path),
                pid=holder.pid if holder else None,
                age_seconds=holder.age_seconds if holder else None,
            )
        removed = lock.force_release()

    if is_json(ctx):
        emit_json({"success": True, "removed": removed})
        return
    if not removed:
        console.print("No write lock present.")
    elif holder:
        console.print(
            f"Removed write lock held by pid {holder.pid} ({format_lock_age(holder)} old)"
        )
    else:
        console.print("Removed write lock.")
