"""Progress display for `gitmem index`."""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from ..enrichment.models import CyclePhase, IndexProgress

PHASE_LABELS = {
    CyclePhase.DISCOVERING: "Discovering commits",
    CyclePhase.MEASURING: "Measuring complexity",
    CyclePhase.SUBMITTING: "Preparing batch",
    CyclePhase.POLLING: "Checking batch",
    CyclePhase.IMPORTING: "Importing results",
    CyclePhase.ENRICHING: "Enriching",
    CyclePhase.AGGREGATING: "Rebuilding aggregates",
    CyclePhase.INDEXING: "Rebuilding search index",
    CyclePhase.DONE: "Done",
}


class IndexProgressDisplay:
    """Renders IndexProgress events as a single rich progress line.

    Usage::

        with IndexProgressDisplay(console) as display:
            orchestrator.run_cycle(display.update)
    """

    def __init__(self, console: Console | None = None, enabled: bool = True):
        self.console = console or Console(stderr=True)
        self.enabled = enabled
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None

    def __enter__(self) -> IndexProgressDisplay:
        if self.enabled:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold]{task.description}"),
                BarColumn(bar_width=30, complete_style="cyan", finished_style="green"),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self.console,
                transient=True,
            )
            self._progress.start()
            self._task_id = self._progress.add_task("Starting...", total=None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def update(self, event: IndexProgress) -> None:
        if self._progress is None or self._task_id is None:
            return
        total = event.total if event.total else None
        self._progress.update(
            self._task_id,
            description=describe(event),
            completed=event.current or 0,
            total=total,
        )


def describe(event: IndexProgress) -> str:
    label = PHASE_LABELS.get(event.phase, event.phase.value)
    if event.phase == CyclePhase.ENRICHING and event.batch_status:
        return f"{label} (batch {event.batch_status})"
    return label
