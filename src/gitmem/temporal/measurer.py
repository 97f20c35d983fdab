"""Measure indentation complexity of every file version recorded in the index."""

from typing import TYPE_CHECKING, Callable, Optional

from ..file_filter import is_generated
from ..logging_config import get_logger
from .complexity import EMPTY, compute_complexity, is_binary
from .git_extractor import GitExtractor

if TYPE_CHECKING:
    from ..enrichment.models import IndexProgress
    from ..persistence.commits import CommitStore

logger = get_logger(__name__)

FETCH_BATCH_SIZE = 500


class ComplexityMeasurer:
    """Fills ``lines_of_code`` / ``indent_complexity`` / ``max_indent`` on ``commit_files``.

    Deleted and generated files, binaries and blobs git cannot produce are
    stored as zeros so they are never fetched again.
    """

    def __init__(self, git: GitExtractor, commits: "CommitStore") -> None:
        self.git = git
        self.commits = commits

    def measure(
        self, progress_callback: Optional[Callable[["IndexProgress"], None]] = None
    ) -> int:
        """Measure all unmeasured files. Returns the number of rows written."""
        from ..enrichment.models import IndexProgress

        unmeasured = self.commits.get_unmeasured_files()
        if not unmeasured:
            return 0

        total = len(unmeasured)
        processed = 0

        def report() -> None:
            if progress_callback:
                progress_callback(IndexProgress(phase="measuring", current=processed, total=total))

        for i in range(0, total, FETCH_BATCH_SIZE):
            batch = unmeasured[i : i + FETCH_BATCH_SIZE]
            rows = []
            to_fetch = []
            for commit_hash, path, change_type in batch:
                if change_type == "D" or is_generated(path):
                    rows.append((commit_hash, path, 0, 0, 0))
                else:
                    to_fetch.append((commit_hash, path))

            contents = self.git.get_file_contents_batch(to_fetch) if to_fetch else {}
            for key in to_fetch:
                content = contents.get(key)
                if not content or is_binary(content):
                    result = EMPTY
                else:
                    result = compute_complexity(content.decode("utf-8", errors="replace"))
                rows.append(
                    (key[0], key[1], result.lines_of_code, result.indent_complexity, result.max_indent)
                )

            self.commits.update_complexity(rows)
            processed += len(rows)
            report()

        logger.info("Measured complexity of %d file versions", processed)
        return processed
