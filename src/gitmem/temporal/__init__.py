"""Temporal data: commits and file snapshots read from git."""

from .complexity import ComplexityResult, compute_complexity, is_binary
from .git_extractor import GitExtractor, truncate_diff
from .measurer import ComplexityMeasurer
from .models import CLASSIFICATIONS, Commit, CommitFile

__all__ = [
    "CLASSIFICATIONS",
    "Commit",
    "CommitFile",
    "ComplexityMeasurer",
    "ComplexityResult",
    "GitExtractor",
    "compute_complexity",
    "is_binary",
    "truncate_diff",
]
