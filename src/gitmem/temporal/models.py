"""Data models for commit history read from git."""

from dataclasses import dataclass, field
from typing import Optional

# Ordered as shown in prompts and tables
CLASSIFICATIONS = (
    "bug-fix",
    "feature",
    "refactor",
    "docs",
    "chore",
    "perf",
    "test",
    "style",
)


@dataclass
class CommitFile:
    path: str
    change_type: str  # A | C | D | M | R | T
    additions: int = 0
    deletions: int = 0

    # Filled in by the complexity measurer; None until measured
    lines_of_code: Optional[int] = None
    indent_complexity: Optional[int] = None
    max_indent: Optional[int] = None


@dataclass
class Commit:
    hash: str
    author_name: str
    author_email: str
    committed_at: str  # ISO-8601 with offset
    message: str
    files: list[CommitFile] = field(default_factory=list)

    # Enrichment fields, null until a batch result is imported
    classification: Optional[str] = None
    summary: Optional[str] = None
    complexity: Optional[float] = None
    enriched_at: Optional[str] = None
    model_used: Optional[str] = None
    enrichment_error: Optional[str] = None

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0]

    @property
    def is_enriched(self) -> bool:
        return self.enriched_at is not None

    @property
    def file_paths(self) -> list[str]:
        return [f.path for f in self.files]
