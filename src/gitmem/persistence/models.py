"""Records read from and written to the index database."""

from dataclasses import dataclass, field
from typing import Optional

# BatchJob.status values
SUBMITTED = "submitted"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"

OPEN_STATUSES = (SUBMITTED, IN_PROGRESS)
TERMINAL_STATUSES = (COMPLETED, FAILED)

# BatchJob.kind values
INDEX_JOB = "index"
CHECK_JOB = "check"


@dataclass
class BatchJob:
    """One submission to the classification or judge service, tracked until closed."""

    id: str
    status: str
    kind: str = INDEX_JOB
    member_hashes: set[str] = field(default_factory=set)
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    request_count: int = 0
    succeeded_count: int = 0
    failed_count: int = 0
    model_used: Optional[str] = None
    imported: bool = False

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass
class FileStats:
    file_path: str
    total_changes: int = 0
    bug_fix_count: int = 0
    feature_count: int = 0
    refactor_count: int = 0
    docs_count: int = 0
    chore_count: int = 0
    perf_count: int = 0
    test_count: int = 0
    style_count: int = 0
    first_seen: Optional[str] = None
    last_changed: Optional[str] = None
    total_additions: int = 0
    total_deletions: int = 0
    current_loc: Optional[int] = None
    current_complexity: Optional[float] = None
    avg_complexity: Optional[float] = None
    max_complexity: Optional[float] = None
    combined_score: Optional[float] = None  # only set by combined hotspot ranking

    def count_for(self, classification: str) -> int:
        return getattr(self, classification.replace("-", "_") + "_count")


@dataclass
class CouplingPair:
    """Unordered pair, stored with ``file_a < file_b``."""

    file_a: str
    file_b: str
    co_change_count: int


@dataclass
class CoupledFile:
    """A file coupled to an anchor file or directory."""

    file: str
    co_change_count: int
    coupling_ratio: float


@dataclass
class FileContributor:
    file_path: str
    author_name: str
    author_email: str
    commit_count: int


@dataclass
class TrendPeriod:
    period: str  # e.g. 2024-W07, 2024-02, 2024-Q1
    total_changes: int = 0
    bug_fix_count: int = 0
    feature_count: int = 0
    refactor_count: int = 0
    docs_count: int = 0
    chore_count: int = 0
    perf_count: int = 0
    test_count: int = 0
    style_count: int = 0
    additions: int = 0
    deletions: int = 0
    avg_complexity: Optional[float] = None
    max_complexity: Optional[float] = None
    avg_loc: Optional[float] = None


@dataclass
class TrendSummary:
    direction: str  # increasing | decreasing | stable
    recent_avg: float
    historical_avg: float
    bug_fix_trend: str
    complexity_trend: str


@dataclass
class SearchHit:
    hash: str
    message: str
    classification: Optional[str]
    summary: Optional[str]
    committed_at: str
    author_name: str
    rank: float
