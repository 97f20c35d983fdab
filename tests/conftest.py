"""Shared fixtures: a temporary index database and fakes for git and the classification service."""

from pathlib import Path
from typing import Optional

import pytest

from gitmem.enrichment.models import (
    CommitRequest,
    EnrichmentResult,
    JobStatus,
    ResultItem,
    ServiceJobStatus,
    Submission,
)
from gitmem.exceptions import ServiceError
from gitmem.persistence.aggregates import AggregateEngine
from gitmem.persistence.batch_jobs import BatchJobStore
from gitmem.persistence.commits import CommitStore
from gitmem.persistence.database import IndexDB
from gitmem.persistence.search import SearchIndex
from gitmem.temporal.models import Commit, CommitFile


def make_hash(n: int) -> str:
    """Deterministic 40-char hex hash for commit ``n``."""
    return f"{n:040x}"


def make_commit(
    n: int,
    files: list,
    committed_at: Optional[str] = None,
    message: Optional[str] = None,
    author: str = "Ada",
) -> Commit:
    """Build a commit touching ``files`` (paths or CommitFile objects)."""
    return Commit(
        hash=make_hash(n),
        author_name=author,
        author_email=f"{author.lower()}@example.com",
        committed_at=committed_at or f"2024-01-{(n % 28) + 1:02d}T12:00:00+00:00",
        message=message or f"Change number {n}",
        files=[
            f if isinstance(f, CommitFile) else CommitFile(path=f, change_type="M", additions=1)
            for f in files
        ],
    )


class FakeGit:
    """In-memory stand-in for GitExtractor."""

    def __init__(self, commits: Optional[list[Commit]] = None, diffs: Optional[dict] = None):
        self.commits: list[Commit] = list(commits or [])
        self.diffs: dict[str, str] = dict(diffs or {})
        self.contents: dict[tuple[str, str], bytes] = {}

    def add(self, *commits: Commit) -> None:
        self.commits.extend(commits)

    def is_git_repo(self) -> bool:
        return True

    def list_commit_hashes(self, branch=None, since=None) -> list[str]:
        ordered = sorted(self.commits, key=lambda c: c.committed_at, reverse=True)
        return [c.hash for c in ordered if since is None or c.committed_at[:10] >= since]

    def list_commits(self, since=None, hashes=None) -> list[Commit]:
        by_hash = {c.hash: c for c in self.commits}
        wanted = hashes if hashes is not None else self.list_commit_hashes(since=since)
        return [by_hash[h] for h in wanted if h in by_hash]

    def get_diff(self, commit_hash: str) -> str:
        return self.get_diff_batch([commit_hash])[commit_hash]

    def get_diff_batch(self, hashes) -> dict[str, str]:
        return {h: self.diffs.get(h, f"diff --git a/x b/x\n+change {h[:7]}\n") for h in hashes}

    def get_file_contents_batch(self, entries) -> dict[tuple[str, str], bytes]:
        return {key: self.contents[key] for key in entries if key in self.contents}


class FakeClassificationService:
    """Batch-style service whose jobs complete when the test says so.

    ``verdicts`` maps hash -> classification; unknown hashes get ``feature``.
    ``errors`` maps hash -> error text returned instead of a verdict.
    """

    def __init__(self, model: str = "fake-model", direct: bool = False):
        self.model = model
        self.direct = direct
        self.verdicts: dict[str, str] = {}
        self.errors: dict[str, str] = {}
        self.jobs: dict[str, list[str]] = {}
        self.status: dict[str, ServiceJobStatus] = {}
        self.calls: list[str] = []
        self.fail_submit = False
        self.fail_fetch = False
        self._next = 0

    def complete(self, job_id: str, status: ServiceJobStatus = ServiceJobStatus.COMPLETED) -> None:
        self.status[job_id] = status

    def _results(self, hashes: list[str]) -> list[ResultItem]:
        results = []
        for h in hashes:
            if h in self.errors:
                results.append(ResultItem(hash=h, error=self.errors[h]))
            else:
                verdict = EnrichmentResult(
                    classification=self.verdicts.get(h, "feature"), summary=f"Summary of {h[:7]}"
                )
                results.append(ResultItem(hash=h, result=verdict))
        return results

    def submit(self, items: list[CommitRequest]) -> Submission:
        self.calls.append("submit")
        if self.fail_submit:
            raise ServiceError("submit", "service unavailable")
        self._next += 1
        job_id = f"msgbatch_{self._next:03d}"
        hashes = [i.hash for i in items]
        self.jobs[job_id] = hashes
        if self.direct:
            self.status[job_id] = ServiceJobStatus.COMPLETED
            return Submission(job_id=job_id, request_count=len(items), results=self._results(hashes))
        self.status[job_id] = ServiceJobStatus.IN_PROGRESS
        return Submission(job_id=job_id, request_count=len(items))

    def poll_status(self, job_id: str) -> JobStatus:
        self.calls.append("poll")
        status = self.status[job_id]
        done = len(self.jobs[job_id]) if status == ServiceJobStatus.COMPLETED else 0
        return JobStatus(status=status, succeeded=done, processing=len(self.jobs[job_id]) - done)

    def fetch_results(self, job_id: str) -> list[ResultItem]:
        self.calls.append("fetch")
        if self.fail_fetch:
            raise ServiceError("fetch", "connection reset", job_id=job_id)
        return self._results(self.jobs[job_id])


@pytest.fixture
def db(tmp_path: Path):
    """A connected, migrated IndexDB in a temporary repository root."""
    with IndexDB(str(tmp_path)) as database:
        yield database


@pytest.fixture
def commits(db) -> CommitStore:
    return CommitStore(db)


@pytest.fixture
def jobs(db) -> BatchJobStore:
    return BatchJobStore(db)


@pytest.fixture
def aggregates(db) -> AggregateEngine:
    return AggregateEngine(db)


@pytest.fixture
def search(db) -> SearchIndex:
    return SearchIndex(db)
