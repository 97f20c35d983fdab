"""Grade existing classifications with a judge model.

A single commit is always graded synchronously. A sample can go either
way: with a direct judge service the whole sample is graded in one call,
with a batch service the first run submits a ``check`` job and later runs
poll it and import its verdicts. The classification and summary each
check job grades are snapshotted when it is submitted, so re-indexing in
between does not change what the verdicts refer to.
"""

import json
import random
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..exceptions import InvalidQueryError, NotFoundError, ServiceError
from ..logging_config import get_logger
from ..persistence.batch_jobs import BatchJobStore
from ..persistence.commits import CommitStore
from ..persistence.models import CHECK_JOB, COMPLETED, FAILED, IN_PROGRESS, SUBMITTED, BatchJob
from ..temporal.git_extractor import GitExtractor
from ..temporal.models import Commit
from .judge import build_judge_message, reconcile
from .models import (
    CheckOutcome,
    CheckResult,
    CheckSummary,
    CommitRequest,
    EvalVerdict,
    JudgeResultItem,
    JudgeVerdicts,
)
from .orchestrator import is_trivial_merge
from .service import ClassificationService

logger = get_logger(__name__)

MERGE_REASONING = "Merge commit with an empty diff, classified without a model call."


def default_output_path(index_dir: Path) -> Path:
    stamp = datetime.now().strftime("%Y%m%dT%H%M%S")
    return Path(index_dir) / f"check-{stamp}.json"


def write_results(path: Path, results: list[CheckResult]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
    return path


def _merge_pass(commit: Commit) -> CheckResult:
    verdict = EvalVerdict(passed=True, reasoning=MERGE_REASONING)
    return CheckResult(
        hash=commit.hash,
        classification=commit.classification,
        summary=commit.summary,
        verdicts=JudgeVerdicts(classification=verdict, accuracy=verdict, completeness=verdict),
    )


def _graded(commit_hash: str, classification: str, summary: str, verdicts: JudgeVerdicts) -> CheckResult:
    verdicts = verdicts.model_copy(
        update={"classification": reconcile(classification, verdicts.classification)}
    )
    return CheckResult(
        hash=commit_hash, classification=classification, summary=summary, verdicts=verdicts
    )


class CommitChecker:
    """Judge-model quality checks over enriched commits."""

    def __init__(
        self,
        git: GitExtractor,
        commits: CommitStore,
        jobs: BatchJobStore,
        service: ClassificationService,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.git = git
        self.commits = commits
        self.jobs = jobs
        self.service = service
        self.rng = rng or random.Random()

    @property
    def db(self):
        return self.commits.db

    # ── single commit ─────────────────────────────────────────────

    def resolve(self, hash_prefix: str) -> Commit:
        """The enriched commit a full or abbreviated hash names.

        Raises:
            NotFoundError: if no indexed commit matches or it is not classified yet.
            InvalidQueryError: if the prefix matches more than one commit.
        """
        prefix = hash_prefix.strip().lower()
        if not prefix:
            raise InvalidQueryError(hash_prefix, "empty commit hash")
        matches = self.commits.find_by_prefix(prefix, limit=2)
        if not matches:
            raise NotFoundError(f"commit {hash_prefix}", hint="Run `gitmem index` to pick up new commits")
        if len(matches) > 1:
            raise InvalidQueryError(hash_prefix, "ambiguous commit hash, use more characters")
        commit = matches[0]
        if not commit.is_enriched or not commit.classification or not commit.summary:
            raise NotFoundError(
                f"classification for commit {commit.hash[:7]}",
                hint="Run `gitmem index` until it reports done",
            )
        return self.commits.get_many([commit.hash])[0]

    def check_one(self, hash_prefix: str) -> CheckResult:
        commit = self.resolve(hash_prefix)
        diff = self.git.get_diff(commit.hash)
        if is_trivial_merge(commit, diff):
            return _merge_pass(commit)

        request = CommitRequest(
            hash=commit.hash,
            user_message=build_judge_message(commit, diff, commit.classification, commit.summary),
        )
        submission = self.service.submit([request])
        results = submission.results
        if results is None:
            results = self.service.fetch_results(submission.job_id)
        item = next((r for r in results if r.hash == commit.hash), None)
        if item is None or not item.ok:
            reason = item.error if item is not None else "no verdict returned"
            raise ServiceError("check", f"{commit.hash[:7]}: {reason}", job_id=submission.job_id)
        return _graded(commit.hash, commit.classification, commit.summary, item.verdicts)

    # ── samples ───────────────────────────────────────────────────

    def check_sample(self, sample_size: int, output_path: Path) -> CheckOutcome:
        """Grade a random sample, or advance the open check job if there is one."""
        open_job = self.jobs.get_open(CHECK_JOB)
        if open_job is not None:
            return self._advance(open_job, output_path)

        commits = self._sample(sample_size)
        if not commits:
            return CheckOutcome(kind="empty", summary=CheckSummary())

        requests = [
            CommitRequest(
                hash=c.hash,
                user_message=build_judge_message(c, diff, c.classification, c.summary),
            )
            for c, diff in commits
        ]
        submission = self.service.submit(requests)

        with self.db.transaction():
            self.jobs.create(
                submission.job_id,
                [c.hash for c, _ in commits],
                model_used=self.service.model,
                request_count=submission.request_count,
                kind=CHECK_JOB,
            )
            self.jobs.add_check_items(
                submission.job_id, [(c.hash, c.classification, c.summary) for c, _ in commits]
            )

        if submission.results is None:
            logger.info("Submitted check batch %s with %d commits", submission.job_id, len(commits))
            return CheckOutcome(kind="submitted", batch_id=submission.job_id, batch_status=SUBMITTED)
        return self._import(submission.job_id, submission.results, output_path)

    def _sample(self, sample_size: int) -> list[tuple[Commit, str]]:
        """Up to ``sample_size`` random enriched commits with their diffs, trivial merges skipped.

        Merges found in the first draw are replaced from the remaining
        population until the sample is full or the population runs out.
        """
        population = self.commits.enriched_hashes()
        self.rng.shuffle(population)

        picked: list[tuple[Commit, str]] = []
        offset = 0
        while len(picked) < sample_size and offset < len(population):
            draw = population[offset : offset + sample_size - len(picked)]
            offset += len(draw)
            diffs = self.git.get_diff_batch(draw)
            for commit in self.commits.get_many(draw):
                diff = diffs.get(commit.hash, "")
                if is_trivial_merge(commit, diff) or not commit.classification or not commit.summary:
                    continue
                picked.append((commit, diff))
        return picked

    def _advance(self, job: BatchJob, output_path: Path) -> CheckOutcome:
        status = self.service.poll_status(job.id)
        if status.is_processing:
            self.jobs.update_status(job.id, IN_PROGRESS, status.succeeded, status.errored)
            logger.info("Check batch %s still processing", job.id)
            return CheckOutcome(kind="in_progress", batch_id=job.id, batch_status=IN_PROGRESS)

        if status.is_failed:
            self.jobs.close(job.id, FAILED, imported=False, succeeded=0, failed=job.request_count)
            logger.warning("Check batch %s ended as %s", job.id, status.status.value)
            return CheckOutcome(
                kind="failed", batch_id=job.id, batch_status=FAILED, failed=job.request_count
            )

        # A ServiceError here leaves the job open for the next run
        results = self.service.fetch_results(job.id)
        return self._import(job.id, results, output_path)

    def _import(self, job_id: str, items: list[JudgeResultItem], output_path: Path) -> CheckOutcome:
        snapshot = self.jobs.check_items(job_id)
        results = []
        seen = set()
        for item in items:
            if item.hash not in snapshot or item.hash in seen or not item.ok:
                continue
            seen.add(item.hash)
            classification, summary = snapshot[item.hash]
            results.append(_graded(item.hash, classification, summary, item.verdicts))
        failed = len(snapshot) - len(results)

        self.jobs.close(job_id, COMPLETED, imported=True, succeeded=len(results), failed=failed)
        path = write_results(output_path, results)
        logger.info("Check job %s graded %d commits, %d failed", job_id, len(results), failed)
        return CheckOutcome(
            kind="complete",
            results=results,
            summary=CheckSummary.of(results),
            failed=failed,
            batch_id=job_id,
            batch_status=COMPLETED,
            output_path=str(path),
        )
