"""EnrichmentOrchestrator: advances the index by one phase per invocation.

Each :meth:`EnrichmentOrchestrator.run_cycle` call first syncs new commits
from git and measures their files, then does exactly one of:

1. poll the open batch job, importing its results once it has completed;
2. submit the next partition of unclassified commits as a new job;
3. with nothing left to classify, rebuild aggregates and the search index.

The caller re-invokes until the result reports ``done``. Every state
transition is committed in a single database transaction, so a cycle
interrupted at any point resumes from the last committed state.
"""

import uuid
from typing import Callable, Optional

from ..config import GitmemConfig
from ..logging_config import get_logger
from ..persistence.aggregates import AggregateEngine
from ..persistence.batch_jobs import BatchJobStore
from ..persistence.commits import CommitStore, utc_now
from ..persistence.models import COMPLETED, FAILED, IN_PROGRESS, SUBMITTED, BatchJob
from ..persistence.search import SearchIndex
from ..temporal.git_extractor import GitExtractor
from ..temporal.measurer import ComplexityMeasurer
from ..temporal.models import Commit
from .models import CommitRequest, CyclePhase, CycleResult, IndexProgress, ResultItem
from .prompt import build_user_message
from .service import ClassificationService

logger = get_logger(__name__)

ProgressCallback = Callable[[IndexProgress], None]

LOCAL_JOB_PREFIX = "local-"
LOCAL_MODEL = "local"
NO_RESULT_ERROR = "No result returned for commit"


def is_trivial_merge(commit: Commit, diff: str) -> bool:
    """Merge commits without a diff of their own need no model call."""
    return commit.message.startswith("Merge") and not diff.strip()


class EnrichmentOrchestrator:
    """Drives discovery, classification and aggregation for one repository.

    The classification service is created on first use through
    ``service_factory``, so cycles that never talk to the service need no
    credentials.
    """

    def __init__(
        self,
        config: GitmemConfig,
        git: GitExtractor,
        commits: CommitStore,
        jobs: BatchJobStore,
        aggregates: AggregateEngine,
        search: SearchIndex,
        service: Optional[ClassificationService] = None,
        service_factory: Optional[Callable[[], ClassificationService]] = None,
    ) -> None:
        self.config = config
        self.git = git
        self.commits = commits
        self.jobs = jobs
        self.aggregates = aggregates
        self.search = search
        self.measurer = ComplexityMeasurer(git, commits)
        self._service = service
        self._service_factory = service_factory
        self._progress: Optional[ProgressCallback] = None

    @property
    def db(self):
        return self.commits.db

    @property
    def service(self) -> ClassificationService:
        if self._service is None:
            if self._service_factory is None:
                raise RuntimeError("No classification service configured")
            self._service = self._service_factory()
        return self._service

    def _report(self, phase: CyclePhase, **kwargs) -> None:
        if self._progress:
            self._progress(IndexProgress(phase=phase, **kwargs))

    # ── cycle ─────────────────────────────────────────────────────

    def run_cycle(self, progress_callback: Optional[ProgressCallback] = None) -> CycleResult:
        """Advance one phase and report where the cycle stopped."""
        self._progress = progress_callback
        try:
            discovered = self._discover()

            if not self.config.ai_enabled:
                result = self._rebuild()
            else:
                open_job = self.jobs.get_open()
                if open_job is not None:
                    result = self._advance_job(open_job)
                else:
                    pending = self.commits.list_unenriched(
                        self.config.ai_start_date, limit=self.config.max_batch_size
                    )
                    result = self._submit(pending) if pending else self._rebuild()
        finally:
            self._progress = None

        result.discovered = discovered
        result.total_enriched = self.commits.enriched_count()
        result.total_commits = self.commits.total_count()
        result.pending = self.commits.count_unenriched(self.config.ai_start_date)
        return result

    # ── discovery ─────────────────────────────────────────────────

    def _discover(self) -> int:
        self._report(CyclePhase.DISCOVERING, current=0, total=0)
        known = self.commits.indexed_hashes()
        all_hashes = self.git.list_commit_hashes(since=self.config.index_start_date)
        new_hashes = [h for h in all_hashes if h not in known]

        inserted = 0
        if new_hashes:
            inserted = self.commits.insert_raw_commits(self.git.list_commits(hashes=new_hashes))
            logger.info("Discovered %d new commits", inserted)

        self.measurer.measure(self._progress)
        return inserted

    # ── submission ────────────────────────────────────────────────

    def _submit(self, pending: list[Commit]) -> CycleResult:
        self._report(CyclePhase.SUBMITTING, current=0, total=len(pending))
        diffs = self.git.get_diff_batch([c.hash for c in pending])

        merges = [c for c in pending if is_trivial_merge(c, diffs.get(c.hash, ""))]
        enriched_locally = self._enrich_merges(merges) if merges else 0

        merge_hashes = {c.hash for c in merges}
        to_submit = [c for c in pending if c.hash not in merge_hashes]
        if not to_submit:
            return CycleResult(
                phase=CyclePhase.IMPORTING,
                enriched_this_run=enriched_locally,
                needs_reinvoke=True,
            )

        items = [
            CommitRequest(hash=c.hash, user_message=build_user_message(c, diffs.get(c.hash, "")))
            for c in to_submit
        ]
        service = self.service
        # A ServiceError here propagates with no job recorded
        submission = service.submit(items)

        enriched = failed = 0
        with self.db.transaction():
            self.jobs.create(
                submission.job_id,
                [c.hash for c in to_submit],
                model_used=service.model,
                request_count=submission.request_count,
            )
            if submission.results is not None:
                enriched, failed = self._import(submission.job_id, submission.results, service.model)

        if submission.results is not None:
            batch_status = COMPLETED
            phase = CyclePhase.IMPORTING
        else:
            batch_status = SUBMITTED
            phase = CyclePhase.SUBMITTING
            logger.info("Submitted %d commits as batch %s", len(to_submit), submission.job_id)

        self._report(CyclePhase.ENRICHING, batch_id=submission.job_id, batch_status=batch_status)
        return CycleResult(
            phase=phase,
            enriched_this_run=enriched_locally + enriched,
            failed_this_run=failed,
            batch_id=submission.job_id,
            batch_status=batch_status,
            needs_reinvoke=True,
        )

    def _enrich_merges(self, merges: list[Commit]) -> int:
        """Classify trivial merges as ``chore`` and record them as a closed local job."""
        job_id = f"{LOCAL_JOB_PREFIX}{uuid.uuid4()}"
        results = [
            ResultItem.model_validate(
                {
                    "hash": c.hash,
                    "result": {"classification": "chore", "summary": f"Merge commit: {c.subject}"},
                }
            )
            for c in merges
        ]
        with self.db.transaction():
            self.jobs.create(job_id, [c.hash for c in merges], model_used=LOCAL_MODEL)
            enriched, _ = self._import(job_id, results, LOCAL_MODEL)
        logger.info("Classified %d merge commits locally", enriched)
        return enriched

    # ── polling / import ──────────────────────────────────────────

    def _advance_job(self, job: BatchJob) -> CycleResult:
        self._report(CyclePhase.POLLING, batch_id=job.id)
        status = self.service.poll_status(job.id)

        if status.is_processing:
            self.jobs.update_status(job.id, IN_PROGRESS, status.succeeded, status.errored)
            self._report(CyclePhase.ENRICHING, batch_id=job.id, batch_status=IN_PROGRESS)
            logger.info(
                "Batch %s still processing (%d done, %d remaining)",
                job.id,
                status.succeeded + status.errored,
                status.processing,
            )
            return CycleResult(
                phase=CyclePhase.POLLING,
                batch_id=job.id,
                batch_status=IN_PROGRESS,
                needs_reinvoke=True,
            )

        if status.is_failed:
            error = f"Batch job {status.status.value}"
            members = sorted(job.member_hashes)
            with self.db.transaction():
                failed = self.commits.record_failures((h, error) for h in members)
                self.jobs.close(job.id, FAILED, imported=False, succeeded=0, failed=len(members))
            logger.warning(
                "Batch %s ended as %s; %d commits marked failed", job.id, status.status.value, failed
            )
            return CycleResult(
                phase=CyclePhase.POLLING,
                failed_this_run=failed,
                batch_id=job.id,
                batch_status=FAILED,
                needs_reinvoke=True,
            )

        self._report(CyclePhase.ENRICHING, batch_id=job.id, batch_status="importing")
        # A ServiceError here leaves the job open for the next cycle
        results = self.service.fetch_results(job.id)
        with self.db.transaction():
            enriched, failed = self._import(job.id, results, job.model_used or self.service.model)
        logger.info("Imported batch %s: %d enriched, %d failed", job.id, enriched, failed)
        return CycleResult(
            phase=CyclePhase.IMPORTING,
            enriched_this_run=enriched,
            failed_this_run=failed,
            batch_id=job.id,
            batch_status=COMPLETED,
            needs_reinvoke=True,
        )

    def _import(self, job_id: str, results: list[ResultItem], model_used: str) -> tuple[int, int]:
        """Write verdicts and errors and close the job. Must run inside a transaction.

        Results for commits outside the job are ignored; members without a
        result are recorded as failed.
        """
        members = self.jobs.members(job_id)
        seen = set()
        verdicts = []
        errors = []
        for item in results:
            if item.hash not in members or item.hash in seen:
                continue
            seen.add(item.hash)
            if item.ok:
                verdicts.append((item.hash, item.result.classification, item.result.summary))
            else:
                errors.append((item.hash, item.error or NO_RESULT_ERROR))
        errors.extend((h, NO_RESULT_ERROR) for h in sorted(members - seen))

        enriched = self.commits.apply_results(verdicts, model_used)
        failed = self.commits.record_failures(errors)
        self.jobs.close(job_id, COMPLETED, imported=True, succeeded=len(verdicts), failed=len(errors))
        return enriched, failed

    # ── rebuild ───────────────────────────────────────────────────

    def _rebuild(self) -> CycleResult:
        self._report(CyclePhase.AGGREGATING, current=0, total=0)
        counts = self.aggregates.rebuild_all()

        self._report(CyclePhase.INDEXING, current=0, total=0)
        indexed = self.search.rebuild()

        self.db.set_meta("last_run", utc_now())
        self._report(
            CyclePhase.DONE,
            current=self.commits.enriched_count(),
            total=self.commits.total_count(),
        )
        return CycleResult(phase=CyclePhase.DONE, aggregates=counts, indexed=indexed)
