"""Tests for enrichment/orchestrator.py - the index state machine."""

import pytest
from conftest import FakeClassificationService, FakeGit, make_commit, make_hash

from gitmem.config import GitmemConfig
from gitmem.enrichment.models import CyclePhase, ServiceJobStatus
from gitmem.enrichment.orchestrator import NO_RESULT_ERROR, EnrichmentOrchestrator
from gitmem.exceptions import ServiceError
from gitmem.persistence.aggregates import AggregateEngine
from gitmem.persistence.batch_jobs import BatchJobStore
from gitmem.persistence.commits import CommitStore
from gitmem.persistence.database import IndexDB
from gitmem.persistence.models import COMPLETED, FAILED
from gitmem.persistence.search import SearchIndex


def build(db, git, service=None, config=None, service_factory=None):
    return EnrichmentOrchestrator(
        config or GitmemConfig(),
        git,
        CommitStore(db),
        BatchJobStore(db),
        AggregateEngine(db),
        SearchIndex(db),
        service=service,
        service_factory=service_factory,
    )


def no_service():
    raise AssertionError("classification service must not be used")


def run_until_done(orchestrator, service=None, max_cycles=10):
    for _ in range(max_cycles):
        result = orchestrator.run_cycle()
        if result.is_done:
            return result
        if service is not None:
            for job_id, status in service.status.items():
                if status == ServiceJobStatus.IN_PROGRESS:
                    service.complete(job_id)
    raise AssertionError("index did not reach done")


@pytest.fixture
def git():
    return FakeGit(
        [
            make_commit(i, ["src/a.py", f"src/f{i}.py"], committed_at=f"2024-01-{i:02d}T12:00:00+00:00")
            for i in range(1, 6)
        ]
    )


class TestBatchLifecycle:
    def test_submit_then_poll_then_import(self, db, git):
        service = FakeClassificationService()
        orch = build(db, git, service)

        first = orch.run_cycle()
        assert first.phase == CyclePhase.SUBMITTING
        assert first.discovered == 5
        assert first.batch_id == "msgbatch_001"
        assert first.needs_reinvoke

        second = orch.run_cycle()
        assert second.phase == CyclePhase.POLLING
        assert second.batch_status == "in_progress"

        service.complete("msgbatch_001")
        third = orch.run_cycle()
        assert third.phase == CyclePhase.IMPORTING
        assert third.enriched_this_run == 5
        assert third.total_enriched == 5
        assert third.pending == 0

        last = orch.run_cycle()
        assert last.is_done
        assert last.aggregates["file_stats"] == 6
        assert last.indexed == 5
        assert service.calls == ["submit", "poll", "poll", "fetch"]

    def test_restart_polls_existing_job(self, tmp_path, git):
        """A fresh process resumes the open job instead of submitting again."""
        service = FakeClassificationService()
        with IndexDB(str(tmp_path)) as db:
            result = build(db, git, service).run_cycle()
            assert result.batch_id == "msgbatch_001"

        with IndexDB(str(tmp_path)) as db:
            result = build(db, git, service).run_cycle()
            assert result.phase == CyclePhase.POLLING
            assert result.batch_id == "msgbatch_001"

        assert service.calls == ["submit", "poll"]

    def test_partial_results(self, db, git):
        """Errored items stay unclassified and the job is still closed."""
        service = FakeClassificationService()
        orch = build(db, FakeGit(git.commits[:3]), service)
        orch.run_cycle()
        service.errors[make_hash(3)] = "Batch item errored"
        service.complete("msgbatch_001")

        result = orch.run_cycle()
        assert result.enriched_this_run == 2
        assert result.failed_this_run == 1

        store = CommitStore(db)
        assert store.get(make_hash(1)).classification == "feature"
        assert store.get(make_hash(2)).classification == "feature"
        failed = store.get(make_hash(3))
        assert failed.classification is None
        assert failed.enrichment_error == "Batch item errored"

        job = BatchJobStore(db).get("msgbatch_001")
        assert job.status == COMPLETED
        assert job.imported
        assert job.succeeded_count == 2
        assert job.failed_count == 1
        assert BatchJobStore(db).get_open() is None

    def test_missing_and_foreign_results(self, db, git):
        service = FakeClassificationService()
        orch = build(db, FakeGit(git.commits[:2]), service)
        orch.run_cycle()
        # the service drops one member and answers for a commit it was never sent
        service.jobs["msgbatch_001"] = [make_hash(1), make_hash(99)]
        service.complete("msgbatch_001")

        orch.run_cycle()
        store = CommitStore(db)
        assert store.get(make_hash(1)).classification == "feature"
        assert store.get(make_hash(2)).enrichment_error == NO_RESULT_ERROR
        assert store.get(make_hash(99)) is None

    def test_failed_job_marks_members(self, db, git):
        service = FakeClassificationService()
        orch = build(db, git, service)
        orch.run_cycle()
        service.complete("msgbatch_001", ServiceJobStatus.EXPIRED)

        result = orch.run_cycle()
        assert result.batch_status == FAILED
        assert result.failed_this_run == 5
        assert BatchJobStore(db).get("msgbatch_001").status == FAILED
        assert CommitStore(db).get(make_hash(1)).enrichment_error == "Batch job expired"

        # failed commits are not resubmitted
        assert orch.run_cycle().is_done
        assert service.calls.count("submit") == 1

    def test_partitions_by_max_batch_size(self, db, git):
        service = FakeClassificationService()
        orch = build(db, git, service, config=GitmemConfig(max_batch_size=2))
        orch.run_cycle()
        members = BatchJobStore(db).members("msgbatch_001")
        # newest first
        assert members == {make_hash(5), make_hash(4)}

        final = run_until_done(orch, service)
        assert final.total_enriched == 5
        assert len(service.jobs) == 3


class TestServiceFailures:
    def test_submit_failure_records_no_job(self, db, git):
        service = FakeClassificationService()
        service.fail_submit = True
        orch = build(db, git, service)

        with pytest.raises(ServiceError):
            orch.run_cycle()
        assert BatchJobStore(db).list_all() == []
        assert CommitStore(db).total_count() == 5
        assert CommitStore(db).enriched_count() == 0

        service.fail_submit = False
        assert orch.run_cycle().batch_id == "msgbatch_001"

    def test_fetch_failure_leaves_job_open(self, db, git):
        service = FakeClassificationService()
        orch = build(db, git, service)
        orch.run_cycle()
        service.complete("msgbatch_001")
        service.fail_fetch = True

        with pytest.raises(ServiceError):
            orch.run_cycle()
        assert BatchJobStore(db).get_open().id == "msgbatch_001"
        assert CommitStore(db).enriched_count() == 0

        service.fail_fetch = False
        assert orch.run_cycle().enriched_this_run == 5

    def test_crash_during_import_rolls_back(self, db, git, monkeypatch):
        """A failure after verdicts are written leaves no commit enriched and the job open."""
        service = FakeClassificationService()
        orch = build(db, git, service)
        orch.run_cycle()
        service.complete("msgbatch_001")

        def crash(failures):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(orch.commits, "record_failures", crash)
        with pytest.raises(RuntimeError):
            orch.run_cycle()
        monkeypatch.undo()

        assert CommitStore(db).enriched_count() == 0
        open_job = BatchJobStore(db).get_open()
        assert open_job.id == "msgbatch_001"
        assert not open_job.imported

        retry = orch.run_cycle()
        assert retry.phase == CyclePhase.IMPORTING
        assert retry.enriched_this_run == 5
        assert BatchJobStore(db).get("msgbatch_001").status == COMPLETED
        assert service.calls.count("submit") == 1



class TestShortcuts:
    def test_nothing_to_do_skips_service(self, db):
        """No commits and no open jobs goes straight to done without a service."""
        orch = build(db, FakeGit(), service_factory=no_service)
        result = orch.run_cycle()
        assert result.is_done
        assert result.total_commits == 0

    def test_all_enriched_skips_service(self, db, git):
        service = FakeClassificationService()
        run_until_done(build(db, git, service), service)
        calls = list(service.calls)

        result = build(db, git, service_factory=no_service).run_cycle()
        assert result.is_done
        assert service.calls == calls

    def test_done_is_idempotent(self, db, git):
        service = FakeClassificationService()
        orch = build(db, git, service)
        run_until_done(orch, service)

        def snapshot():
            return {
                table: [tuple(r) for r in db.conn.execute(f"SELECT * FROM {table} ORDER BY 1, 2")]
                for table in ("file_stats", "file_contributors", "file_coupling")
            }

        before = snapshot()
        again = orch.run_cycle()
        assert again.is_done
        assert again.discovered == 0
        assert snapshot() == before

    def test_ai_disabled(self, db, git):
        orch = build(db, git, config=GitmemConfig(ai=False), service_factory=no_service)
        result = orch.run_cycle()
        assert result.is_done
        assert result.total_commits == 5
        assert result.total_enriched == 0
        assert AggregateEngine(db).get_file_stats("src/a.py").total_changes == 5

    def test_ai_start_date(self, db, git):
        service = FakeClassificationService()
        orch = build(db, git, service, config=GitmemConfig(ai="2024-01-04"))
        orch.run_cycle()
        assert BatchJobStore(db).members("msgbatch_001") == {make_hash(4), make_hash(5)}

    def test_index_start_date_limits_discovery(self, db, git):
        orch = build(db, git, config=GitmemConfig(ai=False, index_start_date="2024-01-03"))
        assert orch.run_cycle().total_commits == 3

    def test_trivial_merges_classified_locally(self, db):
        merge = make_commit(1, ["src/a.py"], message="Merge branch 'feature/x'")
        git = FakeGit([merge], diffs={merge.hash: ""})
        orch = build(db, git, service_factory=no_service)

        result = orch.run_cycle()
        assert result.phase == CyclePhase.IMPORTING
        assert result.enriched_this_run == 1

        stored = CommitStore(db).get(merge.hash)
        assert stored.classification == "chore"
        assert stored.model_used == "local"
        assert BatchJobStore(db).get_open() is None
        assert orch.run_cycle().is_done

    def test_direct_service_imports_on_submit(self, db, git):
        service = FakeClassificationService(direct=True)
        orch = build(db, git, service)

        result = orch.run_cycle()
        assert result.phase == CyclePhase.IMPORTING
        assert result.batch_status == COMPLETED
        assert result.enriched_this_run == 5
        assert BatchJobStore(db).get_open() is None
        assert orch.run_cycle().is_done
        assert service.calls == ["submit"]

    def test_progress_events(self, db, git):
        events = []
        orch = build(db, git, config=GitmemConfig(ai=False))
        orch.run_cycle(progress_callback=events.append)
        phases = [e.phase for e in events]
        assert phases[0] == CyclePhase.DISCOVERING
        assert CyclePhase.MEASURING in phases
        assert phases[-1] == CyclePhase.DONE
