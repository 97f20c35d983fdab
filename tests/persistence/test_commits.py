"""Tests for persistence/commits.py - CommitStore."""

import sqlite3

from conftest import make_commit, make_hash

from gitmem.persistence.batch_jobs import BatchJobStore
from gitmem.persistence.database import IndexDB
from gitmem.persistence.models import INDEX_JOB
from gitmem.temporal.models import CommitFile


class TestDatabaseSchema:
    def test_creates_tables(self, db):
        """Every table the index needs exists after connect."""
        tables = db.conn.execute(
            "SELECT name FROM sqlite_master WHERE type IN ('table') ORDER BY name"
        ).fetchall()
        names = {r["name"] for r in tables}
        for expected in (
            "commits",
            "commit_files",
            "batch_jobs",
            "batch_job_members",
            "file_stats",
            "file_contributors",
            "file_coupling",
            "commits_fts",
            "metadata",
            "check_items",
        ):
            assert expected in names

    def test_reopen_is_idempotent(self, tmp_path):
        """Migrations can run repeatedly against the same file."""
        with IndexDB(str(tmp_path)):
            pass
        with IndexDB(str(tmp_path)) as db:
            row = db.conn.execute("SELECT COUNT(*) AS n FROM schema_version").fetchone()
            assert row["n"] == 1

    def test_upgrades_v1_batch_jobs(self, tmp_path):
        """Jobs recorded before job kinds existed read back as index jobs."""
        index_dir = tmp_path / ".gitmem"
        index_dir.mkdir()
        old = sqlite3.connect(str(index_dir / "index.db"))
        old.executescript(
            """
            CREATE TABLE schema_version (version INTEGER NOT NULL);
            INSERT INTO schema_version VALUES (1);
            CREATE TABLE batch_jobs (
                id TEXT PRIMARY KEY, status TEXT NOT NULL,
                created_at TEXT NOT NULL, updated_at TEXT NOT NULL, completed_at TEXT,
                request_count INTEGER NOT NULL DEFAULT 0, succeeded_count INTEGER NOT NULL DEFAULT 0,
                failed_count INTEGER NOT NULL DEFAULT 0, model_used TEXT,
                imported INTEGER NOT NULL DEFAULT 0
            );
            INSERT INTO batch_jobs (id, status, created_at, updated_at)
                VALUES ('msgbatch_old', 'submitted', '2024-01-01', '2024-01-01');
            """
        )
        old.commit()
        old.close()

        with IndexDB(str(tmp_path)) as db:
            assert db.conn.execute("SELECT version FROM schema_version").fetchone()[0] == 2
            job = BatchJobStore(db).get("msgbatch_old")
            assert job.kind == INDEX_JOB
            assert BatchJobStore(db).get_open().id == "msgbatch_old"

    def test_writes_gitignore(self, db):
        assert (db.index_dir / ".gitignore").read_text() == "*\n"

    def test_transaction_rolls_back_on_error(self, db, commits):
        """Nothing from a failed transaction is visible afterwards."""
        try:
            with db.transaction():
                commits.insert_raw_commits([make_commit(1, ["a.py"])])
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert commits.total_count() == 0


class TestInsertRawCommits:
    def test_inserts_commits_and_files(self, commits):
        inserted = commits.insert_raw_commits([make_commit(1, ["a.py", "b.py"]), make_commit(2, ["a.py"])])
        assert inserted == 2
        assert commits.total_count() == 2
        assert [f.path for f in commits.get_files(make_hash(1))] == ["a.py", "b.py"]

    def test_known_hashes_are_skipped(self, commits):
        commits.insert_raw_commits([make_commit(1, ["a.py"])])
        inserted = commits.insert_raw_commits([make_commit(1, ["a.py"]), make_commit(2, ["b.py"])])
        assert inserted == 1
        assert commits.indexed_hashes() == {make_hash(1), make_hash(2)}

    def test_empty_input(self, commits):
        assert commits.insert_raw_commits([]) == 0


class TestListUnenriched:
    def test_newest_first(self, commits):
        commits.insert_raw_commits(
            [
                make_commit(1, ["a.py"], committed_at="2024-01-01T00:00:00+00:00"),
                make_commit(2, ["a.py"], committed_at="2024-03-01T00:00:00+00:00"),
                make_commit(3, ["a.py"], committed_at="2024-02-01T00:00:00+00:00"),
            ]
        )
        pending = commits.list_unenriched()
        assert [c.hash for c in pending] == [make_hash(2), make_hash(3), make_hash(1)]
        assert pending[0].files[0].path == "a.py"

    def test_respects_start_date_and_limit(self, commits):
        commits.insert_raw_commits(
            [
                make_commit(1, ["a.py"], committed_at="2023-12-31T23:00:00+00:00"),
                make_commit(2, ["a.py"], committed_at="2024-01-01T08:00:00+00:00"),
                make_commit(3, ["a.py"], committed_at="2024-01-02T08:00:00+00:00"),
            ]
        )
        assert {c.hash for c in commits.list_unenriched("2024-01-01")} == {make_hash(2), make_hash(3)}
        assert len(commits.list_unenriched(limit=1)) == 1
        assert commits.count_unenriched("2024-01-01") == 2

    def test_excludes_enriched_failed_and_open_job_members(self, commits, jobs):
        commits.insert_raw_commits([make_commit(n, ["a.py"]) for n in range(1, 5)])
        commits.apply_results([(make_hash(1), "feature", "adds a")], "m")
        commits.record_failures([(make_hash(2), "Batch item errored")])
        jobs.create("job-1", [make_hash(3)])

        assert [c.hash for c in commits.list_unenriched()] == [make_hash(4)]


class TestEnrichmentWrites:
    def test_apply_results_sets_fields(self, commits):
        commits.insert_raw_commits([make_commit(1, ["a.py"])])
        assert commits.apply_results([(make_hash(1), "bug-fix", "fixes a")], "model-x") == 1

        c = commits.get(make_hash(1))
        assert c.classification == "bug-fix"
        assert c.summary == "fixes a"
        assert c.model_used == "model-x"
        assert c.is_enriched

    def test_apply_results_never_overwrites(self, commits):
        """A commit is enriched at most once."""
        commits.insert_raw_commits([make_commit(1, ["a.py"])])
        commits.apply_results([(make_hash(1), "bug-fix", "first")], "m")
        assert commits.apply_results([(make_hash(1), "feature", "second")], "m") == 0
        assert commits.get(make_hash(1)).classification == "bug-fix"

    def test_failures_keep_classification_null(self, commits):
        commits.insert_raw_commits([make_commit(1, ["a.py"])])
        commits.record_failures([(make_hash(1), "Failed to parse response: nope")])

        c = commits.get(make_hash(1))
        assert c.classification is None
        assert c.enrichment_error == "Failed to parse response: nope"
        assert commits.failed_count() == 1

    def test_clear_failures_makes_commits_eligible(self, commits):
        commits.insert_raw_commits([make_commit(1, ["a.py"])])
        commits.record_failures([(make_hash(1), "Batch item expired")])
        assert commits.list_unenriched() == []

        assert commits.clear_failures() == 1
        assert [c.hash for c in commits.list_unenriched()] == [make_hash(1)]

    def test_classification_counts(self, commits):
        commits.insert_raw_commits([make_commit(n, ["a.py"]) for n in range(1, 4)])
        commits.apply_results(
            [(make_hash(1), "feature", "s"), (make_hash(2), "feature", "s"), (make_hash(3), "docs", "s")],
            "m",
        )
        assert commits.classification_counts() == {"feature": 2, "docs": 1}


class TestComplexity:
    def test_unmeasured_files_listed_until_measured(self, commits):
        commits.insert_raw_commits(
            [make_commit(1, [CommitFile("a.py", "M"), CommitFile("gone.py", "D")])]
        )
        rows = commits.get_unmeasured_files()
        assert rows == [(make_hash(1), "a.py", "M"), (make_hash(1), "gone.py", "D")]

        commits.update_complexity([(make_hash(1), "a.py", 10, 6, 2), (make_hash(1), "gone.py", 0, 0, 0)])
        assert commits.get_unmeasured_files() == []

    def test_commit_complexity_is_mean_of_measured_files(self, commits):
        commits.insert_raw_commits([make_commit(1, ["a.py", "b.py", "c.png"])])
        commits.update_complexity(
            [
                (make_hash(1), "a.py", 10, 4, 2),
                (make_hash(1), "b.py", 20, 8, 3),
                (make_hash(1), "c.png", 0, 0, 0),
            ]
        )
        assert commits.get(make_hash(1)).complexity == 6.0


class TestRecentForPath:
    def test_exact_file_and_prefix(self, commits):
        commits.insert_raw_commits(
            [
                make_commit(1, ["src/a.py"], committed_at="2024-01-01T00:00:00+00:00"),
                make_commit(2, ["src/b.py"], committed_at="2024-01-02T00:00:00+00:00"),
                make_commit(3, ["src/a.py", "src/b.py"], committed_at="2024-01-03T00:00:00+00:00"),
                make_commit(4, ["lib/c.py"], committed_at="2024-01-04T00:00:00+00:00"),
            ]
        )
        assert [c.hash for c in commits.recent_for_path("src/a.py")] == [make_hash(3), make_hash(1)]
        assert [c.hash for c in commits.recent_for_path("src/", limit=2)] == [make_hash(3), make_hash(2)]
