"""Tests for temporal/measurer.py - filling complexity for stored file versions."""

from conftest import FakeGit, make_commit, make_hash

from gitmem.temporal.measurer import ComplexityMeasurer
from gitmem.temporal.models import CommitFile


def _file_row(db, commit_hash, path):
    return db.conn.execute(
        "SELECT lines_of_code, indent_complexity, max_indent FROM commit_files "
        "WHERE commit_hash = ? AND file_path = ?",
        (commit_hash, path),
    ).fetchone()


class TestComplexityMeasurer:
    def test_measures_each_version(self, db, commits):
        commit = make_commit(
            1,
            [
                "src/app.py",
                CommitFile("old.py", "D"),
                "package-lock.json",
                "logo.png",
                "gone.py",
            ],
        )
        commits.insert_raw_commits([commit])
        git = FakeGit([commit])
        h = make_hash(1)
        git.contents[(h, "src/app.py")] = b"def f():\n    return 1\n"
        git.contents[(h, "logo.png")] = b"\x89PNG\x00\x00"

        written = ComplexityMeasurer(git, commits).measure()

        assert written == 5
        assert tuple(_file_row(db, h, "src/app.py")) == (2, 1, 1)
        for path in ("old.py", "package-lock.json", "logo.png", "gone.py"):
            assert tuple(_file_row(db, h, path)) == (0, 0, 0)
        assert commits.get(h).complexity == 1

    def test_generated_and_deleted_files_are_not_fetched(self, commits):
        commit = make_commit(1, [CommitFile("old.py", "D"), "dist/app.min.js"])
        commits.insert_raw_commits([commit])

        class RecordingGit(FakeGit):
            requested = []

            def get_file_contents_batch(self, entries):
                self.requested.extend(entries)
                return {}

        git = RecordingGit([commit])
        ComplexityMeasurer(git, commits).measure()
        assert git.requested == []

    def test_second_run_is_a_no_op(self, commits):
        commit = make_commit(1, ["a.py"])
        commits.insert_raw_commits([commit])
        measurer = ComplexityMeasurer(FakeGit([commit]), commits)
        assert measurer.measure() == 1
        assert measurer.measure() == 0

    def test_reports_progress(self, commits):
        commits.insert_raw_commits([make_commit(1, ["a.py", "b.py"])])
        events = []
        ComplexityMeasurer(FakeGit(), commits).measure(events.append)
        assert [(e.current, e.total) for e in events] == [(2, 2)]
