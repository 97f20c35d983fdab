"""End-to-end tests for the gitmem CLI against a real git repository."""

import json
import os
import shutil
import subprocess

import pytest
from typer.testing import CliRunner

from gitmem import __version__
from gitmem.cli import app
from gitmem.lock import WriteLock
from gitmem.persistence.commits import CommitStore
from gitmem.persistence.database import IndexDB, index_dir_for

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

runner = CliRunner()


def _git(repo, *args):
    subprocess.run(
        ["git", "-C", str(repo), "-c", "user.name=Ada", "-c", "user.email=ada@example.com", *args],
        check=True,
        capture_output=True,
    )


def _commit(repo, message, **files):
    for name, content in files.items():
        (repo / name.replace("__", ".")).write_text(content)
    _git(repo, "add", "-A")
    _git(repo, "commit", "-q", "-m", message)


@pytest.fixture
def repo(tmp_path):
    _git(tmp_path, "init", "-q")
    _commit(tmp_path, "Add a and b", a__py="x = 1\n", b__py="y = 1\n")
    _commit(tmp_path, "Add c", a__py="x = 2\n", c__py="def f():\n    return 1\n")
    _commit(tmp_path, "Touch a and b", a__py="x = 3\n", b__py="y = 2\n")
    return tmp_path


def invoke(repo, *args):
    return runner.invoke(app, ["-C", str(repo), *args])


def invoke_json(repo, *args):
    result = runner.invoke(app, ["-C", str(repo), "--format", "json", *args])
    return result, json.loads(result.stdout)


@pytest.fixture
def indexed(repo):
    assert invoke(repo, "init", "--no-ai").exit_code == 0
    result = invoke(repo, "index")
    assert result.exit_code == 0, result.output
    return repo


class TestInit:
    def test_creates_index(self, repo):
        result = invoke(repo, "init", "--no-ai")
        assert result.exit_code == 0, result.output
        assert "Initialized" in result.stdout
        index_dir = index_dir_for(str(repo))
        assert (index_dir / "index.db").exists()
        assert "ai = false" in (index_dir / "config.toml").read_text()

    def test_twice_is_an_error(self, repo):
        invoke(repo, "init")
        result, payload = invoke_json(repo, "init")
        assert result.exit_code == 3
        assert payload["success"] is False
        assert payload["error"] == "Already initialized"

    def test_not_a_git_repo(self, tmp_path_factory):
        plain = tmp_path_factory.mktemp("plain")
        assert invoke(plain, "init").exit_code == 5

    def test_ai_since_is_persisted(self, repo):
        result, payload = invoke_json(repo, "init", "--ai-since", "2024-01-01")
        assert result.exit_code == 0
        assert payload["config"]["ai"] == "2024-01-01"


class TestIndex:
    def test_requires_init(self, repo):
        result, payload = invoke_json(repo, "index")
        assert result.exit_code == 3
        assert payload["code"] == "NOT_INITIALIZED"

    def test_without_ai_goes_straight_to_done(self, repo):
        invoke(repo, "init", "--no-ai")
        result, payload = invoke_json(repo, "index")
        assert result.exit_code == 0
        assert payload["phase"] == "done"
        assert payload["discovered"] == 3
        assert payload["aggregates"]["file_coupling"] == 2

        result = invoke(repo, "index")
        assert "Index up to date" in result.stdout

    def test_missing_api_key(self, repo, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        invoke(repo, "init")
        result, payload = invoke_json(repo, "index")
        assert result.exit_code == 5
        assert payload["code"] == "API_KEY_ERROR"
        # discovery still ran before the service was needed
        with IndexDB(str(repo), create=False) as db:
            assert CommitStore(db).total_count() == 3

    def test_held_lock_blocks_without_writing(self, repo):
        invoke(repo, "init", "--no-ai")
        with WriteLock(index_dir_for(str(repo))):
            result, payload = invoke_json(repo, "index")
        assert result.exit_code == 6
        assert payload["code"] == "LOCK_ERROR"
        with IndexDB(str(repo), create=False) as db:
            assert CommitStore(db).total_count() == 0


class TestQueries:
    def test_hotspots(self, indexed):
        result, payload = invoke_json(indexed, "hotspots")
        assert result.exit_code == 0
        files = [(h["file_path"], h["total_changes"]) for h in payload["hotspots"]]
        assert files[0] == ("a.py", 3)
        assert {f for f, _ in files} == {"a.py", "b.py", "c.py"}

    def test_hotspots_table(self, indexed):
        result = invoke(indexed, "hotspots", "--sort", "combined")
        assert result.exit_code == 0
        assert "a.py" in result.stdout

    def test_coupling_pairs(self, indexed):
        result, payload = invoke_json(indexed, "coupling")
        pairs = [(p["file_a"], p["file_b"], p["co_change_count"]) for p in payload["pairs"]]
        assert pairs[0] == ("a.py", "b.py", 2)
        assert pairs[1] == ("a.py", "c.py", 1)

    def test_coupling_for_file(self, indexed):
        result, payload = invoke_json(indexed, "coupling", "b.py")
        assert payload["coupled"] == [{"file": "a.py", "co_change_count": 2, "coupling_ratio": 1.0}]

    def test_coupling_unknown_file(self, indexed):
        assert invoke(indexed, "coupling", "nope.py").exit_code == 4

    def test_stats(self, indexed):
        result, payload = invoke_json(indexed, "stats", "c.py")
        assert result.exit_code == 0
        assert payload["stats"]["total_changes"] == 1
        assert payload["stats"]["current_loc"] == 2
        assert payload["contributors"][0]["author_email"] == "ada@example.com"
        assert payload["recent_commits"][0]["subject"] == "Add c"

    def test_stats_unknown(self, indexed):
        result = invoke(indexed, "stats", "missing.py")
        assert result.exit_code == 4

    def test_trends(self, indexed):
        result, payload = invoke_json(indexed, "trends", "a.py")
        assert result.exit_code == 0
        assert sum(p["total_changes"] for p in payload["periods"]) == 3

    def test_query_without_classified_commits(self, indexed):
        result, payload = invoke_json(indexed, "query", "anything")
        assert result.exit_code == 0
        assert payload["results"] == []

    def test_query_syntax_error(self, indexed):
        result = invoke(indexed, "query", '"unbalanced')
        assert result.exit_code == 2


class TestScopeFlags:
    def test_exclude(self, indexed):
        result, payload = invoke_json(indexed, "hotspots", "--exclude", "a.py")
        assert result.exit_code == 0
        assert {h["file_path"] for h in payload["hotspots"]} == {"b.py", "c.py"}
        assert payload["scope"] == {"include": [], "exclude": ["a.py"]}

    def test_repeated_include(self, indexed):
        result, payload = invoke_json(indexed, "hotspots", "-I", "b.py", "-I", "c*")
        assert {h["file_path"] for h in payload["hotspots"]} == {"b.py", "c.py"}

    def test_configured_scope_and_all(self, indexed, monkeypatch):
        monkeypatch.setenv("GITMEM_SCOPE_EXCLUDE", "b.py")
        _, payload = invoke_json(indexed, "coupling")
        assert [(p["file_a"], p["file_b"]) for p in payload["pairs"]] == [("a.py", "c.py")]

        _, payload = invoke_json(indexed, "coupling", "--all")
        assert ("a.py", "b.py") in [(p["file_a"], p["file_b"]) for p in payload["pairs"]]
        assert payload["scope"] == {"include": [], "exclude": []}

    def test_coupling_for_file_hides_partners(self, indexed):
        _, payload = invoke_json(indexed, "coupling", "c.py", "--exclude", "a.py")
        assert payload["coupled"] == []

    def test_stats_scope(self, indexed):
        (indexed / "pkg").mkdir()
        _commit(indexed, "Add pkg", **{"pkg/x__py": "a = 1\n", "pkg/y__py": "b = 1\n"})
        assert invoke(indexed, "index").exit_code == 0

        result, payload = invoke_json(indexed, "stats", "pkg/", "--exclude", "pkg/y.py")
        assert result.exit_code == 0
        assert payload["file_count"] == 1
        assert payload["stats"]["total_changes"] == 1
        assert payload["scope"]["exclude"] == ["pkg/y.py"]


class TestCheck:
    def test_needs_hash_or_sample(self, indexed):
        result, payload = invoke_json(indexed, "check")
        assert result.exit_code == 2
        assert payload["code"] == "INVALID_QUERY"

    def test_batch_needs_sample(self, indexed):
        result, payload = invoke_json(indexed, "check", "--batch", "abc1234")
        assert result.exit_code == 2
        assert payload["code"] == "INVALID_QUERY"

    def test_missing_api_key(self, indexed, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        result, payload = invoke_json(indexed, "check", "--sample", "3")
        assert result.exit_code == 5
        assert payload["code"] == "API_KEY_ERROR"

    def test_unclassified_commit(self, indexed, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        head = subprocess.run(
            ["git", "-C", str(indexed), "rev-parse", "HEAD"], check=True, capture_output=True, text=True
        ).stdout.strip()
        result, payload = invoke_json(indexed, "check", head[:10])
        assert result.exit_code == 4
        assert payload["code"] == "NOT_FOUND"

    def test_sample_with_nothing_classified(self, indexed, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        result, payload = invoke_json(indexed, "check", "--sample", "5")
        assert result.exit_code == 0
        assert payload["kind"] == "empty"

        result = invoke(indexed, "check", "--sample", "5")
        assert "No classified commits" in result.stdout

    def test_held_lock(self, indexed, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        with WriteLock(index_dir_for(str(indexed))):
            result, payload = invoke_json(indexed, "check", "--sample", "5")
        assert result.exit_code == 6


class TestStatusAndUnlock:
    def test_status(self, indexed):
        result, payload = invoke_json(indexed, "status")
        assert result.exit_code == 0
        assert payload["total_commits"] == 3
        assert payload["ai"] is False
        assert payload["locked"] is False
        assert payload["last_run"] is not None

    def test_status_shows_lock(self, indexed):
        lock = WriteLock(index_dir_for(str(indexed)))
        with lock:
            result, payload = invoke_json(indexed, "status")
        assert payload["locked"] is True
        assert payload["lock_holder"]["pid"] == os.getpid()
        assert payload["lock_stale"] is False

    def test_unlock_live_lock_needs_force(self, indexed):
        lock = WriteLock(index_dir_for(str(indexed)))
        lock.acquire()
        assert invoke(indexed, "unlock").exit_code == 6
        assert lock.is_locked()

        result, payload = invoke_json(indexed, "unlock", "--force")
        assert result.exit_code == 0
        assert payload["removed"] is True
        assert not lock.is_locked()

    def test_unlock_without_lock(self, indexed):
        result = invoke(indexed, "unlock")
        assert result.exit_code == 0
        assert "No write lock present" in result.stdout


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout
