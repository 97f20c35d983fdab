"""CommitStore: known commits, their changed files and enrichment fields."""

import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from ..file_filter import Scope
from ..logging_config import get_logger
from ..temporal.models import Commit, CommitFile
from .database import IndexDB
from .models import INDEX_JOB, OPEN_STATUSES

logger = get_logger(__name__)

# Bound parameters per IN (...) clause
_CHUNK = 500


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _chunks(items: list, size: int = _CHUNK):
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _row_to_commit(row: sqlite3.Row) -> Commit:
    return Commit(
        hash=row["hash"],
        author_name=row["author_name"],
        author_email=row["author_email"],
        committed_at=row["committed_at"],
        message=row["message"],
        classification=row["classification"],
        summary=row["summary"],
        complexity=row["complexity"],
        enriched_at=row["enriched_at"],
        model_used=row["model_used"],
        enrichment_error=row["enrichment_error"],
    )


def _row_to_file(row: sqlite3.Row) -> CommitFile:
    return CommitFile(
        path=row["file_path"],
        change_type=row["change_type"],
        additions=row["additions"],
        deletions=row["deletions"],
        lines_of_code=row["lines_of_code"],
        indent_complexity=row["indent_complexity"],
        max_indent=row["max_indent"],
    )


class CommitStore:
    """Durable table of commits.

    Rows are created by discovery and never deleted. Enrichment fields are
    written only by :meth:`apply_results` and :meth:`record_failures`,
    which the orchestrator calls inside the transaction that closes a
    batch job.
    """

    def __init__(self, db: IndexDB) -> None:
        self.db = db

    @property
    def conn(self) -> sqlite3.Connection:
        return self.db.conn

    # ── discovery ─────────────────────────────────────────────────

    def indexed_hashes(self) -> set[str]:
        return {row["hash"] for row in self.conn.execute("SELECT hash FROM commits")}

    def insert_raw_commits(self, commits: Iterable[Commit]) -> int:
        """Insert commits and their file lists; already-known hashes are skipped."""
        commit_rows = []
        file_rows = []
        for c in commits:
            commit_rows.append((c.hash, c.author_name, c.author_email, c.committed_at, c.message))
            for f in c.files:
                file_rows.append((c.hash, f.path, f.change_type, f.additions, f.deletions))

        if not commit_rows:
            return 0

        with self.db.transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                """
                INSERT OR IGNORE INTO commits (hash, author_name, author_email, committed_at, message)
                VALUES (?, ?, ?, ?, ?)
                """,
                commit_rows,
            )
            inserted = conn.total_changes - before
            conn.executemany(
                """
                INSERT OR IGNORE INTO commit_files
                    (commit_hash, file_path, change_type, additions, deletions)
                VALUES (?, ?, ?, ?, ?)
                """,
                file_rows,
            )

        logger.debug("Inserted %d new commits (%d file rows)", inserted, len(file_rows))
        return inserted

    # ── reads ─────────────────────────────────────────────────────

    def get(self, commit_hash: str) -> Optional[Commit]:
        row = self.conn.execute("SELECT * FROM commits WHERE hash = ?", (commit_hash,)).fetchone()
        if row is None:
            return None
        commit = _row_to_commit(row)
        commit.files = self.get_files(commit_hash)
        return commit

    def get_files(self, commit_hash: str) -> list[CommitFile]:
        rows = self.conn.execute(
            "SELECT * FROM commit_files WHERE commit_hash = ? ORDER BY file_path",
            (commit_hash,),
        ).fetchall()
        return [_row_to_file(r) for r in rows]

    def files_by_hashes(self, hashes: list[str]) -> dict[str, list[CommitFile]]:
        result: dict[str, list[CommitFile]] = {h: [] for h in hashes}
        for chunk in _chunks(hashes):
            placeholders = ", ".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT * FROM commit_files WHERE commit_hash IN ({placeholders}) "
                "ORDER BY commit_hash, file_path",
                chunk,
            ).fetchall()
            for r in rows:
                result[r["commit_hash"]].append(_row_to_file(r))
        return result

    def get_many(self, hashes: list[str]) -> list[Commit]:
        """Commits for ``hashes`` with their files, in the order given; unknown hashes are skipped."""
        by_hash: dict[str, Commit] = {}
        for chunk in _chunks(hashes):
            placeholders = ", ".join("?" * len(chunk))
            for r in self.conn.execute(f"SELECT * FROM commits WHERE hash IN ({placeholders})", chunk):
                by_hash[r["hash"]] = _row_to_commit(r)
        files = self.files_by_hashes(list(by_hash))
        for h, commit in by_hash.items():
            commit.files = files[h]
        return [by_hash[h] for h in hashes if h in by_hash]

    def find_by_prefix(self, prefix: str, limit: int = 10) -> list[Commit]:
        """Commits whose hash starts with ``prefix`` (case-insensitive), by hash."""
        rows = self.conn.execute(
            "SELECT * FROM commits WHERE substr(hash, 1, length(?1)) = lower(?1) "
            "ORDER BY hash LIMIT ?2",
            (prefix, limit),
        ).fetchall()
        return [_row_to_commit(r) for r in rows]

    def enriched_hashes(self) -> list[str]:
        return [
            r["hash"]
            for r in self.conn.execute(
                "SELECT hash FROM commits WHERE enriched_at IS NOT NULL ORDER BY hash"
            )
        ]

    def list_unenriched(
        self, ai_start_date: Optional[str] = None, limit: Optional[int] = None
    ) -> list[Commit]:
        """Commits awaiting classification, newest first.

        Excludes commits with a recorded enrichment failure, commits before
        ``ai_start_date`` (``YYYY-MM-DD``) and commits already in an open
        index job. File lists are attached.
        """
        sql = """
            SELECT * FROM commits c
            WHERE c.enriched_at IS NULL
              AND c.enrichment_error IS NULL
              AND NOT EXISTS (
                  SELECT 1 FROM batch_job_members m
                  JOIN batch_jobs j ON j.id = m.job_id
                  WHERE m.commit_hash = c.hash AND j.kind = ? AND j.status IN (?, ?)
              )
        """
        params: list = [INDEX_JOB, *OPEN_STATUSES]
        if ai_start_date:
            sql += " AND date(c.committed_at) >= ?"
            params.append(ai_start_date)
        sql += " ORDER BY c.committed_at DESC, c.hash"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        commits = [_row_to_commit(r) for r in self.conn.execute(sql, params)]
        files = self.files_by_hashes([c.hash for c in commits])
        for c in commits:
            c.files = files[c.hash]
        return commits

    def count_unenriched(self, ai_start_date: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) FROM commits WHERE enriched_at IS NULL AND enrichment_error IS NULL"
        params: list = []
        if ai_start_date:
            sql += " AND date(committed_at) >= ?"
            params.append(ai_start_date)
        return self.conn.execute(sql, params).fetchone()[0]

    def total_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM commits").fetchone()[0]

    def enriched_count(self) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM commits WHERE enriched_at IS NOT NULL"
        ).fetchone()[0]

    def failed_count(self) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM commits WHERE enrichment_error IS NOT NULL AND enriched_at IS NULL"
        ).fetchone()[0]

    def classification_counts(self) -> dict[str, int]:
        rows = self.conn.execute(
            """
            SELECT classification, COUNT(*) AS n FROM commits
            WHERE classification IS NOT NULL
            GROUP BY classification ORDER BY n DESC, classification
            """
        ).fetchall()
        return {r["classification"]: r["n"] for r in rows}

    def recent_for_path(
        self, path_prefix: str, limit: int = 5, scope: Optional[Scope] = None
    ) -> list[Commit]:
        """Most recent commits touching a file, or any in-scope file under a prefix ending in ``/``."""
        params: list = [path_prefix]
        if path_prefix.endswith("/"):
            match = "substr(cf.file_path, 1, length(?)) = ?"
            params.append(path_prefix)
            if scope is not None and not scope.is_empty:
                condition, scope_params = scope.sql("cf.file_path")
                match += f" AND {condition}"
                params.extend(scope_params)
        else:
            match = "cf.file_path = ?"
        rows = self.conn.execute(
            f"""
            SELECT DISTINCT c.* FROM commits c
            JOIN commit_files cf ON cf.commit_hash = c.hash
            WHERE {match}
            ORDER BY c.committed_at DESC, c.hash
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
        return [_row_to_commit(r) for r in rows]

    # ── enrichment writes ─────────────────────────────────────────

    def apply_results(self, updates: Iterable[tuple[str, str, str]], model_used: str) -> int:
        """Write ``(hash, classification, summary)`` verdicts.

        Commits that are already enriched are left alone. Returns the number
        of commits updated.
        """
        now = utc_now()
        rows = [(cls, summary, now, model_used, h) for h, cls, summary in updates]
        if not rows:
            return 0
        with self.db.transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                """
                UPDATE commits
                SET classification = ?, summary = ?, enriched_at = ?, model_used = ?,
                    enrichment_error = NULL
                WHERE hash = ? AND enriched_at IS NULL
                """,
                rows,
            )
            return conn.total_changes - before

    def record_failures(self, failures: Iterable[tuple[str, str]]) -> int:
        """Mark ``(hash, error)`` commits as enrichment-failed; classification stays null."""
        rows = [(error, h) for h, error in failures]
        if not rows:
            return 0
        with self.db.transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                "UPDATE commits SET enrichment_error = ? WHERE hash = ? AND enriched_at IS NULL",
                rows,
            )
            return conn.total_changes - before

    def clear_failures(self) -> int:
        """Make failed commits eligible for discovery again."""
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE commits SET enrichment_error = NULL "
                "WHERE enrichment_error IS NOT NULL AND enriched_at IS NULL"
            )
            return cur.rowcount

    # ── complexity ────────────────────────────────────────────────

    def get_unmeasured_files(self, limit: Optional[int] = None) -> list[tuple[str, str, str]]:
        """``(commit_hash, file_path, change_type)`` rows with no complexity yet."""
        sql = (
            "SELECT commit_hash, file_path, change_type FROM commit_files "
            "WHERE lines_of_code IS NULL ORDER BY commit_hash, file_path"
        )
        params: list = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [
            (r["commit_hash"], r["file_path"], r["change_type"])
            for r in self.conn.execute(sql, params)
        ]

    def update_complexity(self, rows: Iterable[tuple[str, str, int, int, int]]) -> None:
        """Store ``(commit_hash, file_path, loc, indent_complexity, max_indent)`` and
        refresh the per-commit mean complexity of the affected commits."""
        rows = list(rows)
        if not rows:
            return
        hashes = sorted({r[0] for r in rows})
        with self.db.transaction() as conn:
            conn.executemany(
                """
                UPDATE commit_files
                SET lines_of_code = ?, indent_complexity = ?, max_indent = ?
                WHERE commit_hash = ? AND file_path = ?
                """,
                [(loc, ic, mi, h, path) for h, path, loc, ic, mi in rows],
            )
            for chunk in _chunks(hashes):
                placeholders = ", ".join("?" * len(chunk))
                conn.execute(
                    f"""
                    UPDATE commits SET complexity = (
                        SELECT AVG(cf.indent_complexity) FROM commit_files cf
                        WHERE cf.commit_hash = commits.hash AND cf.lines_of_code > 0
                    )
                    WHERE hash IN ({placeholders})
                    """,
                    chunk,
                )
