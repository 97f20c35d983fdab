"""BatchJobStore: lifecycle records for classification and check batch jobs.

Jobs are of two kinds: ``index`` jobs classify commits and ``check`` jobs
grade existing classifications. A job is created ``submitted``, may move
to ``in_progress`` while the service works on it, and is closed exactly
once as ``completed`` (results imported) or ``failed``. Closed jobs are
kept for audit and never change again. A commit hash may belong to at
most one open job of each kind at a time; that rule is checked inside the
same write transaction that creates the job.
"""

import sqlite3
from collections.abc import Iterable
from typing import Optional

from ..exceptions import DuplicateSubmissionError
from ..logging_config import get_logger
from .commits import utc_now
from .database import IndexDB
from .models import (
    COMPLETED,
    FAILED,
    INDEX_JOB,
    IN_PROGRESS,
    OPEN_STATUSES,
    SUBMITTED,
    TERMINAL_STATUSES,
    BatchJob,
)

logger = get_logger(__name__)


class BatchJobStore:
    def __init__(self, db: IndexDB) -> None:
        self.db = db

    @property
    def conn(self) -> sqlite3.Connection:
        return self.db.conn

    def _row_to_job(self, row: sqlite3.Row, with_members: bool = True) -> BatchJob:
        job = BatchJob(
            id=row["id"],
            status=row["status"],
            kind=row["kind"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
            request_count=row["request_count"],
            succeeded_count=row["succeeded_count"],
            failed_count=row["failed_count"],
            model_used=row["model_used"],
            imported=bool(row["imported"]),
        )
        if with_members:
            job.member_hashes = self.members(job.id)
        return job

    # ── writes ────────────────────────────────────────────────────

    def create(
        self,
        job_id: str,
        member_hashes: Iterable[str],
        model_used: Optional[str] = None,
        request_count: Optional[int] = None,
        kind: str = INDEX_JOB,
    ) -> BatchJob:
        """Persist a newly submitted job.

        Raises:
            DuplicateSubmissionError: if any member is already in an open job
                of the same kind.
            ValueError: if ``job_id`` already exists or there are no members.
        """
        members = sorted(set(member_hashes))
        if not members:
            raise ValueError("A batch job needs at least one member commit")

        now = utc_now()
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM batch_jobs WHERE id = ?", (job_id,)).fetchone():
                raise ValueError(f"Batch job {job_id} already exists")

            clashes: dict[str, set[str]] = {}
            for i in range(0, len(members), 500):
                chunk = members[i : i + 500]
                placeholders = ", ".join("?" * len(chunk))
                rows = conn.execute(
                    f"""
                    SELECT m.job_id, m.commit_hash FROM batch_job_members m
                    JOIN batch_jobs j ON j.id = m.job_id
                    WHERE j.kind = ? AND j.status IN (?, ?) AND m.commit_hash IN ({placeholders})
                    """,
                    (kind, *OPEN_STATUSES, *chunk),
                ).fetchall()
                for r in rows:
                    clashes.setdefault(r["job_id"], set()).add(r["commit_hash"])
            if clashes:
                open_job_id = sorted(clashes)[0]
                raise DuplicateSubmissionError(
                    set().union(*clashes.values()), open_job_id
                )

            conn.execute(
                """
                INSERT INTO batch_jobs
                    (id, status, kind, created_at, updated_at, request_count, model_used)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    SUBMITTED,
                    kind,
                    now,
                    now,
                    request_count if request_count is not None else len(members),
                    model_used,
                ),
            )
            conn.executemany(
                "INSERT INTO batch_job_members (job_id, commit_hash) VALUES (?, ?)",
                [(job_id, h) for h in members],
            )

        logger.info("Recorded %s job %s with %d commits", kind, job_id, len(members))
        return self.get(job_id)

    def update_status(
        self,
        job_id: str,
        status: str,
        succeeded: Optional[int] = None,
        failed: Optional[int] = None,
    ) -> BatchJob:
        """Record progress on an open job. Terminal transitions go through :meth:`close`."""
        if status not in OPEN_STATUSES:
            raise ValueError(f"update_status only accepts open statuses, got {status!r}")
        with self.db.transaction() as conn:
            job = self._require_open(conn, job_id)
            conn.execute(
                """
                UPDATE batch_jobs
                SET status = ?, updated_at = ?, succeeded_count = ?, failed_count = ?
                WHERE id = ?
                """,
                (
                    status,
                    utc_now(),
                    job["succeeded_count"] if succeeded is None else succeeded,
                    job["failed_count"] if failed is None else failed,
                    job_id,
                ),
            )
        return self.get(job_id)

    def close(
        self,
        job_id: str,
        status: str,
        imported: bool,
        succeeded: Optional[int] = None,
        failed: Optional[int] = None,
    ) -> BatchJob:
        """Move an open job to ``completed`` or ``failed``. A closed job cannot be closed again."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"close requires a terminal status, got {status!r}")
        now = utc_now()
        with self.db.transaction() as conn:
            job = self._require_open(conn, job_id)
            conn.execute(
                """
                UPDATE batch_jobs
                SET status = ?, updated_at = ?, completed_at = ?, imported = ?,
                    succeeded_count = ?, failed_count = ?
                WHERE id = ?
                """,
                (
                    status,
                    now,
                    now,
                    int(imported),
                    job["succeeded_count"] if succeeded is None else succeeded,
                    job["failed_count"] if failed is None else failed,
                    job_id,
                ),
            )
        logger.info("Closed batch job %s as %s", job_id, status)
        return self.get(job_id)

    def _require_open(self, conn: sqlite3.Connection, job_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM batch_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise KeyError(f"No batch job {job_id}")
        if row["status"] not in OPEN_STATUSES:
            raise ValueError(f"Batch job {job_id} is already {row['status']}")
        return row

    # ── reads ─────────────────────────────────────────────────────

    def get(self, job_id: str) -> Optional[BatchJob]:
        row = self.conn.execute("SELECT * FROM batch_jobs WHERE id = ?", (job_id,)).fetchone()
        return None if row is None else self._row_to_job(row)

    def members(self, job_id: str) -> set[str]:
        rows = self.conn.execute(
            "SELECT commit_hash FROM batch_job_members WHERE job_id = ?", (job_id,)
        )
        return {r["commit_hash"] for r in rows}

    def list_open(self, kind: Optional[str] = INDEX_JOB) -> list[BatchJob]:
        """Open jobs of ``kind`` (every kind when ``None``), oldest first."""
        sql = "SELECT * FROM batch_jobs WHERE status IN (?, ?)"
        params: list = list(OPEN_STATUSES)
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind)
        rows = self.conn.execute(sql + " ORDER BY created_at, id", params).fetchall()
        return [self._row_to_job(r) for r in rows]

    def get_open(self, kind: str = INDEX_JOB) -> Optional[BatchJob]:
        """The oldest open job of ``kind``, if any."""
        open_jobs = self.list_open(kind)
        return open_jobs[0] if open_jobs else None

    def list_all(self, limit: Optional[int] = None) -> list[BatchJob]:
        sql = "SELECT * FROM batch_jobs ORDER BY created_at DESC, id"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [self._row_to_job(r, with_members=False) for r in self.conn.execute(sql, params)]

    def open_member_hashes(self, kind: str = INDEX_JOB) -> set[str]:
        rows = self.conn.execute(
            """
            SELECT m.commit_hash FROM batch_job_members m
            JOIN batch_jobs j ON j.id = m.job_id
            WHERE j.kind = ? AND j.status IN (?, ?)
            """,
            (kind, *OPEN_STATUSES),
        )
        return {r["commit_hash"] for r in rows}

    # ── check snapshots ───────────────────────────────────────────

    def add_check_items(self, job_id: str, items: Iterable[tuple[str, str, str]]) -> None:
        """Record ``(hash, classification, summary)`` as graded by check job ``job_id``."""
        with self.db.transaction() as conn:
            conn.executemany(
                "INSERT INTO check_items (job_id, commit_hash, classification, summary) "
                "VALUES (?, ?, ?, ?)",
                [(job_id, h, cls, summary) for h, cls, summary in items],
            )

    def check_items(self, job_id: str) -> dict[str, tuple[str, str]]:
        """``hash -> (classification, summary)`` snapshot of a check job."""
        rows = self.conn.execute(
            "SELECT commit_hash, classification, summary FROM check_items WHERE job_id = ?",
            (job_id,),
        )
        return {r["commit_hash"]: (r["classification"], r["summary"]) for r in rows}


__all__ = ["BatchJobStore", "SUBMITTED", "IN_PROGRESS", "COMPLETED", "FAILED"]
