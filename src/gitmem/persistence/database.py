"""SQLite-backed index database stored in .gitmem/ at the repository root."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from ..exceptions import NotInitializedError
from ..logging_config import get_logger

logger = get_logger(__name__)

INDEX_DIRNAME = ".gitmem"
DB_FILENAME = "index.db"

# Current schema version (bump when tables change).
_SCHEMA_VERSION = 2

# Writers from other processes are serialized by WriteLock; readers only
# need to ride out a checkpoint.
_BUSY_TIMEOUT_MS = 5000


def index_dir_for(repo_root: str) -> Path:
    return Path(repo_root) / INDEX_DIRNAME


class IndexDB:
    """Manages the ``.gitmem/index.db`` SQLite database.

    The connection runs in autocommit mode; every multi-statement write
    goes through :meth:`transaction` so a crash can only ever leave whole
    transitions behind.

    Usage::

        with IndexDB("/path/to/repo") as db:
            CommitStore(db).insert_raw_commits(commits)
    """

    def __init__(self, repo_root: str, create: bool = True) -> None:
        self.index_dir: Path = index_dir_for(repo_root)
        self.db_path: Path = self.index_dir / DB_FILENAME
        self.create = create
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Return the active connection. Raises if not connected."""
        if self._conn is None:
            raise RuntimeError("IndexDB is not connected. Use as context manager or call connect().")
        return self._conn

    @property
    def exists(self) -> bool:
        return self.db_path.exists()

    # ── lifecycle ─────────────────────────────────────────────────

    def _ensure_dir(self) -> None:
        """Create .gitmem/ and write a .gitignore so it stays untracked."""
        self.index_dir.mkdir(parents=True, exist_ok=True)
        gitignore = self.index_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text("*\n")

    def connect(self) -> sqlite3.Connection:
        """Open (or create) the database and run migrations.

        With ``create=False`` a missing database raises ``NotInitializedError``
        instead of being created.
        """
        if not self.create and not self.exists:
            raise NotInitializedError(str(self.index_dir))
        self._ensure_dir()
        conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
        conn.row_factory = sqlite3.Row
        self._conn = conn
        self._migrate()
        logger.debug("Index DB connected at %s", self.db_path)
        return conn

    def close(self) -> None:
        """Close the connection if open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "IndexDB":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ── transactions ──────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """``BEGIN IMMEDIATE`` ... ``COMMIT``, rolled back on any exception.

        Nested use joins the outer transaction, so store methods that
        open their own transaction compose into a single atomic unit.
        """
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    # ── metadata ──────────────────────────────────────────────────

    def get_meta(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def set_meta(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT INTO metadata (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    # ── migration ─────────────────────────────────────────────────

    def _migrate(self) -> None:
        """Idempotently create / upgrade all tables."""
        with self.transaction() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER NOT NULL
                )
                """
            )
            row = c.execute("SELECT version FROM schema_version").fetchone()
            if row is None:
                c.execute("INSERT INTO schema_version (version) VALUES (?)", (_SCHEMA_VERSION,))
            elif row["version"] < _SCHEMA_VERSION:
                self._upgrade(c, row["version"])
                c.execute("UPDATE schema_version SET version = ?", (_SCHEMA_VERSION,))

            # ── commits ──────────────────────────────────────────────
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS commits (
                    hash             TEXT PRIMARY KEY,
                    author_name      TEXT NOT NULL,
                    author_email     TEXT NOT NULL,
                    committed_at     TEXT NOT NULL,
                    message          TEXT NOT NULL,
                    classification   TEXT,
                    summary          TEXT,
                    complexity       REAL,
                    enriched_at      TEXT,
                    model_used       TEXT,
                    enrichment_error TEXT
                )
                """
            )

            # ── commit_files ─────────────────────────────────────────
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS commit_files (
                    commit_hash       TEXT    NOT NULL REFERENCES commits(hash),
                    file_path         TEXT    NOT NULL,
                    change_type       TEXT    NOT NULL,
                    additions         INTEGER NOT NULL DEFAULT 0,
                    deletions         INTEGER NOT NULL DEFAULT 0,
                    lines_of_code     INTEGER,
                    indent_complexity INTEGER,
                    max_indent        INTEGER,
                    PRIMARY KEY (commit_hash, file_path)
                )
                """
            )

            # ── batch_jobs ───────────────────────────────────────────
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS batch_jobs (
                    id              TEXT PRIMARY KEY,
                    status          TEXT    NOT NULL,
                    kind            TEXT    NOT NULL DEFAULT 'index',
                    created_at      TEXT    NOT NULL,
                    updated_at      TEXT    NOT NULL,
                    completed_at    TEXT,
                    request_count   INTEGER NOT NULL DEFAULT 0,
                    succeeded_count INTEGER NOT NULL DEFAULT 0,
                    failed_count    INTEGER NOT NULL DEFAULT 0,
                    model_used      TEXT,
                    imported        INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS batch_job_members (
                    job_id      TEXT NOT NULL REFERENCES batch_jobs(id),
                    commit_hash TEXT NOT NULL REFERENCES commits(hash),
                    PRIMARY KEY (job_id, commit_hash)
                )
                """
            )

            # Enrichment as it stood when a check job was submitted
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS check_items (
                    job_id         TEXT NOT NULL REFERENCES batch_jobs(id),
                    commit_hash    TEXT NOT NULL REFERENCES commits(hash),
                    classification TEXT NOT NULL,
                    summary        TEXT NOT NULL,
                    PRIMARY KEY (job_id, commit_hash)
                )
                """
            )

            # ── derived aggregates ───────────────────────────────────
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS file_stats (
                    file_path          TEXT PRIMARY KEY,
                    total_changes      INTEGER NOT NULL DEFAULT 0,
                    bug_fix_count      INTEGER NOT NULL DEFAULT 0,
                    feature_count      INTEGER NOT NULL DEFAULT 0,
                    refactor_count     INTEGER NOT NULL DEFAULT 0,
                    docs_count         INTEGER NOT NULL DEFAULT 0,
                    chore_count        INTEGER NOT NULL DEFAULT 0,
                    perf_count         INTEGER NOT NULL DEFAULT 0,
                    test_count         INTEGER NOT NULL DEFAULT 0,
                    style_count        INTEGER NOT NULL DEFAULT 0,
                    first_seen         TEXT,
                    last_changed       TEXT,
                    total_additions    INTEGER NOT NULL DEFAULT 0,
                    total_deletions    INTEGER NOT NULL DEFAULT 0,
                    current_loc        INTEGER,
                    current_complexity REAL,
                    avg_complexity     REAL,
                    max_complexity     REAL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS file_contributors (
                    file_path    TEXT    NOT NULL,
                    author_name  TEXT    NOT NULL,
                    author_email TEXT    NOT NULL,
                    commit_count INTEGER NOT NULL,
                    PRIMARY KEY (file_path, author_email)
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS file_coupling (
                    file_a          TEXT    NOT NULL,
                    file_b          TEXT    NOT NULL,
                    co_change_count INTEGER NOT NULL,
                    PRIMARY KEY (file_a, file_b),
                    CHECK (file_a < file_b)
                )
                """
            )

            # ── full-text search ─────────────────────────────────────
            c.execute(
                """
                CREATE VIRTUAL TABLE IF NOT EXISTS commits_fts USING fts5(
                    hash UNINDEXED,
                    message,
                    classification,
                    summary
                )
                """
            )

            # ── metadata ─────────────────────────────────────────────
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

            # ── indexes ──────────────────────────────────────────────
            c.execute("CREATE INDEX IF NOT EXISTS idx_commits_enriched ON commits(enriched_at)")
            c.execute("CREATE INDEX IF NOT EXISTS idx_commits_committed ON commits(committed_at)")
            c.execute("CREATE INDEX IF NOT EXISTS idx_commit_files_path ON commit_files(file_path)")
            c.execute("CREATE INDEX IF NOT EXISTS idx_batch_jobs_status ON batch_jobs(status)")
            c.execute(
                "CREATE INDEX IF NOT EXISTS idx_batch_job_members_hash ON batch_job_members(commit_hash)"
            )
            c.execute("CREATE INDEX IF NOT EXISTS idx_file_coupling_b ON file_coupling(file_b)")
            c.execute("CREATE INDEX IF NOT EXISTS idx_batch_jobs_kind ON batch_jobs(kind, status)")

    def _upgrade(self, c: sqlite3.Connection, from_version: int) -> None:
        """Bring tables created by an older schema up to date before the CREATEs run."""
        if from_version < 2:
            # v2: batch jobs gained a kind (index or check)
            c.execute("ALTER TABLE batch_jobs ADD COLUMN kind TEXT NOT NULL DEFAULT 'index'")
            logger.info("Upgraded index schema from v%d to v%d", from_version, _SCHEMA_VERSION)
