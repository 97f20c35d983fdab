"""AggregateEngine: derived file statistics, co-change coupling and hotspots.

``file_stats``, ``file_contributors`` and ``file_coupling`` are a
materialized view of ``commits`` + ``commit_files``. They hold nothing
that cannot be recomputed, and :meth:`AggregateEngine.rebuild_all`
recomputes them from scratch: new rows are built in TEMP staging tables
and swapped into place in a single transaction, so an interrupted rebuild
leaves the previous aggregates untouched.
"""

import sqlite3
from collections import Counter
from collections.abc import Iterable, Iterator
from itertools import combinations, groupby
from typing import Optional

import numpy as np

from ..exceptions import InvalidQueryError
from ..file_filter import Scope, is_excluded
from ..logging_config import get_logger
from ..temporal.models import CLASSIFICATIONS
from .commits import utc_now
from .database import IndexDB
from .models import CoupledFile, CouplingPair, FileContributor, FileStats, TrendPeriod, TrendSummary
from .trends import compute_trend, query_trends

logger = get_logger(__name__)

DEFAULT_MIN_COCHANGES = 1
DEFAULT_MAX_FILES_PER_COMMIT = 200

SORT_COLUMNS = {
    "total": "total_changes",
    **{cls: cls.replace("-", "_") + "_count" for cls in CLASSIFICATIONS},
    "complexity": "current_complexity",
}
SORT_CHOICES = (*SORT_COLUMNS, "combined")

# Weights of normalized churn and normalized complexity in the combined score
COMBINED_CHANGE_WEIGHT = 0.5
COMBINED_COMPLEXITY_WEIGHT = 0.5

_FILE_STATS_COLUMNS = (
    "file_path, total_changes, "
    "bug_fix_count, feature_count, refactor_count, docs_count, "
    "chore_count, perf_count, test_count, style_count, "
    "first_seen, last_changed, total_additions, total_deletions, "
    "current_loc, current_complexity, avg_complexity, max_complexity"
)


def _prefix_match(column: str) -> str:
    return f"substr({column}, 1, length(?)) = ?"


def _scoped(scope: Optional[Scope], column: str = "file_path") -> tuple[str, list[str]]:
    """`` AND <scope condition>`` for a WHERE clause, or ``""`` without a scope."""
    if scope is None or scope.is_empty:
        return "", []
    condition, params = scope.sql(column)
    return f" AND {condition}", params


def _hidden(path: str, excluded: tuple[str, ...], scope: Optional[Scope]) -> bool:
    if is_excluded(path, excluded):
        return True
    return scope is not None and not scope.matches(path)


def _row_to_stats(row: sqlite3.Row) -> FileStats:
    return FileStats(**{k: row[k] for k in row.keys() if k in FileStats.__dataclass_fields__})


class AggregateEngine:
    """Rebuilds and serves derived statistics.

    Queries take ``excluded``, a collection of file categories (``test``,
    ``docs``, ``generated``) whose files are left out, and most take a
    ``scope`` of path patterns the files must fall in.
    """

    def __init__(
        self,
        db: IndexDB,
        min_cochanges: int = DEFAULT_MIN_COCHANGES,
        max_files_per_commit: int = DEFAULT_MAX_FILES_PER_COMMIT,
    ) -> None:
        self.db = db
        self.min_cochanges = min_cochanges
        self.max_files_per_commit = max_files_per_commit

    @property
    def conn(self) -> sqlite3.Connection:
        return self.db.conn

    # ── rebuild ───────────────────────────────────────────────────

    def rebuild_all(self) -> dict[str, int]:
        """Recompute every aggregate table. Returns row counts per table."""
        conn = self.conn
        self._drop_staging()
        try:
            conn.execute("CREATE TEMP TABLE stage_file_stats AS SELECT * FROM main.file_stats WHERE 0")
            conn.execute(
                "CREATE TEMP TABLE stage_file_contributors AS SELECT * FROM main.file_contributors WHERE 0"
            )
            conn.execute(
                "CREATE TEMP TABLE stage_file_coupling AS SELECT * FROM main.file_coupling WHERE 0"
            )

            self._stage_file_stats()
            self._stage_contributors()
            self._stage_coupling()

            counts = {}
            with self.db.transaction() as c:
                for table in ("file_stats", "file_contributors", "file_coupling"):
                    c.execute(f"DELETE FROM main.{table}")
                    c.execute(f"INSERT INTO main.{table} SELECT * FROM temp.stage_{table}")
                    counts[table] = c.execute(f"SELECT COUNT(*) FROM main.{table}").fetchone()[0]
                self.db.set_meta("aggregates_rebuilt_at", utc_now())
        finally:
            self._drop_staging()

        logger.info(
            "Rebuilt aggregates: %d files, %d contributor rows, %d coupled pairs",
            counts["file_stats"],
            counts["file_contributors"],
            counts["file_coupling"],
        )
        return counts

    def _drop_staging(self) -> None:
        for table in ("stage_file_stats", "stage_file_contributors", "stage_file_coupling"):
            self.conn.execute(f"DROP TABLE IF EXISTS temp.{table}")

    def _stage_file_stats(self) -> None:
        # Change counts cover every commit; classification tallies can only
        # come from enriched ones since classification is null otherwise.
        self.conn.execute(
            f"""
            WITH latest_loc AS (
                SELECT cf.file_path, cf.lines_of_code,
                    ROW_NUMBER() OVER (
                        PARTITION BY cf.file_path ORDER BY c.committed_at DESC, c.hash
                    ) AS rn
                FROM commit_files cf
                JOIN commits c ON c.hash = cf.commit_hash
                WHERE cf.lines_of_code > 0
            ),
            latest_complexity AS (
                SELECT cf.file_path, cf.indent_complexity,
                    ROW_NUMBER() OVER (
                        PARTITION BY cf.file_path ORDER BY c.committed_at DESC, c.hash
                    ) AS rn
                FROM commit_files cf
                JOIN commits c ON c.hash = cf.commit_hash
                WHERE cf.indent_complexity > 0
            )
            INSERT INTO temp.stage_file_stats ({_FILE_STATS_COLUMNS})
            SELECT
                cf.file_path,
                COUNT(DISTINCT cf.commit_hash),
                COUNT(DISTINCT CASE WHEN c.classification = 'bug-fix' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'feature' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'refactor' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'docs' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'chore' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'perf' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'test' THEN cf.commit_hash END),
                COUNT(DISTINCT CASE WHEN c.classification = 'style' THEN cf.commit_hash END),
                MIN(c.committed_at),
                MAX(c.committed_at),
                COALESCE(SUM(cf.additions), 0),
                COALESCE(SUM(cf.deletions), 0),
                ll.lines_of_code,
                lc.indent_complexity,
                AVG(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END),
                MAX(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END)
            FROM commit_files cf
            JOIN commits c ON c.hash = cf.commit_hash
            LEFT JOIN latest_loc ll ON ll.file_path = cf.file_path AND ll.rn = 1
            LEFT JOIN latest_complexity lc ON lc.file_path = cf.file_path AND lc.rn = 1
            GROUP BY cf.file_path
            """
        )

    def _stage_contributors(self) -> None:
        self.conn.execute(
            """
            INSERT INTO temp.stage_file_contributors
                (file_path, author_name, author_email, commit_count)
            SELECT cf.file_path, MAX(c.author_name), c.author_email, COUNT(DISTINCT cf.commit_hash)
            FROM commit_files cf
            JOIN commits c ON c.hash = cf.commit_hash
            GROUP BY cf.file_path, c.author_email
            """
        )

    def _iter_commit_file_sets(self) -> Iterator[list[str]]:
        rows = self.conn.execute(
            "SELECT commit_hash, file_path FROM commit_files ORDER BY commit_hash, file_path"
        )
        for _, group in groupby(rows, key=lambda r: r["commit_hash"]):
            yield [r["file_path"] for r in group]

    def _stage_coupling(self) -> None:
        """Count co-changes for every file pair.

        Only includes:
        - Commits touching between 2 and ``max_files_per_commit`` files
          (bulk renames and reformats are noise)
        - Pairs with at least ``min_cochanges`` co-changes
        """
        pair_counts: Counter[tuple[str, str]] = Counter()
        skipped = 0
        for files in self._iter_commit_file_sets():
            if len(files) > self.max_files_per_commit:
                skipped += 1
                continue
            # files are sorted, so each pair comes out as (a, b) with a < b
            pair_counts.update(combinations(files, 2))

        if skipped:
            logger.debug("Coupling skipped %d commits over %d files", skipped, self.max_files_per_commit)

        self.conn.executemany(
            "INSERT INTO temp.stage_file_coupling (file_a, file_b, co_change_count) VALUES (?, ?, ?)",
            (
                (a, b, n)
                for (a, b), n in pair_counts.items()
                if n >= self.min_cochanges
            ),
        )

    # ── file stats ────────────────────────────────────────────────

    def get_file_stats(self, path: str) -> Optional[FileStats]:
        row = self.conn.execute("SELECT * FROM file_stats WHERE file_path = ?", (path,)).fetchone()
        return None if row is None else _row_to_stats(row)

    def get_directory_stats(self, prefix: str, scope: Optional[Scope] = None) -> Optional[FileStats]:
        """Sum of file stats under ``prefix``; None when nothing matches."""
        scope_sql, scope_params = _scoped(scope)
        row = self.conn.execute(
            f"""
            SELECT
                ? AS file_path,
                COALESCE(SUM(total_changes), 0) AS total_changes,
                COALESCE(SUM(bug_fix_count), 0) AS bug_fix_count,
                COALESCE(SUM(feature_count), 0) AS feature_count,
                COALESCE(SUM(refactor_count), 0) AS refactor_count,
                COALESCE(SUM(docs_count), 0) AS docs_count,
                COALESCE(SUM(chore_count), 0) AS chore_count,
                COALESCE(SUM(perf_count), 0) AS perf_count,
                COALESCE(SUM(test_count), 0) AS test_count,
                COALESCE(SUM(style_count), 0) AS style_count,
                MIN(first_seen) AS first_seen,
                MAX(last_changed) AS last_changed,
                COALESCE(SUM(total_additions), 0) AS total_additions,
                COALESCE(SUM(total_deletions), 0) AS total_deletions,
                COALESCE(SUM(current_loc), 0) AS current_loc,
                AVG(current_complexity) AS current_complexity,
                AVG(avg_complexity) AS avg_complexity,
                MAX(max_complexity) AS max_complexity
            FROM file_stats
            WHERE {_prefix_match("file_path")}{scope_sql}
            """,
            (prefix, prefix, prefix, *scope_params),
        ).fetchone()
        if row is None or row["first_seen"] is None:
            return None
        return _row_to_stats(row)

    def directory_file_count(self, prefix: str, scope: Optional[Scope] = None) -> int:
        scope_sql, scope_params = _scoped(scope)
        return self.conn.execute(
            f"SELECT COUNT(*) FROM file_stats WHERE {_prefix_match('file_path')}{scope_sql}",
            (prefix, prefix, *scope_params),
        ).fetchone()[0]

    def get_top_contributors(
        self, path: str, limit: int = 5, scope: Optional[Scope] = None
    ) -> list[FileContributor]:
        """Top authors of a file, or of every in-scope file under ``path`` if it ends in ``/``."""
        if path.endswith("/"):
            scope_sql, scope_params = _scoped(scope)
            rows = self.conn.execute(
                f"""
                SELECT ? AS file_path, MAX(author_name) AS author_name, author_email,
                       SUM(commit_count) AS commit_count
                FROM file_contributors
                WHERE {_prefix_match("file_path")}{scope_sql}
                GROUP BY author_email
                ORDER BY commit_count DESC, author_email
                LIMIT ?
                """,
                (path, path, path, *scope_params, limit),
            )
        else:
            rows = self.conn.execute(
                """
                SELECT * FROM file_contributors WHERE file_path = ?
                ORDER BY commit_count DESC, author_email
                LIMIT ?
                """,
                (path, limit),
            )
        return [FileContributor(**dict(r)) for r in rows]

    # ── coupling ──────────────────────────────────────────────────

    def get_top_coupled_pairs(
        self, limit: int = 10, excluded: Iterable[str] = (), scope: Optional[Scope] = None
    ) -> list[CouplingPair]:
        """Most frequently co-changed pairs, count descending, then ``file_a``, ``file_b``."""
        excluded = tuple(excluded)
        rows = self.conn.execute(
            "SELECT file_a, file_b, co_change_count FROM file_coupling "
            "ORDER BY co_change_count DESC, file_a, file_b"
        )
        pairs = []
        for r in rows:
            if _hidden(r["file_a"], excluded, scope) or _hidden(r["file_b"], excluded, scope):
                continue
            pairs.append(CouplingPair(r["file_a"], r["file_b"], r["co_change_count"]))
            if len(pairs) >= limit:
                break
        return pairs

    def get_coupled_files_with_ratio(
        self,
        path: str,
        limit: int = 10,
        excluded: Iterable[str] = (),
        scope: Optional[Scope] = None,
    ) -> list[CoupledFile]:
        """Files that change together with ``path``.

        ``coupling_ratio`` is co-changes divided by the total changes of
        ``path``, rounded to 2 places. Empty when ``path`` has no stats.
        ``excluded`` and ``scope`` filter the partner files, not ``path``.
        """
        excluded = tuple(excluded)
        stats = self.get_file_stats(path)
        if stats is None or stats.total_changes == 0:
            return []

        rows = self.conn.execute(
            """
            SELECT CASE WHEN file_a = ?1 THEN file_b ELSE file_a END AS file, co_change_count
            FROM file_coupling
            WHERE file_a = ?1 OR file_b = ?1
            ORDER BY co_change_count DESC, file
            """,
            (path,),
        )
        result = []
        for r in rows:
            if _hidden(r["file"], excluded, scope):
                continue
            result.append(
                CoupledFile(
                    file=r["file"],
                    co_change_count=r["co_change_count"],
                    coupling_ratio=round(r["co_change_count"] / stats.total_changes, 2),
                )
            )
            if len(result) >= limit:
                break
        return result

    def get_coupled_files_for_directory(
        self,
        prefix: str,
        limit: int = 10,
        excluded: Iterable[str] = (),
        scope: Optional[Scope] = None,
    ) -> list[CoupledFile]:
        """Files outside ``prefix`` that change together with files inside it.

        Co-change counts are summed over every inside file; the ratio is
        against the summed total changes of the visible inside files.
        """
        excluded = tuple(excluded)
        dir_total = 0
        for r in self.conn.execute(
            f"SELECT file_path, total_changes FROM file_stats WHERE {_prefix_match('file_path')}",
            (prefix, prefix),
        ):
            if not _hidden(r["file_path"], excluded, scope):
                dir_total += r["total_changes"]
        if dir_total == 0:
            return []

        n = len(prefix)
        totals: Counter[str] = Counter()
        for r in self.conn.execute("SELECT file_a, file_b, co_change_count FROM file_coupling"):
            a_inside = r["file_a"][:n] == prefix
            b_inside = r["file_b"][:n] == prefix
            if a_inside == b_inside:
                continue
            inside, outside = (r["file_a"], r["file_b"]) if a_inside else (r["file_b"], r["file_a"])
            if _hidden(inside, excluded, scope) or _hidden(outside, excluded, scope):
                continue
            totals[outside] += r["co_change_count"]

        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:limit]
        return [
            CoupledFile(file=f, co_change_count=count, coupling_ratio=round(count / dir_total, 2))
            for f, count in ranked
        ]

    # ── hotspots ──────────────────────────────────────────────────

    def get_hotspots(
        self,
        limit: int = 10,
        sort: str = "total",
        path_prefix: Optional[str] = None,
        excluded: Iterable[str] = (),
        scope: Optional[Scope] = None,
    ) -> list[FileStats]:
        """Files ranked by ``sort``: ``total``, a classification, ``complexity`` or ``combined``.

        Ties are broken by path so the ranking is a total order.
        """
        excluded = tuple(excluded)
        if sort == "combined":
            return self._hotspots_combined(limit, path_prefix, excluded, scope)

        column = SORT_COLUMNS.get(sort)
        if column is None:
            raise InvalidQueryError(sort, f"sort must be one of {', '.join(SORT_CHOICES)}")

        sql = "SELECT * FROM file_stats"
        params: tuple = ()
        if path_prefix:
            sql += f" WHERE {_prefix_match('file_path')}"
            params = (path_prefix, path_prefix)
        sql += f" ORDER BY {column} DESC, file_path"

        result = []
        for r in self.conn.execute(sql, params):
            if _hidden(r["file_path"], excluded, scope):
                continue
            result.append(_row_to_stats(r))
            if len(result) >= limit:
                break
        return result

    def _hotspots_combined(
        self,
        limit: int,
        path_prefix: Optional[str],
        excluded: tuple[str, ...],
        scope: Optional[Scope] = None,
    ) -> list[FileStats]:
        """Rank by weighted normalized churn plus normalized complexity.

        Both inputs are divided by their repository-wide maximum, so the
        score lies in [0, 1]; files without complexity data contribute 0
        for that term.
        """
        stats = [_row_to_stats(r) for r in self.conn.execute("SELECT * FROM file_stats")]
        if not stats:
            return []

        changes = np.array([s.total_changes for s in stats], dtype=float)
        complexity = np.array(
            [s.current_complexity if s.current_complexity is not None else 0.0 for s in stats],
            dtype=float,
        )
        norm_changes = changes / changes.max() if changes.max() > 0 else np.zeros_like(changes)
        norm_complexity = (
            complexity / complexity.max() if complexity.max() > 0 else np.zeros_like(complexity)
        )
        scores = COMBINED_CHANGE_WEIGHT * norm_changes + COMBINED_COMPLEXITY_WEIGHT * norm_complexity

        candidates = []
        for s, score in zip(stats, scores):
            if path_prefix and not s.file_path.startswith(path_prefix):
                continue
            if _hidden(s.file_path, excluded, scope):
                continue
            s.combined_score = round(float(score), 4)
            candidates.append(s)

        candidates.sort(key=lambda s: (-s.combined_score, s.file_path))
        return candidates[:limit]

    # ── trends ────────────────────────────────────────────────────

    def get_trends(self, path: str, window: str = "monthly", limit: int = 12) -> list[TrendPeriod]:
        return query_trends(self.conn, path, window, limit)

    def get_trend_summary(
        self, path: str, window: str = "monthly", limit: int = 12
    ) -> tuple[list[TrendPeriod], Optional[TrendSummary]]:
        periods = self.get_trends(path, window, limit)
        return periods, compute_trend(periods)
