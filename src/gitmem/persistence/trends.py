"""Time-bucketed change history and trend direction for a file or directory."""

import sqlite3
from typing import Optional

from ..exceptions import InvalidQueryError
from .models import TrendPeriod, TrendSummary

# SQL expressions that label a commit's time bucket
WINDOW_FORMATS = {
    "weekly": "strftime('%Y-W%W', c.committed_at)",
    "monthly": "strftime('%Y-%m', c.committed_at)",
    "quarterly": (
        "strftime('%Y', c.committed_at) || '-Q' || "
        "((CAST(strftime('%m', c.committed_at) AS INTEGER) - 1) / 3 + 1)"
    ),
}

# Recent/historical ratio outside this band counts as a change in direction
INCREASING_RATIO = 1.2
DECREASING_RATIO = 0.8


def query_trends(
    conn: sqlite3.Connection, path: str, window: str = "monthly", limit: int = 12
) -> list[TrendPeriod]:
    """Per-period change counts for ``path``, most recent period first.

    ``path`` ending in ``/`` selects every file under that directory.
    Change counts include every commit; classification counts only include
    enriched commits.
    """
    window_sql = WINDOW_FORMATS.get(window)
    if window_sql is None:
        raise InvalidQueryError(window, f"window must be one of {', '.join(WINDOW_FORMATS)}")

    if path.endswith("/"):
        match = "substr(cf.file_path, 1, length(?)) = ?"
        params: tuple = (path, path, limit)
    else:
        match = "cf.file_path = ?"
        params = (path, limit)

    rows = conn.execute(
        f"""
        SELECT
            {window_sql} AS period,
            COUNT(DISTINCT cf.commit_hash) AS total_changes,
            COUNT(DISTINCT CASE WHEN c.classification = 'bug-fix' THEN cf.commit_hash END) AS bug_fix_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'feature' THEN cf.commit_hash END) AS feature_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'refactor' THEN cf.commit_hash END) AS refactor_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'docs' THEN cf.commit_hash END) AS docs_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'chore' THEN cf.commit_hash END) AS chore_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'perf' THEN cf.commit_hash END) AS perf_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'test' THEN cf.commit_hash END) AS test_count,
            COUNT(DISTINCT CASE WHEN c.classification = 'style' THEN cf.commit_hash END) AS style_count,
            COALESCE(SUM(cf.additions), 0) AS additions,
            COALESCE(SUM(cf.deletions), 0) AS deletions,
            AVG(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END) AS avg_complexity,
            MAX(CASE WHEN cf.indent_complexity > 0 THEN cf.indent_complexity END) AS max_complexity,
            AVG(CASE WHEN cf.lines_of_code > 0 THEN cf.lines_of_code END) AS avg_loc
        FROM commit_files cf
        JOIN commits c ON c.hash = cf.commit_hash
        WHERE {match}
        GROUP BY period
        ORDER BY period DESC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [TrendPeriod(**dict(r)) for r in rows]


def _direction(recent: float, historical: float) -> str:
    if historical == 0:
        return "increasing" if recent > 0 else "stable"
    ratio = recent / historical
    if ratio > INCREASING_RATIO:
        return "increasing"
    if ratio < DECREASING_RATIO:
        return "decreasing"
    return "stable"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def compute_trend(periods: list[TrendPeriod]) -> Optional[TrendSummary]:
    """Compare recent periods against older ones.

    ``periods`` must be most recent first. With fewer than six periods the
    newer half counts as recent, otherwise the newest three do. Returns
    None for fewer than two periods.
    """
    if len(periods) < 2:
        return None

    recent_count = len(periods) // 2 if len(periods) < 6 else 3
    recent = periods[:recent_count]
    historical = periods[recent_count:]

    recent_avg = _mean([p.total_changes for p in recent])
    historical_avg = _mean([p.total_changes for p in historical])

    recent_bugs = _mean([p.bug_fix_count for p in recent])
    historical_bugs = _mean([p.bug_fix_count for p in historical])

    recent_cx = _mean([p.avg_complexity for p in recent if p.avg_complexity is not None])
    historical_cx = _mean([p.avg_complexity for p in historical if p.avg_complexity is not None])

    return TrendSummary(
        direction=_direction(recent_avg, historical_avg),
        recent_avg=round(recent_avg, 1),
        historical_avg=round(historical_avg, 1),
        bug_fix_trend=_direction(recent_bugs, historical_bugs),
        complexity_trend=_direction(recent_cx, historical_cx),
    )
