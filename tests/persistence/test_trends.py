"""Tests for persistence/trends.py - period buckets and trend direction."""

import pytest
from conftest import make_commit, make_hash

from gitmem.exceptions import InvalidQueryError
from gitmem.persistence.models import TrendPeriod
from gitmem.persistence.trends import compute_trend, query_trends


def _seed(commits, dated_files):
    commits.insert_raw_commits(
        [make_commit(i, files, committed_at=ts) for i, (ts, files) in enumerate(dated_files, 1)]
    )


class TestQueryTrends:
    @pytest.fixture
    def history(self, commits):
        _seed(
            commits,
            [
                ("2024-01-05T09:00:00+00:00", ["src/a.py"]),
                ("2024-01-20T09:00:00+00:00", ["src/a.py", "src/b.py"]),
                ("2024-02-11T09:00:00+00:00", ["src/b.py"]),
                ("2024-04-02T09:00:00+00:00", ["src/a.py"]),
            ],
        )
        commits.apply_results([(make_hash(2), "bug-fix", "fix")], "m")
        return commits

    def test_monthly_most_recent_first(self, history, db):
        periods = query_trends(db.conn, "src/a.py", "monthly")
        assert [(p.period, p.total_changes) for p in periods] == [("2024-04", 1), ("2024-01", 2)]
        assert periods[1].bug_fix_count == 1

    def test_quarterly(self, history, db):
        periods = query_trends(db.conn, "src/a.py", "quarterly")
        assert [(p.period, p.total_changes) for p in periods] == [("2024-Q2", 1), ("2024-Q1", 2)]

    def test_directory_prefix(self, history, db):
        periods = query_trends(db.conn, "src/", "monthly")
        # commit 2 touches both files but counts once
        assert [(p.period, p.total_changes) for p in periods] == [
            ("2024-04", 1),
            ("2024-02", 1),
            ("2024-01", 2),
        ]

    def test_limit(self, history, db):
        assert len(query_trends(db.conn, "src/", "monthly", limit=2)) == 2

    def test_unknown_window(self, db):
        with pytest.raises(InvalidQueryError):
            query_trends(db.conn, "src/a.py", "daily")

    def test_summary_through_engine(self, history, aggregates):
        periods, summary = aggregates.get_trend_summary("src/a.py")
        assert len(periods) == 2
        assert summary is not None
        # one recent period (1 change) against one older (2 changes)
        assert summary.direction == "decreasing"


class TestComputeTrend:
    def test_too_few_periods(self):
        assert compute_trend([TrendPeriod("2024-01", total_changes=4)]) is None

    def test_increasing(self):
        periods = [
            TrendPeriod("2024-04", total_changes=9, bug_fix_count=3),
            TrendPeriod("2024-03", total_changes=7, bug_fix_count=2),
            TrendPeriod("2024-02", total_changes=2, bug_fix_count=2),
            TrendPeriod("2024-01", total_changes=2, bug_fix_count=3),
        ]
        summary = compute_trend(periods)
        assert summary.direction == "increasing"
        assert summary.recent_avg == 8.0
        assert summary.historical_avg == 2.0
        assert summary.bug_fix_trend == "stable"
        assert summary.complexity_trend == "stable"

    def test_six_periods_uses_latest_three(self):
        counts = [1, 1, 1, 5, 5, 5]
        periods = [TrendPeriod(f"2024-0{6 - i}", total_changes=n) for i, n in enumerate(counts)]
        summary = compute_trend(periods)
        assert summary.recent_avg == 1.0
        assert summary.direction == "decreasing"

    def test_from_zero_history(self):
        periods = [TrendPeriod("2024-02", total_changes=3), TrendPeriod("2024-01", total_changes=0)]
        assert compute_trend(periods).direction == "increasing"
