"""Tests for persistence/search.py - FTS over enriched commits."""

import pytest
from conftest import make_commit, make_hash

from gitmem.exceptions import InvalidQueryError


@pytest.fixture
def indexed(commits, search):
    messages = [
        ("parser.py", "Fix crash in tokenizer"),
        ("parser.py", "Rework parser state machine"),
        ("README.md", "Document parser usage"),
        ("cli.py", "Unclassified parser tweak"),
    ]
    commits.insert_raw_commits(
        [
            make_commit(i, [path], message=msg, committed_at=f"2024-0{i}-01T00:00:00+00:00")
            for i, (path, msg) in enumerate(messages, 1)
        ]
    )
    commits.apply_results(
        [
            (make_hash(1), "bug-fix", "Guards the tokenizer against empty input."),
            (make_hash(2), "refactor", "Splits the parser into smaller states."),
            (make_hash(3), "docs", "Adds a usage section to the README."),
        ],
        "m",
    )
    search.rebuild()
    return search


class TestRebuild:
    def test_only_enriched_commits_are_indexed(self, commits, search):
        commits.insert_raw_commits([make_commit(1, ["a.py"]), make_commit(2, ["b.py"])])
        commits.apply_results([(make_hash(1), "chore", "Bumps deps.")], "m")
        assert search.rebuild() == 1

    def test_rebuild_replaces_contents(self, indexed):
        assert indexed.rebuild() == 3
        assert indexed.rebuild() == 3


class TestSearch:
    def test_matches_message_and_summary(self, indexed):
        hits = indexed.search("tokenizer")
        assert [h.hash for h in hits] == [make_hash(1)]
        assert hits[0].classification == "bug-fix"

    def test_unenriched_commits_not_returned(self, indexed):
        hashes = {h.hash for h in indexed.search("parser")}
        assert make_hash(4) not in hashes
        assert make_hash(2) in hashes

    def test_column_filter(self, indexed):
        hits = indexed.search("classification:refactor AND parser")
        assert [h.hash for h in hits] == [make_hash(2)]

    def test_limit(self, indexed):
        assert len(indexed.search("parser", limit=1)) == 1

    def test_no_match(self, indexed):
        assert indexed.search("nonexistentword") == []

    @pytest.mark.parametrize("query", ["", "   ", '"unbalanced', "AND OR"])
    def test_invalid_queries(self, indexed, query):
        with pytest.raises(InvalidQueryError):
            indexed.search(query)
