"""Full-text search over enriched commit messages, classifications and summaries."""

import sqlite3

from ..exceptions import InvalidQueryError
from ..logging_config import get_logger
from .database import IndexDB
from .models import SearchHit

logger = get_logger(__name__)


class SearchIndex:
    """FTS5 index rebuilt from ``commits`` after each enrichment pass."""

    def __init__(self, db: IndexDB) -> None:
        self.db = db

    def rebuild(self) -> int:
        """Replace the index contents with every enriched commit. Returns rows indexed."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM commits_fts")
            conn.execute(
                """
                INSERT INTO commits_fts (hash, message, classification, summary)
                SELECT hash, message, classification, COALESCE(summary, '')
                FROM commits
                WHERE enriched_at IS NOT NULL
                """
            )
            count = conn.execute("SELECT COUNT(*) FROM commits_fts").fetchone()[0]
        logger.info("Search index rebuilt with %d commits", count)
        return count

    def search(self, query: str, limit: int = 20) -> list[SearchHit]:
        """Best matches first (bm25).

        Raises:
            InvalidQueryError: if ``query`` is not valid FTS5 syntax.
        """
        if not query.strip():
            raise InvalidQueryError(query, "query is empty")
        try:
            rows = self.db.conn.execute(
                """
                SELECT c.hash, c.message, c.classification, c.summary,
                       c.committed_at, c.author_name, bm25(commits_fts) AS rank
                FROM commits_fts
                JOIN commits c ON c.hash = commits_fts.hash
                WHERE commits_fts MATCH ?
                ORDER BY rank, c.committed_at DESC
                LIMIT ?
                """,
                (query, limit),
            ).fetchall()
        except sqlite3.OperationalError as e:
            raise InvalidQueryError(query, str(e)) from e
        return [SearchHit(**dict(r)) for r in rows]
