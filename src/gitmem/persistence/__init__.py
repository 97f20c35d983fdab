"""SQLite persistence for the commit index.

``commits``, ``commit_files`` and ``batch_jobs`` are the source of truth.
``file_stats``, ``file_contributors``, ``file_coupling`` and the FTS index
are derived and rebuilt from them.
"""

from .aggregates import AggregateEngine
from .batch_jobs import BatchJobStore
from .commits import CommitStore
from .database import IndexDB, index_dir_for
from .search import SearchIndex

__all__ = [
    "AggregateEngine",
    "BatchJobStore",
    "CommitStore",
    "IndexDB",
    "SearchIndex",
    "index_dir_for",
]
