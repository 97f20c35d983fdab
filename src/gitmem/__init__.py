"""
gitmem - Git history memory for codebases

Indexes a repository's commit history, enriches each commit with an
AI-derived classification and summary, and materializes file hotspots,
co-change coupling and trends for query.
"""

__version__ = "0.1.0"

from .config import GitmemConfig, load_config
from .exceptions import GitmemError

__all__ = [
    "GitmemConfig",
    "GitmemError",
    "load_config",
]
