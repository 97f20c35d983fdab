"""Exception hierarchy for gitmem."""

from .base import GitmemError
from .config import (
    ConfigurationError,
    InvalidConfigError,
    MissingCredentialsError,
)
from .enrichment import (
    DuplicateSubmissionError,
    ParseError,
    ServiceError,
)
from .repository import (
    GitError,
    InvalidQueryError,
    LockHeldError,
    NotFoundError,
    NotInitializedError,
)

__all__ = [
    "GitmemError",
    "ConfigurationError",
    "InvalidConfigError",
    "MissingCredentialsError",
    "NotInitializedError",
    "NotFoundError",
    "GitError",
    "LockHeldError",
    "InvalidQueryError",
    "ServiceError",
    "ParseError",
    "DuplicateSubmissionError",
]
