"""Repository and index exceptions: git access, index state, locking, queries."""

from typing import Optional

from .base import GitmemError


class NotInitializedError(GitmemError):
    """Raised when a command needs an index that has not been created."""

    code = "NOT_INITIALIZED"
    exit_code = 3

    def __init__(self, index_dir: str):
        super().__init__(
            "gitmem is not initialized in this repository",
            details={"index_dir": index_dir},
            hint="Run `gitmem init` first",
        )
        self.index_dir = index_dir


class NotFoundError(GitmemError):
    """Raised when a requested file or directory has no indexed history."""

    code = "NOT_FOUND"
    exit_code = 4

    def __init__(self, what: str, hint: Optional[str] = None):
        super().__init__(f"No indexed history for {what}", details={"path": what}, hint=hint)
        self.what = what


class GitError(GitmemError):
    """Raised when git is missing, the path is not a repository, or a git call fails."""

    code = "GIT_ERROR"
    exit_code = 5

    def __init__(self, message: str, command: Optional[str] = None, stderr: str = ""):
        details = {}
        if command:
            details["command"] = command
        if stderr:
            details["stderr"] = stderr.strip()
        super().__init__(message, details=details)
        self.command = command
        self.stderr = stderr


class LockHeldError(GitmemError):
    """Raised when another process holds the index write lock."""

    code = "LOCK_ERROR"
    exit_code = 6

    def __init__(self, lock_path: str, pid: Optional[int] = None, age_seconds: Optional[float] = None):
        details = {"lock": lock_path}
        if pid is not None:
            details["pid"] = str(pid)
        if age_seconds is not None:
            details["age"] = f"{int(age_seconds)}s"
        super().__init__(
            "Another gitmem process is writing to this index",
            details=details,
            hint="Wait for it to finish, or run `gitmem unlock` if that process is gone",
        )
        self.lock_path = lock_path
        self.pid = pid
        self.age_seconds = age_seconds


class InvalidQueryError(GitmemError):
    """Raised for malformed search queries or unknown sort/window names."""

    code = "INVALID_QUERY"
    exit_code = 2

    def __init__(self, query: str, reason: str):
        super().__init__(f"Invalid query: {query}", details={"reason": reason})
        self.query = query
        self.reason = reason
