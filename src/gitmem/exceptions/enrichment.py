"""Enrichment exceptions: classification service calls and result handling."""

from typing import Iterable, Optional

from .base import GitmemError


class ServiceError(GitmemError):
    """Raised when a submit, poll or fetch call to the classification service fails.

    Recoverable: job state is left as it was and the next cycle retries.
    """

    code = "SERVICE_ERROR"
    exit_code = 7

    def __init__(self, operation: str, reason: str, job_id: Optional[str] = None):
        details = {"operation": operation, "reason": reason}
        if job_id:
            details["job_id"] = job_id
        super().__init__(
            f"Classification service {operation} failed",
            details=details,
            hint="Re-run `gitmem index` to retry",
        )
        self.operation = operation
        self.reason = reason
        self.job_id = job_id


class ParseError(GitmemError):
    """Raised when a single classification result cannot be interpreted."""

    code = "PARSE_ERROR"
    exit_code = 8

    def __init__(self, text: str, reason: str):
        super().__init__(f"Failed to parse response: {text}", details={"reason": reason})
        self.text = text
        self.reason = reason


class DuplicateSubmissionError(GitmemError):
    """Raised when a new batch job would include a commit already in an open job."""

    code = "DUPLICATE_SUBMISSION"
    exit_code = 9

    def __init__(self, hashes: Iterable[str], open_job_id: str):
        hashes = sorted(hashes)
        preview = ", ".join(h[:7] for h in hashes[:5])
        if len(hashes) > 5:
            preview += f", ... ({len(hashes)} total)"
        super().__init__(
            "Commits are already part of an open batch job",
            details={"job_id": open_job_id, "commits": preview},
        )
        self.hashes = hashes
        self.open_job_id = open_job_id
