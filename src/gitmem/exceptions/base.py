"""Base exception for gitmem."""

from typing import Dict, Optional


class GitmemError(Exception):
    """Base exception for all gitmem errors.

    Subclasses set ``code`` (a stable machine-readable tag used by
    ``--format json``) and ``exit_code`` (the process exit status the CLI
    returns). ``hint`` is an optional next step shown to the user.
    """

    code: str = "GITMEM_ERROR"
    exit_code: int = 1

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, str]] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.hint = hint

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        if self.hint:
            payload["hint"] = self.hint
        return payload
