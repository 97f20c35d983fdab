"""Cross-process write lock for the ``.gitmem`` index directory.

The lock is a marker file created with ``O_CREAT | O_EXCL`` so two
processes can never both believe they hold it. It records the holder's
pid, hostname and creation time. A lock left behind by a crashed process
is never removed automatically: ``is_stale()`` reports it and
``force_release()`` (``gitmem unlock``) clears it on request.
"""

from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .exceptions import LockHeldError
from .logging_config import get_logger

logger = get_logger(__name__)

LOCK_FILENAME = "index.lock"


@dataclass
class LockInfo:
    """Contents of the lock file."""

    pid: int
    created_at: str
    hostname: str

    def to_dict(self) -> dict:
        return {"pid": self.pid, "created_at": self.created_at, "hostname": self.hostname}

    @classmethod
    def from_dict(cls, data: dict) -> LockInfo:
        return cls(
            pid=int(data["pid"]),
            created_at=str(data["created_at"]),
            hostname=str(data.get("hostname", "")),
        )

    @property
    def age_seconds(self) -> Optional[float]:
        try:
            created = datetime.fromisoformat(self.created_at)
        except ValueError:
            return None
        return (datetime.now(timezone.utc) - created).total_seconds()


@dataclass
class LockHandle:
    """Proof of acquisition, passed back to ``release``."""

    path: Path
    info: LockInfo


def _is_process_alive(pid: int) -> bool:
    """Check if a process with the given PID is still running."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False


class WriteLock:
    """Exclusive writer lock over an index directory.

    Usage::

        with WriteLock(index_dir):
            orchestrator.run_cycle(callback)
    """

    def __init__(self, index_dir: Path) -> None:
        self.path: Path = Path(index_dir) / LOCK_FILENAME
        self._handle: Optional[LockHandle] = None

    def acquire(self) -> LockHandle:
        """Create the lock file or raise ``LockHeldError`` if it exists."""
        info = LockInfo(
            pid=os.getpid(),
            created_at=datetime.now(timezone.utc).isoformat(),
            hostname=socket.gethostname(),
        )
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            holder = self.read()
            raise LockHeldError(
                str(self.path),
                pid=holder.pid if holder else None,
                age_seconds=holder.age_seconds if holder else None,
            )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(json.dumps(info.to_dict()) + "\n")
        except BaseException:
            # a lock file always carries its holder record
            self.path.unlink(missing_ok=True)
            raise

        logger.debug("Acquired write lock %s (pid %d)", self.path, info.pid)
        return LockHandle(path=self.path, info=info)

    def release(self, handle: LockHandle) -> None:
        """Remove the lock file. A lock already removed externally is not an error."""
        try:
            handle.path.unlink()
            logger.debug("Released write lock %s", handle.path)
        except FileNotFoundError:
            logger.debug("Write lock %s was already gone", handle.path)

    def read(self) -> Optional[LockInfo]:
        """Return the current holder, or None if unlocked or unreadable."""
        try:
            data = json.loads(self.path.read_text())
            return LockInfo.from_dict(data)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed lock file at %s: %s", self.path, exc)
            return None

    def is_locked(self) -> bool:
        return self.path.exists()

    def is_stale(self) -> bool:
        """True if the lock exists and its holder is a dead process on this host.

        A lock from another host, or one whose contents cannot be read, is
        never reported stale since its holder cannot be checked.
        """
        info = self.read()
        if info is None:
            return False
        if info.hostname != socket.gethostname():
            return False
        return not _is_process_alive(info.pid)

    def force_release(self) -> bool:
        """Remove the lock file regardless of holder. Returns True if one was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.warning("Force-released write lock %s", self.path)
        return True

    def __enter__(self) -> LockHandle:
        self._handle = self.acquire()
        return self._handle

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._handle is not None:
            self.release(self._handle)
            self._handle = None


def format_lock_age(info: LockInfo) -> str:
    """Human-readable age of a lock, e.g. ``'3m 12s'``."""
    age = info.age_seconds
    if age is None:
        return "unknown"
    minutes, seconds = divmod(int(max(age, 0)), 60)
    return f"{minutes}m {seconds}s" if minutes else f"{seconds}s"
