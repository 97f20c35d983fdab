"""Read commit history, diffs and file snapshots from git via subprocess."""

import re
import subprocess
from pathlib import Path
from typing import Iterable, Optional

from ..exceptions import GitError
from ..logging_config import get_logger
from .models import Commit, CommitFile

logger = get_logger(__name__)

DEFAULT_MAX_DIFF_CHARS = 12000
TRUNCATION_MARKER = "\n... [truncated]"

# Hashes passed on the command line per git call, to stay under ARG_MAX
_ARG_CHUNK = 500
_RECORD_DELIM = "---GITMEM_RECORD---"
_HASH_LINE_RE = re.compile(r"^[0-9a-f]{40}$")
_DIFF_SECTION_RE = re.compile(r"(?=^diff --git )", re.MULTILINE)
_HASH_SPLIT_RE = re.compile(r"^([0-9a-f]{40})$", re.MULTILINE)


def truncate_diff(diff: str, max_chars: int = DEFAULT_MAX_DIFF_CHARS) -> str:
    """Shrink a unified diff to roughly ``max_chars`` while keeping every file visible.

    The diff is split into per-file sections. Sections no larger than an
    equal share of the budget are kept whole; the budget they leave over
    is divided evenly among the oversized sections, each of which is cut
    and marked ``... [truncated]``.
    """
    if len(diff) <= max_chars:
        return diff

    sections = [s for s in _DIFF_SECTION_RE.split(diff) if s]
    if len(sections) <= 1:
        return diff[:max_chars] + TRUNCATION_MARKER

    equal_share = max_chars // len(sections)
    remaining = max_chars
    fits = []
    for section in sections:
        small = len(section) <= equal_share
        fits.append(small)
        if small:
            remaining -= len(section)

    oversized = fits.count(False)
    per_oversized = remaining // oversized if oversized else 0
    keep = max(0, per_oversized - len(TRUNCATION_MARKER))

    return "".join(
        section if fit else section[:keep] + TRUNCATION_MARKER
        for section, fit in zip(sections, fits)
    )


def _parse_stat_count(value: str) -> int:
    # Binary files report "-" for both counts
    return 0 if value == "-" else int(value)


class GitExtractor:
    """Read-only access to one git working tree."""

    def __init__(self, repo_path: str, max_diff_chars: int = DEFAULT_MAX_DIFF_CHARS):
        self.repo_path = str(Path(repo_path).resolve())
        self.max_diff_chars = max_diff_chars

    # ── plumbing ──────────────────────────────────────────────────

    def _run(self, args: list[str], input: Optional[str] = None) -> str:
        cmd = ["git", "-C", self.repo_path, *args]
        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            raise GitError("git executable not found", command=" ".join(args[:2]))

        if result.returncode != 0:
            raise GitError(
                f"git {args[0]} failed (exit {result.returncode})",
                command=" ".join(args[:2]),
                stderr=result.stderr,
            )
        return result.stdout

    # ── repository ────────────────────────────────────────────────

    def is_git_repo(self) -> bool:
        try:
            result = subprocess.run(
                ["git", "-C", self.repo_path, "rev-parse", "--is-inside-work-tree"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            return result.returncode == 0
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return False

    def default_branch(self) -> str:
        """Remote HEAD if there is one, else main/master, else the current branch."""
        try:
            ref = self._run(["symbolic-ref", "refs/remotes/origin/HEAD"]).strip()
            return ref.replace("refs/remotes/origin/", "")
        except GitError:
            pass

        for branch in ("main", "master"):
            try:
                self._run(["rev-parse", "--verify", "--quiet", branch])
                return branch
            except GitError:
                continue

        return self._run(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def tracked_files(self) -> set[str]:
        return {path for path in self._run(["ls-files", "-z"]).split("\0") if path}

    # ── commits ───────────────────────────────────────────────────

    def list_commit_hashes(self, branch: Optional[str] = None, since: Optional[str] = None) -> list[str]:
        """Commit hashes reachable from ``branch``, newest first."""
        args = ["log", branch or self.default_branch(), "--format=%H"]
        if since:
            args.append(f"--since={since}")
        return [h for h in self._run(args).split("\n") if h]

    def list_commits(self, since: Optional[str] = None, hashes: Optional[list[str]] = None) -> list[Commit]:
        """Metadata and changed files for ``hashes`` (default: all on the default branch).

        Returned in the order of ``hashes``. Merge commits come back with an
        empty file list since ``diff-tree`` reports no changes for them.
        """
        if hashes is None:
            hashes = self.list_commit_hashes(since=since)
        if not hashes:
            return []

        by_hash: dict[str, Commit] = {}
        fmt = f"{_RECORD_DELIM}%n%H%n%an%n%ae%n%aI%n%B"
        for i in range(0, len(hashes), _ARG_CHUNK):
            chunk = hashes[i : i + _ARG_CHUNK]
            raw = self._run(["log", "--no-walk=unsorted", f"--format={fmt}", *chunk])
            for commit in self._parse_log_records(raw):
                by_hash[commit.hash] = commit

        files = self._files_by_commit(hashes)
        for h, commit in by_hash.items():
            commit.files = files.get(h, [])

        return [by_hash[h] for h in hashes if h in by_hash]

    def _parse_log_records(self, raw: str) -> list[Commit]:
        commits = []
        for record in raw.split(_RECORD_DELIM):
            record = record.strip()
            if not record:
                continue
            lines = record.split("\n")
            if len(lines) < 4 or not _HASH_LINE_RE.match(lines[0]):
                logger.warning("Skipping malformed git log record: %r", record[:80])
                continue
            commits.append(
                Commit(
                    hash=lines[0],
                    author_name=lines[1],
                    author_email=lines[2],
                    committed_at=lines[3],
                    message="\n".join(lines[4:]).strip(),
                )
            )
        return commits

    def _files_by_commit(self, hashes: list[str]) -> dict[str, list[CommitFile]]:
        """numstat + name-status for many commits in two ``diff-tree --stdin`` calls.

        Output is NUL-delimited (``-z``) so paths come back verbatim; without
        it git C-quotes paths with non-ASCII or special characters.
        """
        stdin = "\n".join(hashes) + "\n"
        numstat = self._run(["diff-tree", "--stdin", "--root", "-r", "-z", "--numstat"], input=stdin)
        status = self._run(["diff-tree", "--stdin", "--root", "-r", "-z", "--name-status"], input=stdin)

        # name-status records are "<status>\0<path>\0", each commit led by "<hash>\0"
        change_types: dict[str, dict[str, str]] = {}
        current: Optional[str] = None
        fields = status.split("\0")
        i = 0
        while i < len(fields):
            field = fields[i].strip("\n")
            if _HASH_LINE_RE.match(field):
                current = field
                change_types.setdefault(current, {})
                i += 1
            elif current and field and i + 1 < len(fields):
                change_types[current][fields[i + 1]] = field[:1]
                i += 2
            else:
                i += 1

        # numstat records are "<added>\t<deleted>\t<path>\0"
        result: dict[str, list[CommitFile]] = {}
        current = None
        for field in numstat.split("\0"):
            if "\t" not in field:
                field = field.strip("\n")
                if _HASH_LINE_RE.match(field):
                    current = field
                    result.setdefault(current, [])
                continue
            if current is None:
                continue
            parts = field.lstrip("\n").split("\t", 2)
            if len(parts) < 3:
                continue
            path = parts[2]
            result[current].append(
                CommitFile(
                    path=path,
                    change_type=change_types.get(current, {}).get(path, "M"),
                    additions=_parse_stat_count(parts[0]),
                    deletions=_parse_stat_count(parts[1]),
                )
            )
        return result

    # ── diffs ─────────────────────────────────────────────────────

    def get_diff(self, commit_hash: str) -> str:
        raw = self._run(["diff-tree", "--root", "-p", "--no-commit-id", commit_hash])
        return truncate_diff(raw, self.max_diff_chars)

    def get_diff_batch(self, hashes: Iterable[str]) -> dict[str, str]:
        """Truncated diffs for many commits in one process. Missing hashes map to ''."""
        hashes = list(hashes)
        if not hashes:
            return {}

        raw = self._run(["diff-tree", "--stdin", "--root", "-p"], input="\n".join(hashes) + "\n")
        parts = _HASH_SPLIT_RE.split(raw)
        # ['', hash1, diff1, hash2, diff2, ...]
        diffs: dict[str, str] = {}
        for i in range(1, len(parts) - 1, 2):
            diffs[parts[i]] = truncate_diff(parts[i + 1].lstrip("\n"), self.max_diff_chars)

        for h in hashes:
            diffs.setdefault(h, "")
        return diffs

    # ── file snapshots ────────────────────────────────────────────

    def get_file_contents_batch(self, entries: list[tuple[str, str]]) -> dict[tuple[str, str], bytes]:
        """Contents of ``(commit_hash, path)`` blobs via ``git cat-file --batch``.

        Entries that git reports as missing are absent from the result.
        """
        if not entries:
            return {}

        stdin = "".join(f"{h}:{path}\n" for h, path in entries).encode("utf-8")
        try:
            proc = subprocess.run(
                ["git", "-C", self.repo_path, "cat-file", "--batch"],
                input=stdin,
                capture_output=True,
            )
        except FileNotFoundError:
            raise GitError("git executable not found", command="cat-file --batch")
        if proc.returncode != 0:
            raise GitError(
                "git cat-file failed",
                command="cat-file --batch",
                stderr=proc.stderr.decode("utf-8", "replace"),
            )

        out = proc.stdout
        result: dict[tuple[str, str], bytes] = {}
        offset = 0
        for entry in entries:
            newline = out.find(b"\n", offset)
            if newline == -1:
                break
            header = out[offset:newline].decode("utf-8", "replace")
            if header.endswith(" missing") or header.endswith(" ambiguous"):
                offset = newline + 1
                continue
            size = int(header.rsplit(" ", 1)[-1])
            start = newline + 1
            result[entry] = out[start : start + size]
            # Skip blob and its trailing newline
            offset = start + size + 1
        return result
