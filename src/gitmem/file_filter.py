"""File categories used to hide noise from hotspot and coupling queries.

A path can belong to several categories at once (``docs/api.test.md`` is
both test and docs). Categories are matched on the repository-relative
path only; file contents are never read here.

A :class:`Scope` narrows queries further with user path patterns.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

TEST = "test"
DOCS = "docs"
GENERATED = "generated"

DEFAULT_EXCLUDED: tuple[str, ...] = (TEST, DOCS, GENERATED)

_TEST_DIRS = ("__tests__/", "test/", "tests/", "spec/")
_DOCS_DIRS = ("docs/",)
_TEST_SUFFIX_RE = re.compile(r"_(test|spec)\.[^.]+$")

GENERATED_FILENAMES = frozenset(
    {
        "package-lock.json",
        "yarn.lock",
        "bun.lockb",
        "pnpm-lock.yaml",
        "Gemfile.lock",
        "Cargo.lock",
        "composer.lock",
        "poetry.lock",
        "go.sum",
    }
)
GENERATED_EXTENSIONS = (".min.js", ".min.css", ".map", ".lock")


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def _in_dir(path: str, dirs: tuple[str, ...]) -> bool:
    return any(path.startswith(d) or f"/{d}" in path for d in dirs)


def is_test(path: str) -> bool:
    name = _basename(path)
    if ".test." in name or ".spec." in name or _TEST_SUFFIX_RE.search(name):
        return True
    return _in_dir(path, _TEST_DIRS)


def is_docs(path: str) -> bool:
    if path.endswith((".md", ".mdx")):
        return True
    return _in_dir(path, _DOCS_DIRS)


def is_generated(path: str) -> bool:
    """Lockfiles, minified bundles and source maps."""
    if _basename(path) in GENERATED_FILENAMES:
        return True
    return path.endswith(GENERATED_EXTENSIONS)


_CHECKS = {
    TEST: is_test,
    DOCS: is_docs,
    GENERATED: is_generated,
}


def is_excluded(path: str, categories: Iterable[str] = DEFAULT_EXCLUDED) -> bool:
    """Return True if ``path`` falls in any of ``categories``."""
    return any(_CHECKS[c](path) for c in categories)


def resolve_excluded(
    include_tests: bool = False,
    include_docs: bool = False,
    include_generated: bool = False,
    include_all: bool = False,
    base: Iterable[str] = DEFAULT_EXCLUDED,
) -> tuple[str, ...]:
    """Turn CLI ``--include-*`` flags into the set of categories to exclude."""
    if include_all:
        return ()
    dropped = set()
    if include_tests:
        dropped.add(TEST)
    if include_docs:
        dropped.add(DOCS)
    if include_generated:
        dropped.add(GENERATED)
    return tuple(c for c in base if c not in dropped)


# ── scope ─────────────────────────────────────────────────────────


def normalize_pattern(pattern: str) -> str:
    """Strip a leading ``./`` or ``/`` from a user-supplied pattern."""
    if pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern.lstrip("/")


def _dedupe(patterns: Iterable[str]) -> tuple[str, ...]:
    normalized = (normalize_pattern(p) for p in patterns)
    return tuple(dict.fromkeys(p for p in normalized if p))


def _pattern_regex(pattern: str) -> re.Pattern:
    return re.compile(re.escape(pattern).replace(r"\*", ".*"))


def _pattern_glob(pattern: str) -> str:
    """SQLite GLOB equivalent of a scope pattern."""
    escaped = pattern.replace("[", "[[]").replace("?", "[?]")
    return escaped if "*" in pattern else escaped + "*"


def matches_pattern(path: str, pattern: str) -> bool:
    """A pattern without ``*`` is a path prefix; ``*`` matches any characters, ``/`` included."""
    if "*" not in pattern:
        return path.startswith(pattern)
    return _pattern_regex(pattern).fullmatch(path) is not None


@dataclass(frozen=True)
class Scope:
    """Path patterns that limit which files a query sees.

    A path is in scope when it matches at least one ``include`` pattern
    (or ``include`` is empty) and no ``exclude`` pattern.
    """

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.include and not self.exclude

    def matches(self, path: str) -> bool:
        if self.include and not any(matches_pattern(path, p) for p in self.include):
            return False
        return not any(matches_pattern(path, p) for p in self.exclude)

    def sql(self, column: str) -> tuple[str, list[str]]:
        """``AND``-joined WHERE fragment over ``column`` and its parameters; ``""`` when empty."""
        conditions = []
        params: list[str] = []
        if self.include:
            conditions.append("(" + " OR ".join(f"{column} GLOB ?" for _ in self.include) + ")")
            params.extend(_pattern_glob(p) for p in self.include)
        for p in self.exclude:
            conditions.append(f"{column} NOT GLOB ?")
            params.append(_pattern_glob(p))
        return " AND ".join(conditions), params

    def to_dict(self) -> dict:
        return {"include": list(self.include), "exclude": list(self.exclude)}


def resolve_scope(
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    include_all: bool = False,
    base: Scope = Scope(),
) -> Scope:
    """Merge ``--include`` / ``--exclude`` / ``--all`` flags over the configured scope.

    ``--include`` replaces the configured includes, ``--exclude`` adds to
    the configured excludes and ``--all`` drops the configured scope.
    """
    if include_all:
        base = Scope()
    return Scope(
        include=_dedupe(include) if include else _dedupe(base.include),
        exclude=_dedupe([*base.exclude, *(exclude or ())]),
    )
