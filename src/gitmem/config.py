"""Configuration loading and management for gitmem.

Configuration sources are merged in priority order (lowest to highest):
    1. Defaults (defined in GitmemConfig)
    2. Index config (``.gitmem/config.toml``, written by ``gitmem init``)
    3. Explicit config file (if given)
    4. Environment variables (``GITMEM_*`` prefix)
    5. CLI overrides (passed as kwargs)

Example:
    >>> config = load_config(Path(".gitmem"), index_model="claude-sonnet-4-5")
    >>> config.ai_enabled
    True
"""

from __future__ import annotations

import datetime
import json
import os
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import InvalidConfigError, MissingCredentialsError
from .file_filter import Scope

CONFIG_FILENAME = "config.toml"
API_KEY_ENV = "ANTHROPIC_API_KEY"

DEFAULT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_JUDGE_MODEL = "claude-sonnet-4-5-20250929"
FILE_CATEGORIES = ("test", "docs", "generated")


def _parse_date(value: str) -> datetime.date:
    return datetime.date.fromisoformat(value)


@dataclass(frozen=True)
class GitmemConfig:
    """Settings for discovery, enrichment and aggregation.

    Attributes:
        ai: ``True`` enriches every commit, ``False`` disables enrichment,
            a ``YYYY-MM-DD`` string enriches commits on or after that date.
        index_start_date: ``YYYY-MM-DD`` cutoff for discovery, ``None`` for
            all history.
        index_model: Model used for classification requests.
        max_batch_size: Upper bound on commits per submitted batch job.
        batch_mode: Use the asynchronous batch service; when false, commits
            are classified one request at a time during submission.
        retry_attempts: Attempts per request in direct mode.
        retry_delay_seconds: Base delay for exponential backoff in direct mode.
        max_diff_chars: Per-commit diff budget sent to the model.
        min_cochanges: Minimum co-changes for a pair to be kept.
        max_coupling_files_per_commit: Commits touching more files than this
            are ignored when counting coupling (bulk renames, reformats).
        excluded_categories: File categories hidden from hotspot and coupling
            queries by default.
        scope_include: Path patterns queries are limited to by default
            (a prefix, or a glob with ``*``); empty means every path.
        scope_exclude: Path patterns hidden from queries by default.
        judge_model: Model used by ``gitmem check`` to grade classifications.
    """

    ai: Union[bool, str] = True
    index_start_date: Optional[str] = None
    index_model: str = DEFAULT_MODEL

    # Enrichment
    max_batch_size: int = 10000
    batch_mode: bool = True
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    max_diff_chars: int = 12000

    # Aggregation
    min_cochanges: int = 1
    max_coupling_files_per_commit: int = 200
    excluded_categories: tuple[str, ...] = FILE_CATEGORIES
    scope_include: tuple[str, ...] = ()
    scope_exclude: tuple[str, ...] = ()

    # Quality checks
    judge_model: str = DEFAULT_JUDGE_MODEL

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if isinstance(self.ai, str):
            try:
                _parse_date(self.ai)
            except ValueError:
                raise ValueError(f"ai must be true, false or a YYYY-MM-DD date, got '{self.ai}'")
        elif not isinstance(self.ai, bool):
            raise ValueError("ai must be true, false or a YYYY-MM-DD date")

        if self.index_start_date is not None:
            try:
                _parse_date(self.index_start_date)
            except ValueError:
                raise ValueError(
                    f"index_start_date must be a YYYY-MM-DD date, got '{self.index_start_date}'"
                )

        if not self.index_model:
            raise ValueError("index_model must be a non-empty string")
        if not self.judge_model:
            raise ValueError("judge_model must be a non-empty string")

        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be non-negative")
        if self.max_diff_chars < 1:
            raise ValueError("max_diff_chars must be at least 1")

        if self.min_cochanges < 1:
            raise ValueError("min_cochanges must be at least 1")
        if self.max_coupling_files_per_commit < 2:
            raise ValueError("max_coupling_files_per_commit must be at least 2")

        unknown = set(self.excluded_categories) - set(FILE_CATEGORIES)
        if unknown:
            raise ValueError(
                f"excluded_categories has unknown entries {sorted(unknown)}; "
                f"valid: {', '.join(FILE_CATEGORIES)}"
            )

    @property
    def ai_enabled(self) -> bool:
        return self.ai is not False

    @property
    def ai_start_date(self) -> Optional[str]:
        """Enrichment cutoff date, or ``None`` when every commit is eligible."""
        return self.ai if isinstance(self.ai, str) else None

    @property
    def scope(self) -> Scope:
        """Configured default query scope."""
        return Scope(include=self.scope_include, exclude=self.scope_exclude)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["excluded_categories"] = list(self.excluded_categories)
        data["scope_include"] = list(self.scope_include)
        data["scope_exclude"] = list(self.scope_exclude)
        return data


def load_config(
    index_dir: Optional[Path] = None, config_file: Optional[Path] = None, **overrides
) -> GitmemConfig:
    """Load configuration with merging.

    Args:
        index_dir: The ``.gitmem`` directory; its ``config.toml`` is read if present
        config_file: Optional explicit config file path
        **overrides: Direct overrides (typically from CLI flags); ``None``
            values are ignored

    Returns:
        Validated GitmemConfig instance

    Raises:
        InvalidConfigError: If a config file is unreadable or a value is invalid
    """
    merged: dict[str, Any] = {}

    if index_dir is not None:
        index_config = Path(index_dir) / CONFIG_FILENAME
        if index_config.exists():
            merged.update(_load_toml_file(index_config))

    if config_file is not None:
        if not config_file.exists():
            raise InvalidConfigError("config_file", config_file, "file not found")
        merged.update(_load_toml_file(config_file))

    merged.update(_load_env_vars())
    merged.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(GitmemConfig)}
    for key in merged:
        if key not in known:
            raise InvalidConfigError(key, merged[key], "unknown setting")

    for key in ("excluded_categories", "scope_include", "scope_exclude"):
        if key in merged:
            merged[key] = tuple(merged[key])

    try:
        return GitmemConfig(**merged)
    except ValueError as e:
        raise InvalidConfigError("config", merged, str(e))


def write_config(index_dir: Path, config: GitmemConfig) -> Path:
    """Write the persisted subset of ``config`` to ``<index_dir>/config.toml``."""
    path = Path(index_dir) / CONFIG_FILENAME
    lines = ["# gitmem settings. See `gitmem --help` for the full list."]
    lines.append(f"ai = {_toml_value(config.ai)}")
    if config.index_start_date is not None:
        lines.append(f"index_start_date = {_toml_value(config.index_start_date)}")
    lines.append(f"index_model = {_toml_value(config.index_model)}")
    lines.append(f"excluded_categories = {_toml_value(list(config.excluded_categories))}")
    if config.scope_include:
        lines.append(f"scope_include = {_toml_value(list(config.scope_include))}")
    if config.scope_exclude:
        lines.append(f"scope_exclude = {_toml_value(list(config.scope_exclude))}")
    path.write_text("\n".join(lines) + "\n")
    return path


def resolve_api_key() -> str:
    """Return the classification service API key from the environment."""
    key = os.environ.get(API_KEY_ENV, "").strip()
    if not key:
        raise MissingCredentialsError(API_KEY_ENV)
    return key


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    # JSON string and array syntax is valid TOML for plain strings
    return json.dumps(value)


def _load_env_vars() -> dict[str, Any]:
    """Load configuration from GITMEM_* environment variables.

    Booleans accept true/false/1/0/yes/no; ``GITMEM_AI`` also accepts a
    date; ``GITMEM_EXCLUDED_CATEGORIES`` and the ``GITMEM_SCOPE_*`` lists
    are comma-separated (empty string for none).
    """
    result: dict[str, Any] = {}

    for f in fields(GitmemConfig):
        env_key = f"GITMEM_{f.name.upper()}"
        env_value = os.environ.get(env_key)
        if env_value is None:
            continue

        try:
            result[f.name] = _parse_env_value(env_value, f.name)
        except ValueError as e:
            raise InvalidConfigError(env_key, env_value, str(e))

    return result


def _parse_bool(value: str) -> Optional[bool]:
    lower = value.strip().lower()
    if lower in ("true", "1", "yes", "on"):
        return True
    if lower in ("false", "0", "no", "off"):
        return False
    return None


def _parse_env_value(value: str, field_name: str) -> Any:
    if field_name == "ai":
        parsed = _parse_bool(value)
        return value.strip() if parsed is None else parsed

    if field_name == "batch_mode":
        parsed = _parse_bool(value)
        if parsed is None:
            raise ValueError(f"expected true/false, got '{value}'")
        return parsed

    if field_name in ("max_batch_size", "retry_attempts", "max_diff_chars",
                      "min_cochanges", "max_coupling_files_per_commit"):
        return int(value)

    if field_name == "retry_delay_seconds":
        return float(value)

    if field_name in ("excluded_categories", "scope_include", "scope_exclude"):
        return tuple(part.strip() for part in value.split(",") if part.strip())

    if field_name == "index_start_date":
        return value.strip() or None

    return value


def _load_toml_file(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise InvalidConfigError("config_file", path, str(e))
