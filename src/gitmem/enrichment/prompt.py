"""Prompt construction and response parsing for commit classification."""

import json
import math
import re

from pydantic import ValidationError

from ..exceptions import ParseError
from ..temporal.models import CLASSIFICATIONS, Commit
from .models import EnrichmentResult

SYSTEM_PROMPT = f"""You are a git commit analyzer. Given a commit message, file list, and diff, classify the commit and provide a brief summary.

Classification must be one of: {", ".join(CLASSIFICATIONS)}

Classification guidelines:
- bug-fix: fixes a defect, corrects broken behavior, or restores intended functionality
- feature: adds new user-facing functionality or capabilities that did not exist before
- refactor: restructures existing code without changing external behavior (internal improvements only)
- docs: changes to documentation content meant for humans to read (README, guides, tutorials, API docs)
- chore: maintenance tasks: dependency updates, CI config, version bumps, merge commits, build tooling, changelogs, release notes, repo infrastructure (.github/*, PR templates, issue templates, .editorconfig)
- perf: changes that improve efficiency or reduce resource usage, even small ones like moving work outside a loop
- test: adds or modifies test files without changing production code
- style: purely cosmetic changes: formatting, whitespace, semicolons, naming conventions, linting fixes. Must have zero semantic or behavioral effect.

Edge case rules:
- Merge commits (message starts with "Merge") should be classified as "chore".
- When a commit spans multiple categories, classify by its primary purpose (the most significant change).
- IMPORTANT: Always trust the diff over the commit message. If the message says "fix" but the diff shows only a refactor, classify as "refactor". If the message says "v3 alpha" but the diff only adds an empty object, describe only what the diff shows.
- Improving existing behavior or internal implementation without adding new user-facing capability is "refactor", not "feature".
- Changing existing error messages, validation messages, or user-facing text wording is "style", not "feature". Only classify as "feature" if entirely new message types or validation rules are added.
- CHANGELOG and release note updates are "chore", not "docs". These are release process artifacts, not user documentation.
- Adding or configuring dev tooling (linters, git hooks, formatters, CI pipelines) is "chore", not "feature".
- Moving code for efficiency (e.g. hoisting an assignment out of a loop) is "perf", not "style".
- Removing deprecated code or making breaking API changes is "chore", not "refactor". True refactors preserve external behavior.
- Adding locale/translation files for an existing feature is "chore", not "feature". The feature already exists; adding a translation is maintenance.
- Updating existing locale/translation text is "style", not "docs". Locale files are runtime UI strings, not documentation.
- Regenerating test fixtures or snapshots without changing test logic is "chore", not "test".
- Fixing broken links, broken builds, or broken configs is "bug-fix" regardless of which file type contains the fix.
- Classify by the purpose of the change, not the file type. A config file change that fixes a broken doc site is "bug-fix", not "docs" or "chore".

Summary guidelines:
- Base your summary on the actual diff content, not just the commit message.
- If the diff is empty or missing, state that clearly rather than speculating about what changed.
- Mention the most important files or components affected.
- Do not speculate about changes you cannot see in the diff.
- Describe what changed, not why. Do not infer motivation, performance impact, or version changes unless explicitly visible in the diff.
- Never claim something was "fixed", "improved", or "optimized" unless the diff evidence supports it.

Respond with a single JSON object and nothing else:
{{"classification": "<one of the classifications above>", "summary": "<one or two sentences>"}}"""

MAX_INPUT_TOKENS = 175_000
CHARS_PER_TOKEN = 4

DIFF_TRUNCATED_SUFFIX = "\n[diff truncated]"
DIFF_OMITTED = "[diff omitted: message too large]"

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _format(message: str, file_list: str, diff: str) -> str:
    return f"Commit message: {message}\n\nFiles changed:\n  {file_list}\n\nDiff:\n{diff}"


def build_user_message(
    commit: Commit, diff: str, system_prompt: str = SYSTEM_PROMPT, suffix: str = ""
) -> str:
    """Format a commit for classification, shrinking it to fit the input budget.

    The diff is cut first. If the file list alone is still over budget the
    diff is dropped and the file list is cut, with a count of omitted files.
    ``suffix`` is appended unchanged and counted against the budget, as is
    ``system_prompt``.
    """
    entries = [f"{f.change_type} {f.path} (+{f.additions} -{f.deletions})" for f in commit.files]
    file_list = "\n  ".join(entries)

    def tokens(fl: str, d: str) -> int:
        return estimate_tokens(system_prompt + _format(commit.message, fl, d) + suffix)

    if tokens(file_list, diff) <= MAX_INPUT_TOKENS:
        return _format(commit.message, file_list, diff) + suffix

    available = max(0, MAX_INPUT_TOKENS - tokens(file_list, DIFF_TRUNCATED_SUFFIX))
    max_diff_chars = available * CHARS_PER_TOKEN
    if len(diff) > max_diff_chars:
        diff = diff[:max_diff_chars] + DIFF_TRUNCATED_SUFFIX

    if tokens(file_list, "") > MAX_INPUT_TOKENS:
        diff = DIFF_OMITTED
        available = max(0, MAX_INPUT_TOKENS - tokens("", diff))
        # leave room for the omitted-files note
        max_file_chars = available * CHARS_PER_TOKEN - len(f"\n  ... and {len(entries)} more files")

        kept = 0
        accumulated = ""
        for entry in entries:
            candidate = entry if kept == 0 else accumulated + "\n  " + entry
            if len(candidate) > max_file_chars:
                break
            accumulated = candidate
            kept += 1
        omitted = len(entries) - kept
        file_list = accumulated + f"\n  ... and {omitted} more files" if omitted else accumulated

    return _format(commit.message, file_list, diff) + suffix


def parse_enrichment_response(text: str) -> EnrichmentResult:
    """Parse the model's reply into a verdict.

    Tolerates prose or code fences around the JSON object.

    Raises:
        ParseError: if no valid verdict can be read from ``text``.
    """
    match = _JSON_OBJECT_RE.search(text)
    if match is None:
        raise ParseError(text, "no JSON object in response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseError(text, f"invalid JSON: {e}") from e
    try:
        return EnrichmentResult.model_validate(data)
    except ValidationError as e:
        raise ParseError(text, f"unexpected shape: {e.error_count()} validation errors") from e
