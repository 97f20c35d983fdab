"""Prompt and response handling for grading existing classifications."""

import json
import re
from typing import Any

from ..temporal.models import CLASSIFICATIONS, Commit
from .models import NO_REASONING, EvalVerdict, JudgeVerdicts
from .prompt import build_user_message

JUDGE_SYSTEM_PROMPT = f"""You are reviewing the output of an automated git commit classifier. You are given a commit (message, file list and diff) together with the classification and summary the classifier produced. Grade that output on three dimensions:

1. Classification correctness: is the classification the best fit among {", ".join(CLASSIFICATIONS)}? Judge by the diff, not the commit message. Merge commits are "chore". When the commit spans several categories, the primary purpose decides.
2. Summary accuracy: does every statement in the summary match what the diff shows? Fail summaries that claim changes, fixes or motivations the diff does not support.
3. Summary completeness: does the summary mention the most important change? A one or two sentence summary is not expected to list every file.

Pass a dimension unless you are confident it is wrong. When the classification fails, name the classification you would have chosen.

Respond with a single JSON object and nothing else:
{{"classification": {{"pass": true, "reasoning": "<one sentence>", "suggested_classification": "<only when pass is false>"}},
 "accuracy": {{"pass": true, "reasoning": "<one sentence>"}},
 "completeness": {{"pass": true, "reasoning": "<one sentence>"}}}}"""

JUDGE_MAX_OUTPUT_TOKENS = 1024

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def build_judge_message(commit: Commit, diff: str, classification: str, summary: str) -> str:
    enrichment = (
        "\n\nEnrichment to evaluate:\n"
        f"Classification: {classification}\n"
        f"Summary: {summary}"
    )
    return build_user_message(commit, diff, system_prompt=JUDGE_SYSTEM_PROMPT, suffix=enrichment)


def _verdict(data: Any) -> EvalVerdict:
    if not isinstance(data, dict):
        return EvalVerdict()
    passed = data.get("pass")
    reasoning = data.get("reasoning")
    suggested = data.get("suggested_classification", data.get("suggestedClassification"))
    return EvalVerdict(
        passed=passed if isinstance(passed, bool) else True,
        reasoning=reasoning if isinstance(reasoning, str) and reasoning else NO_REASONING,
        suggested_classification=suggested if suggested in CLASSIFICATIONS else None,
    )


def parse_judge_response(text: str) -> JudgeVerdicts:
    """Read the judge's verdicts from its reply.

    Anything unreadable, down to a reply with no JSON at all, grades as a
    pass with no reasoning.
    """
    match = _JSON_OBJECT_RE.search(text)
    data: Any = {}
    if match is not None:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = {}
    if not isinstance(data, dict):
        data = {}
    return JudgeVerdicts(
        classification=_verdict(data.get("classification")),
        accuracy=_verdict(data.get("accuracy")),
        completeness=_verdict(data.get("completeness")),
    )


def reconcile(classification: str, verdict: EvalVerdict) -> EvalVerdict:
    """A failing verdict that suggests the classification it failed is a pass."""
    if not verdict.passed and verdict.suggested_classification == classification:
        return verdict.model_copy(update={"passed": True})
    return verdict
