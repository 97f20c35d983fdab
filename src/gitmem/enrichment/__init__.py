"""Commit classification: prompts, service variants, the enrichment cycle and quality checks."""

from .checker import CommitChecker
from .models import (
    CheckOutcome,
    CheckResult,
    CheckSummary,
    CycleResult,
    EnrichmentResult,
    IndexProgress,
    JobStatus,
    JudgeVerdicts,
    ResultItem,
    Submission,
)
from .orchestrator import EnrichmentOrchestrator
from .service import (
    BatchClassificationService,
    BatchJudgeService,
    ClassificationService,
    DirectClassificationService,
    DirectJudgeService,
)

__all__ = [
    "BatchClassificationService",
    "BatchJudgeService",
    "CheckOutcome",
    "CheckResult",
    "CheckSummary",
    "ClassificationService",
    "CommitChecker",
    "CycleResult",
    "DirectClassificationService",
    "DirectJudgeService",
    "EnrichmentOrchestrator",
    "EnrichmentResult",
    "IndexProgress",
    "JobStatus",
    "JudgeVerdicts",
    "ResultItem",
    "Submission",
]
