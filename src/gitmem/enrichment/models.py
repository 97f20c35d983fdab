"""Typed payloads exchanged with the classification service and the CLI."""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

Classification = Literal["bug-fix", "feature", "refactor", "docs", "chore", "perf", "test", "style"]


class EnrichmentResult(BaseModel):
    """One commit verdict as returned by the model."""

    classification: Classification
    summary: str


class CommitRequest(BaseModel):
    """Everything the service needs to classify one commit."""

    hash: str
    user_message: str


class ResultItem(BaseModel):
    """Outcome for one commit in a job: a verdict or an error, never both."""

    hash: str
    result: Optional[EnrichmentResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class ServiceJobStatus(str, Enum):
    """Job state as reported by the service."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELED = "canceled"


class JobStatus(BaseModel):
    status: ServiceJobStatus
    succeeded: int = 0
    errored: int = 0
    processing: int = 0

    @property
    def is_processing(self) -> bool:
        return self.status == ServiceJobStatus.IN_PROGRESS

    @property
    def is_failed(self) -> bool:
        return self.status in (
            ServiceJobStatus.FAILED,
            ServiceJobStatus.EXPIRED,
            ServiceJobStatus.CANCELED,
        )


NO_REASONING = "No reasoning provided"


class EvalVerdict(BaseModel):
    """The judge's call on one dimension of a classification."""

    passed: bool = True
    reasoning: str = NO_REASONING
    suggested_classification: Optional[Classification] = None


class JudgeVerdicts(BaseModel):
    classification: EvalVerdict = Field(default_factory=EvalVerdict)
    accuracy: EvalVerdict = Field(default_factory=EvalVerdict)
    completeness: EvalVerdict = Field(default_factory=EvalVerdict)

    @property
    def all_passed(self) -> bool:
        return self.classification.passed and self.accuracy.passed and self.completeness.passed


class JudgeResultItem(BaseModel):
    """Outcome for one commit in a check job: verdicts or an error."""

    hash: str
    verdicts: Optional[JudgeVerdicts] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.verdicts is not None


class Submission(BaseModel):
    """A job accepted by the service.

    ``results`` is filled only by services that answer synchronously.
    """

    job_id: str
    request_count: int
    results: Optional[list[Union[ResultItem, JudgeResultItem]]] = None


class CheckResult(BaseModel):
    """A graded classification."""

    hash: str
    classification: str
    summary: str
    verdicts: JudgeVerdicts


class CheckSummary(BaseModel):
    total: int = 0
    classification_correct: int = 0
    summary_accurate: int = 0
    summary_complete: int = 0

    @classmethod
    def of(cls, results: list[CheckResult]) -> "CheckSummary":
        return cls(
            total=len(results),
            classification_correct=sum(r.verdicts.classification.passed for r in results),
            summary_accurate=sum(r.verdicts.accuracy.passed for r in results),
            summary_complete=sum(r.verdicts.completeness.passed for r in results),
        )


class CheckOutcome(BaseModel):
    """Where a sampled check stopped.

    ``kind`` is ``complete`` (results graded), ``submitted`` or
    ``in_progress`` (a check batch is open), ``failed`` (the batch ended
    without results) or ``empty`` (nothing to grade).
    """

    kind: Literal["complete", "submitted", "in_progress", "failed", "empty"]
    results: list[CheckResult] = Field(default_factory=list)
    summary: Optional[CheckSummary] = None
    failed: int = 0
    batch_id: Optional[str] = None
    batch_status: Optional[str] = None
    output_path: Optional[str] = None


class CyclePhase(str, Enum):
    DISCOVERING = "discovering"
    MEASURING = "measuring"
    SUBMITTING = "submitting"
    POLLING = "polling"
    IMPORTING = "importing"
    ENRICHING = "enriching"
    AGGREGATING = "aggregating"
    INDEXING = "indexing"
    DONE = "done"


class IndexProgress(BaseModel):
    phase: CyclePhase
    current: Optional[int] = None
    total: Optional[int] = None
    batch_id: Optional[str] = None
    batch_status: Optional[str] = None


class CycleResult(BaseModel):
    """What one orchestrator cycle did and where it stopped."""

    phase: CyclePhase
    discovered: int = 0
    enriched_this_run: int = 0
    failed_this_run: int = 0
    total_enriched: int = 0
    total_commits: int = 0
    pending: int = 0
    batch_id: Optional[str] = None
    batch_status: Optional[str] = None
    needs_reinvoke: bool = False
    aggregates: dict[str, int] = Field(default_factory=dict)
    indexed: int = 0

    @property
    def is_done(self) -> bool:
        return self.phase == CyclePhase.DONE
