"""Classification service: submits commits to a model and collects verdicts.

Two variants share one protocol:

- :class:`BatchClassificationService` uses the Anthropic Message Batches
  API. A submission returns immediately with a job id; results are polled
  for on later cycles.
- :class:`DirectClassificationService` calls the Messages API once per
  commit and returns every result with the submission. It inherits the
  batch calls so a batch left open by an earlier run is still collected.

The judge variants grade existing classifications over the same transport,
swapping in the judge prompt and its parser.
"""

import time
import uuid
from typing import Optional, Protocol

import anthropic

from ..config import GitmemConfig
from ..exceptions import ParseError, ServiceError
from ..logging_config import get_logger
from .judge import JUDGE_MAX_OUTPUT_TOKENS, JUDGE_SYSTEM_PROMPT, parse_judge_response
from .models import (
    CommitRequest,
    JobStatus,
    JudgeResultItem,
    ResultItem,
    ServiceJobStatus,
    Submission,
)
from .prompt import SYSTEM_PROMPT, parse_enrichment_response

logger = get_logger(__name__)

MAX_OUTPUT_TOKENS = 512

# Errors that retrying cannot fix
_FATAL_API_ERRORS = (anthropic.AuthenticationError, anthropic.PermissionDeniedError)


class ClassificationService(Protocol):
    model: str

    def submit(self, items: list[CommitRequest]) -> Submission: ...

    def poll_status(self, job_id: str) -> JobStatus: ...

    def fetch_results(self, job_id: str) -> list[ResultItem]: ...


def _message_text(message) -> str:
    if not message.content:
        return ""
    block = message.content[0]
    return block.text if block.type == "text" else ""


class BatchClassificationService:
    system_prompt = SYSTEM_PROMPT
    max_output_tokens = MAX_OUTPUT_TOKENS
    item_type = ResultItem

    def __init__(self, api_key: str, model: str, client: Optional[anthropic.Anthropic] = None):
        self.model = model
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def _parse_item(self, hash: str, text: str) -> ResultItem:
        try:
            return ResultItem(hash=hash, result=parse_enrichment_response(text))
        except ParseError as e:
            logger.warning("Unparseable result for %s: %s", hash[:7], e.reason)
            return ResultItem(hash=hash, error=e.message)

    def submit(self, items: list[CommitRequest]) -> Submission:
        requests = [
            {
                "custom_id": item.hash,
                "params": {
                    "model": self.model,
                    "max_tokens": self.max_output_tokens,
                    "system": self.system_prompt,
                    "messages": [{"role": "user", "content": item.user_message}],
                },
            }
            for item in items
        ]
        try:
            batch = self.client.messages.batches.create(requests=requests)
        except anthropic.APIError as e:
            raise ServiceError("submit", str(e)) from e
        logger.info("Submitted batch %s with %d requests", batch.id, len(requests))
        return Submission(job_id=batch.id, request_count=len(requests))

    def poll_status(self, job_id: str) -> JobStatus:
        try:
            batch = self.client.messages.batches.retrieve(job_id)
        except anthropic.APIError as e:
            raise ServiceError("poll", str(e), job_id=job_id) from e

        counts = batch.request_counts
        # "ended" covers canceled and expired batches too; their items come
        # back as per-item errors when results are fetched.
        if batch.processing_status == "ended":
            status = ServiceJobStatus.COMPLETED
        else:
            status = ServiceJobStatus.IN_PROGRESS
        return JobStatus(
            status=status,
            succeeded=counts.succeeded,
            errored=counts.errored + counts.canceled + counts.expired,
            processing=counts.processing,
        )

    def fetch_results(self, job_id: str) -> list[ResultItem]:
        results = []
        try:
            for entry in self.client.messages.batches.results(job_id):
                if entry.result.type == "succeeded":
                    results.append(self._parse_item(entry.custom_id, _message_text(entry.result.message)))
                else:
                    results.append(
                        self.item_type(hash=entry.custom_id, error=f"Batch item {entry.result.type}")
                    )
        except anthropic.APIError as e:
            raise ServiceError("fetch", str(e), job_id=job_id) from e
        return results


class DirectClassificationService(BatchClassificationService):
    """Synchronous variant: one Messages call per commit, with retry and backoff.

    The whole submission is classified before :meth:`submit` returns, so the
    job it reports is already complete. Jobs it did not submit itself (a
    batch left open by an earlier run) are polled and fetched through the
    Message Batches API.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        client: Optional[anthropic.Anthropic] = None,
    ):
        super().__init__(api_key, model, client=client)
        self.retry_attempts = retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._completed: dict[str, list[ResultItem]] = {}

    def _classify(self, item: CommitRequest) -> ResultItem:
        last_error: Optional[anthropic.APIError] = None
        for attempt in range(self.retry_attempts):
            try:
                response = self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_output_tokens,
                    system=self.system_prompt,
                    messages=[{"role": "user", "content": item.user_message}],
                )
            except _FATAL_API_ERRORS as e:
                raise ServiceError("submit", str(e)) from e
            except anthropic.APIError as e:
                last_error = e
                if attempt < self.retry_attempts - 1:
                    delay = self.retry_delay_seconds * 2**attempt
                    logger.debug(
                        "Request for %s failed (%s), retrying in %.1fs", item.hash[:7], e, delay
                    )
                    time.sleep(delay)
                continue
            return self._parse_item(item.hash, _message_text(response))

        logger.warning("Giving up on %s after %d attempts", item.hash[:7], self.retry_attempts)
        return self.item_type(hash=item.hash, error=f"Request failed: {last_error}")

    def submit(self, items: list[CommitRequest]) -> Submission:
        job_id = f"direct-{uuid.uuid4()}"
        results = [self._classify(item) for item in items]
        self._completed[job_id] = results
        return Submission(job_id=job_id, request_count=len(items), results=results)

    def poll_status(self, job_id: str) -> JobStatus:
        results = self._completed.get(job_id)
        if results is None:
            return super().poll_status(job_id)
        ok = sum(1 for r in results if r.ok)
        return JobStatus(
            status=ServiceJobStatus.COMPLETED, succeeded=ok, errored=len(results) - ok
        )

    def fetch_results(self, job_id: str) -> list[ResultItem]:
        results = self._completed.get(job_id)
        if results is None:
            return super().fetch_results(job_id)
        return results


def create_service(config: GitmemConfig, api_key: str) -> ClassificationService:
    """Pick the service variant ``config.batch_mode`` asks for."""
    if config.batch_mode:
        return BatchClassificationService(api_key, config.index_model)
    return DirectClassificationService(
        api_key,
        config.index_model,
        retry_attempts=config.retry_attempts,
        retry_delay_seconds=config.retry_delay_seconds,
    )


class BatchJudgeService(BatchClassificationService):
    system_prompt = JUDGE_SYSTEM_PROMPT
    max_output_tokens = JUDGE_MAX_OUTPUT_TOKENS
    item_type = JudgeResultItem

    def _parse_item(self, hash: str, text: str) -> JudgeResultItem:
        return JudgeResultItem(hash=hash, verdicts=parse_judge_response(text))


class DirectJudgeService(DirectClassificationService):
    system_prompt = JUDGE_SYSTEM_PROMPT
    max_output_tokens = JUDGE_MAX_OUTPUT_TOKENS
    item_type = JudgeResultItem

    def _parse_item(self, hash: str, text: str) -> JudgeResultItem:
        return JudgeResultItem(hash=hash, verdicts=parse_judge_response(text))


def create_judge_service(
    config: GitmemConfig, api_key: str, batch: bool = False
) -> ClassificationService:
    if batch:
        return BatchJudgeService(api_key, config.judge_model)
    return DirectJudgeService(
        api_key,
        config.judge_model,
        retry_attempts=config.retry_attempts,
        retry_delay_seconds=config.retry_delay_seconds,
    )
