from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

from app.core.config import JOB_KEY_PARAM, PROCESSING_STATUS, WEBHOOK_EVENTS
from app.core.logging import get_job_logger
from app.errors import ProviderError
from app.job_keys import derive_job_key
from app.job_store import JobRecordStore
from app.metadata import MetadataUpdater
from app.models.job import Criteria, JobRecord, JobStatus
from app.providers import AsyncProvider, InlineProvider


class StageOutcome(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self):
        return self.value


@dataclass
class StageResult:
    outcome: StageOutcome
    job_key: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None


InputBuilder = Callable[[str, Criteria], Dict[str, Any]]
PromptBuilder = Callable[[Criteria], str]


class StageExecutor:
    """Runs one inference stage: inline provider first, async provider as fallback.

    An async submission suspends the stage; it completes in a later invocation
    when the webhook for its job key arrives. Inline results are stored under
    the same job key, so both paths short-circuit on a completed record.
    """

    def __init__(
        self,
        stage: str,
        model_id: str,
        build_input: InputBuilder,
        job_store: JobRecordStore,
        async_provider: AsyncProvider,
        webhook_base_url: str,
        inline_provider: Optional[InlineProvider] = None,
        inline_model: Optional[str] = None,
        prompt_for: Optional[PromptBuilder] = None,
        max_tokens: int = 512,
        metadata: Optional[MetadataUpdater] = None,
    ):
        self.stage = stage
        self.model_id = model_id
        self.build_input = build_input
        self.job_store = job_store
        self.async_provider = async_provider
        self.webhook_base_url = webhook_base_url.rstrip("/")
        self.inline_provider = inline_provider
        self.inline_model = inline_model
        self.prompt_for = prompt_for
        self.max_tokens = max_tokens
        self.metadata = metadata

    def job_key_for(self, stage_input: str, criteria: Criteria) -> str:
        params = {"criteria": str(criteria), **self.build_input(stage_input, criteria)}
        return derive_job_key(self.stage, self.model_id, params)

    def lookup(self, stage_input: str, criteria: Criteria) -> Tuple[str, Optional[JobRecord]]:
        key = self.job_key_for(stage_input, criteria)
        return key, self.job_store.get(key)

    def webhook_url(self, job_key: str) -> str:
        return f"{self.webhook_base_url}/{self.stage}?{urlencode({JOB_KEY_PARAM: job_key})}"

    def _run_inline(self, stage_input: str, criteria: Criteria) -> str:
        image_bytes = self.inline_provider.fetch_image(stage_input)
        prompt = self.prompt_for(criteria) if self.prompt_for else ""
        return self.inline_provider.run(self.inline_model, image_bytes, prompt, self.max_tokens)

    def execute(self, stage_input: str, subject_id: str, criteria: Criteria,
                owner: Optional[str] = None) -> StageResult:
        key, existing = self.lookup(stage_input, criteria)
        log = get_job_logger(key)

        if existing is not None:
            if existing.processing:
                log.info(f"{self.stage} job still running, not resubmitting")
                return StageResult(StageOutcome.RUNNING, job_key=key)
            if existing.status == JobStatus.COMPLETED and existing.result:
                log.info(f"{self.stage} job already completed, reusing result")
                return StageResult(StageOutcome.COMPLETED, job_key=key, result=existing.result)
            # Failed or empty records are retried below

        record = JobRecord(
            stage=self.stage,
            subject_id=subject_id,
            criteria=criteria,
            owner=owner,
            status=JobStatus.PROCESSING,
        )

        if self.inline_provider is not None and self.inline_model:
            try:
                description = self._run_inline(stage_input, criteria)
            except ProviderError as e:
                log.warning(f"Inline {self.stage} failed, falling back to async provider: {e.detail}")
            else:
                # Stored so a replayed callback reuses this result instead of calling the model again
                self.job_store.put(key, record.mark_completed(description))
                log.info(f"{self.stage} completed inline for {subject_id} ({criteria})")
                return StageResult(StageOutcome.COMPLETED, job_key=key, result=description)

        if existing is None:
            if not self.job_store.admit(key, record):
                log.info(f"{self.stage} job admitted concurrently by another request")
                return StageResult(StageOutcome.RUNNING, job_key=key)
        else:
            self.job_store.put(key, record)

        # Written before submitting so a fast callback is never overwritten
        if self.metadata is not None:
            self.metadata.update(subject_id, criteria, PROCESSING_STATUS)

        try:
            self.async_provider.submit(
                self.model_id,
                self.build_input(stage_input, criteria),
                self.webhook_url(key),
                WEBHOOK_EVENTS,
            )
        except ProviderError as e:
            log.error(f"{self.stage} submission failed, releasing job lock: {e.detail}")
            self.job_store.put(key, record.mark_failed(e.detail))
            return StageResult(StageOutcome.FAILED, job_key=key, error=e.detail)

        log.info(f"{self.stage} job queued for {subject_id} ({criteria})")
        return StageResult(StageOutcome.QUEUED, job_key=key)
