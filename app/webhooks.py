"""Inbound completion callbacks from the async inference provider.

Callbacks are signed with the standard-webhooks scheme (``webhook-id``,
``webhook-timestamp`` and ``webhook-signature`` headers); the check itself is
done by ``replicate.webhooks.validate`` against the deployment signing secret.
"""

import json
import logging
from threading import Lock
from typing import Callable, Mapping, Optional

import replicate
from cachetools import TTLCache
from replicate.webhook import (
    InvalidSignatureError,
    InvalidTimestampError,
    MissingWebhookHeaderError,
    WebhookSigningSecret,
)

from app.core.config import STAGE_ORDER
from app.core.logging import get_job_logger
from app.errors import AuthError, InputValidationError, JobNotFoundError, ProviderError
from app.job_store import JobRecordStore
from app.models.state import PipelineState
from app.providers import normalize_output
from app.workflow.runner import PipelineRunner

logger = logging.getLogger(__name__)

FAILED_PREDICTION_STATUSES = ("failed", "canceled")
PENDING_PREDICTION_STATUSES = ("starting", "processing")


class SigningSecretCache:
    """Holds the webhook signing secret, fetched on first use.

    The entry expires after ``ttl`` seconds and can be dropped explicitly when
    a signature check suggests the secret was rotated.
    """

    def __init__(self, fetch: Callable[[], WebhookSigningSecret], ttl: int):
        self._fetch = fetch
        self._cache = TTLCache(maxsize=1, ttl=ttl)
        self._lock = Lock()

    def get(self) -> WebhookSigningSecret:
        with self._lock:
            secret = self._cache.get("secret")
            if secret is None:
                secret = self._fetch()
                self._cache["secret"] = secret
                logger.info("Fetched webhook signing secret")
            return secret

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()


class WebhookReceiver:
    def __init__(self, job_store: JobRecordStore, runner: PipelineRunner,
                 secret_cache: SigningSecretCache, tolerance: int = 300):
        self.job_store = job_store
        self.runner = runner
        self.secret_cache = secret_cache
        self.tolerance = tolerance

    def _is_valid(self, headers: Mapping[str, str], body: str) -> bool:
        try:
            replicate.webhooks.validate(
                headers=dict(headers),
                body=body,
                secret=self.secret_cache.get(),
                tolerance=self.tolerance,
            )
        except (InvalidSignatureError, InvalidTimestampError, MissingWebhookHeaderError) as e:
            logger.info(f"Webhook signature check failed: {str(e)}")
            return False
        except ValueError as e:
            # Malformed signature or timestamp header, or an empty body
            logger.info(f"Malformed webhook: {str(e)}")
            return False
        return True

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        text = body.decode("utf-8", errors="replace")
        if self._is_valid(headers, text):
            return
        # The secret may have been rotated since it was cached
        self.secret_cache.invalidate()
        if not self._is_valid(headers, text):
            logger.warning("Rejected webhook with invalid signature")
            raise AuthError("Webhook corrupted")

    def handle(self, stage: str, job_key: Optional[str], headers: Mapping[str, str],
               body: bytes) -> PipelineState:
        """Apply a completion callback to its job record and resume the pipeline.

        Replaying the same callback re-applies the same terminal state.
        """
        self.verify(headers, body)

        if stage not in STAGE_ORDER:
            raise InputValidationError(f"Unknown stage {stage}")
        if not job_key:
            logger.info("Webhook without job key")
            raise InputValidationError("Job key not found")

        record = self.job_store.get(job_key)
        if record is None:
            logger.info(f"No data for job key {job_key}")
            raise JobNotFoundError("No data for job key")
        if record.stage != stage:
            raise InputValidationError(f"Job {job_key} belongs to stage {record.stage}")

        try:
            prediction = json.loads(body)
        except ValueError as e:
            raise InputValidationError("Webhook body is not valid JSON") from e
        if not isinstance(prediction, dict):
            raise InputValidationError("Webhook body must be a JSON object")

        log = get_job_logger(job_key)
        status = prediction.get("status")
        if status in PENDING_PREDICTION_STATUSES:
            log.info(f"Ignoring non-terminal {stage} event ({status})")
            return PipelineState(
                subject_id=record.subject_id,
                criteria=record.criteria.value,
                job_key=job_key,
                outcome="running",
            )
        if status in FAILED_PREDICTION_STATUSES:
            error = prediction.get("error") or f"prediction {status}"
            log.error(f"{stage} prediction {status}: {error}")
            record = record.mark_failed(str(error))
        else:
            try:
                record = record.mark_completed(normalize_output(stage, prediction.get("output")))
            except ProviderError as e:
                log.error(f"Unusable {stage} output: {e.detail}")
                record = record.mark_failed(e.detail)

        self.job_store.put(job_key, record, ttl=self.job_store.completed_ttl)
        log.info(f"{stage} job finished as {record.status.value}")
        return self.runner.resume(stage, record)
