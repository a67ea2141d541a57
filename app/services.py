"""Wiring of the pipeline collaborators for one process."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.cache import ResponseCache
from app.config import Settings, settings
from app.core.config import (
    BASE_DIR,
    CRITERIA_PROMPTS,
    DESCRIPTION_STAGE,
    DETECTION_MASK_PROMPT,
    DETECTION_NEGATIVE_MASK_PROMPT,
    DETECTION_STAGE,
)
from app.credits import KeyValueCreditLedger
from app.job_store import JobRecordStore, KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from app.metadata import MetadataUpdater
from app.models.job import Criteria
from app.providers import AsyncProvider, InlineProvider, OpenAIInlineProvider, ReplicateAsyncProvider
from app.storage import LocalObjectStorage, ObjectStorage
from app.webhooks import SigningSecretCache, WebhookReceiver
from app.workflow import PipelineRunner, StageExecutor, create_pipeline_graph
from app.workflow.nodes import PipelineNodes


@dataclass
class Services:
    settings: Settings
    kv: KeyValueStore
    job_store: JobRecordStore
    storage: ObjectStorage
    cache: ResponseCache
    metadata: MetadataUpdater
    credits: KeyValueCreditLedger
    runner: PipelineRunner
    webhooks: WebhookReceiver

    def image_url(self, name: str) -> str:
        return image_url(self.settings, name)


def image_url(config: Settings, name: str) -> str:
    return f"{config.PUBLIC_BASE_URL.rstrip('/')}/images/v1/image/{name}"


def detection_input(url: str, criteria: Criteria) -> dict:
    return {
        "image": url,
        "mask_prompt": DETECTION_MASK_PROMPT,
        "negative_mask_prompt": DETECTION_NEGATIVE_MASK_PROMPT,
        "adjustment_factor": 0,
    }


def description_prompt(criteria: Criteria) -> str:
    return CRITERIA_PROMPTS[Criteria(criteria).value]


def build_services(
    config: Settings,
    kv: Optional[KeyValueStore] = None,
    storage: Optional[ObjectStorage] = None,
    inline_provider: Optional[InlineProvider] = None,
    async_provider: Optional[AsyncProvider] = None,
) -> Services:
    """Assemble the pipeline. Any collaborator can be injected (tests, alternate backends)."""
    if kv is None:
        if config.KV_BACKEND == "redis":
            kv = RedisKeyValueStore.from_url(config.REDIS_URL)
        else:
            kv = MemoryKeyValueStore(maxsize=config.KV_MAX_ENTRIES)
    if storage is None:
        storage_dir = Path(config.STORAGE_DIR)
        if not storage_dir.is_absolute():
            storage_dir = BASE_DIR / storage_dir
        storage = LocalObjectStorage(storage_dir)
    if inline_provider is None and config.OPENAI_API_KEY:
        inline_provider = OpenAIInlineProvider(config.OPENAI_API_KEY, timeout=config.INLINE_TIMEOUT)
    if async_provider is None:
        async_provider = ReplicateAsyncProvider(config.REPLICATE_API_TOKEN)

    job_store = JobRecordStore(kv, config.PROCESSING_TTL, config.COMPLETED_TTL)
    cache = ResponseCache(ttl=config.RESPONSE_CACHE_TTL)
    metadata = MetadataUpdater(storage, cache)
    credits = KeyValueCreditLedger(kv, starting_balance=config.STARTING_CREDITS)
    webhook_base_url = f"{config.PUBLIC_BASE_URL.rstrip('/')}/webhooks/v1/replicate"

    detection = StageExecutor(
        stage=DETECTION_STAGE,
        model_id=config.DETECTION_MODEL,
        build_input=detection_input,
        job_store=job_store,
        async_provider=async_provider,
        webhook_base_url=webhook_base_url,
        metadata=metadata,
    )
    description = StageExecutor(
        stage=DESCRIPTION_STAGE,
        model_id=config.DESCRIPTION_MODEL,
        build_input=lambda url, criteria: {
            "image": url,
            "prompt": description_prompt(criteria),
            "max_tokens": config.INLINE_MAX_TOKENS,
        },
        job_store=job_store,
        async_provider=async_provider,
        webhook_base_url=webhook_base_url,
        inline_provider=inline_provider,
        inline_model=config.INLINE_MODEL,
        prompt_for=description_prompt,
        max_tokens=config.INLINE_MAX_TOKENS,
        metadata=metadata,
    )

    graph = create_pipeline_graph(PipelineNodes(detection, description, metadata))
    runner = PipelineRunner(
        graph=graph,
        detection=detection,
        description=description,
        metadata=metadata,
        credit_gate=credits,
        image_url_for=lambda name: image_url(config, name),
        detection_cost=config.DETECTION_COST,
    )
    webhooks = WebhookReceiver(
        job_store=job_store,
        runner=runner,
        secret_cache=SigningSecretCache(async_provider.signing_secret, ttl=config.WEBHOOK_SECRET_TTL),
        tolerance=config.WEBHOOK_TOLERANCE,
    )

    return Services(
        settings=config,
        kv=kv,
        job_store=job_store,
        storage=storage,
        cache=cache,
        metadata=metadata,
        credits=credits,
        runner=runner,
        webhooks=webhooks,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the process-wide services (FastAPI dependency)."""
    global _services
    if _services is None:
        _services = build_services(settings)
    return _services
