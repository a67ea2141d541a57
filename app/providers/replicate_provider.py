import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

import replicate
from replicate.webhook import WebhookSigningSecret

from app.core.config import DETECTION_STAGE
from app.errors import ProviderError

logger = logging.getLogger(__name__)


class AsyncProvider(ABC):
    """Inference that completes later through a signed webhook callback."""

    @abstractmethod
    def submit(self, model_id: str, input: Dict[str, Any], webhook_url: str,
               events_filter: List[str]) -> str:
        """Start a job and return the provider's job id."""
        ...

    @abstractmethod
    def signing_secret(self) -> WebhookSigningSecret:
        """Fetch the per-deployment webhook signing secret."""
        ...


class ReplicateAsyncProvider(AsyncProvider):
    def __init__(self, api_token: str):
        self.client = replicate.Client(api_token=api_token)

    def submit(self, model_id: str, input: Dict[str, Any], webhook_url: str,
               events_filter: List[str]) -> str:
        # "owner/name:version" -> the predictions API wants the version id
        _, _, version = model_id.partition(":")
        try:
            prediction = self.client.predictions.create(
                version=version or model_id,
                input=input,
                webhook=webhook_url,
                webhook_events_filter=events_filter,
            )
        except Exception as e:
            logger.error(f"Prediction submission to {model_id} failed: {str(e)}")
            raise ProviderError(f"Async provider submission failed: {str(e)}") from e
        logger.info(f"Submitted prediction {prediction.id} for {model_id}")
        return prediction.id

    def signing_secret(self) -> WebhookSigningSecret:
        try:
            return self.client.webhooks.default.secret()
        except Exception as e:
            raise ProviderError(f"Could not fetch webhook signing secret: {str(e)}") from e


def normalize_output(stage: str, output: Any) -> str:
    """Reduce a prediction output to the string the next stage consumes.

    Segmentation models return a list of image URLs (the crop first), language
    models stream a list of tokens.
    """
    if output is None:
        raise ProviderError(f"Empty output for {stage}")
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        if stage == DETECTION_STAGE:
            urls = [item for item in output if isinstance(item, str) and item]
            if not urls:
                raise ProviderError(f"No image in {stage} output")
            return urls[0]
        return "".join(str(item) for item in output).strip()
    if isinstance(output, dict):
        for key in ("output", "text", "image", "url"):
            if isinstance(output.get(key), str):
                return output[key]
    raise ProviderError(f"Unsupported {stage} output type: {type(output).__name__}")
