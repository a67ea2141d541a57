import base64
import logging
from abc import ABC, abstractmethod

import requests
from openai import OpenAI

from app.errors import ProviderError

logger = logging.getLogger(__name__)


class InlineProvider(ABC):
    """Synchronous inference that completes within the current invocation."""

    @abstractmethod
    def run(self, model_id: str, image_bytes: bytes, prompt: str, max_tokens: int) -> str:
        """Return the generated description or raise ProviderError."""
        ...

    def fetch_image(self, url: str, timeout: int = 30) -> bytes:
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ProviderError(f"Could not fetch image {url}: {e}") from e
        return response.content


class OpenAIInlineProvider(InlineProvider):
    def __init__(self, api_key: str, timeout: int = 30):
        self.timeout = timeout
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def fetch_image(self, url: str, timeout: int | None = None) -> bytes:
        return super().fetch_image(url, timeout or self.timeout)

    def run(self, model_id: str, image_bytes: bytes, prompt: str, max_tokens: int) -> str:
        data_url = "data:image/jpeg;base64," + base64.b64encode(image_bytes).decode("ascii")
        try:
            response = self.client.chat.completions.create(
                model=model_id,
                max_tokens=max_tokens,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }],
            )
        except Exception as e:
            logger.warning(f"Inline provider call failed: {str(e)}")
            raise ProviderError(f"Inline provider failed: {str(e)}") from e

        description = response.choices[0].message.content
        if not description:
            raise ProviderError("Inline provider returned an empty description")
        return description.strip()
