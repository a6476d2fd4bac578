"""xAI Grok provider using openai SDK (OpenAI-compatible API)."""

import logging
import os

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from manymodels.models import Generation, ImageAttachment, ModelDescriptor
from manymodels.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class XAIProvider(AIProvider):
    """xAI Grok provider via OpenAI-compatible API.

    Web search uses xAI's live search parameters passed through ``extra_body``.
    """

    def __init__(self, descriptor: ModelDescriptor, provider_config: ProviderConfig) -> None:
        self._descriptor = descriptor
        api_key = os.environ.get(provider_config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(descriptor.model_id, f"Missing API key: {provider_config.api_key_env}")
        if not provider_config.base_url:
            raise ProviderError(descriptor.model_id, "base_url is required for xAI provider")
        self._client = AsyncOpenAI(api_key=api_key, base_url=provider_config.base_url)

    def name(self) -> str:
        return self._descriptor.model_id

    def model_string(self) -> str:
        return self._descriptor.api_model

    async def generate(self, prompt: str, image: ImageAttachment | None = None) -> Generation:
        if image is not None:
            logger.debug("xAI %s: image attachments are not sent", self.name())

        extra_body = {"search_parameters": {"mode": "auto"}} if self._descriptor.web_search else None

        try:
            response = await self._client.chat.completions.create(
                model=self._descriptor.api_model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self._descriptor.max_tokens,
                extra_body=extra_body,
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self.name(), "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.debug("xAI %s: %s tokens", self.name(), token_count)
        return Generation(text=choice.message.content, token_count=token_count)
