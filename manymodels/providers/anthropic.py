"""Anthropic Claude provider using anthropic SDK with native async."""

import base64
import logging
import os

import anthropic as anthropic_sdk

from config.config_loader import ProviderConfig
from manymodels.models import Generation, ImageAttachment, ModelDescriptor
from manymodels.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

_WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, descriptor: ModelDescriptor, provider_config: ProviderConfig) -> None:
        self._descriptor = descriptor
        api_key = os.environ.get(provider_config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(descriptor.model_id, f"Missing API key: {provider_config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._descriptor.model_id

    def model_string(self) -> str:
        return self._descriptor.api_model

    async def generate(self, prompt: str, image: ImageAttachment | None = None) -> Generation:
        content: list[dict] = [{"type": "text", "text": prompt}]
        if image is not None:
            content.insert(0, {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.media_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                },
            })

        kwargs: dict = {}
        if self._descriptor.web_search:
            kwargs["tools"] = [_WEB_SEARCH_TOOL]

        try:
            response = await self._client.messages.create(
                model=self._descriptor.api_model,
                max_tokens=self._descriptor.max_tokens or 4096,
                messages=[{"role": "user", "content": content}],
                **kwargs,
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

        if not response.content:
            raise ProviderError(self.name(), "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self.name(), "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.debug("Anthropic %s: %s tokens", self.name(), token_count)
        return Generation(text="\n".join(text_blocks), token_count=token_count)
