"""OpenAI provider using openai SDK with native async."""

import base64
import logging
import os

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from manymodels.models import Generation, ImageAttachment, ModelDescriptor
from manymodels.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


def _data_url(image: ImageAttachment) -> str:
    encoded = base64.b64encode(image.data).decode("ascii")
    return f"data:{image.media_type};base64,{encoded}"


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK.

    Plain requests use Chat Completions. Web-search models go through the
    Responses API with the ``web_search_preview`` tool.
    """

    def __init__(self, descriptor: ModelDescriptor, provider_config: ProviderConfig) -> None:
        self._descriptor = descriptor
        api_key = os.environ.get(provider_config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(descriptor.model_id, f"Missing API key: {provider_config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=provider_config.base_url)

    def name(self) -> str:
        return self._descriptor.model_id

    def model_string(self) -> str:
        return self._descriptor.api_model

    async def generate(self, prompt: str, image: ImageAttachment | None = None) -> Generation:
        if self._descriptor.web_search:
            return await self._generate_with_search(prompt, image)

        content: str | list[dict] = prompt
        if image is not None:
            content = [
                {"type": "image_url", "image_url": {"url": _data_url(image)}},
                {"type": "text", "text": prompt},
            ]

        try:
            response = await self._client.chat.completions.create(
                model=self._descriptor.api_model,
                messages=[{"role": "user", "content": content}],
                max_completion_tokens=self._descriptor.max_tokens,
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self.name(), "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.debug("OpenAI %s: %s tokens", self.name(), token_count)
        return Generation(text=choice.message.content, token_count=token_count)

    async def _generate_with_search(self, prompt: str, image: ImageAttachment | None) -> Generation:
        content: list[dict] = [{"type": "input_text", "text": prompt}]
        if image is not None:
            content.insert(0, {"type": "input_image", "image_url": _data_url(image)})

        try:
            response = await self._client.responses.create(
                model=self._descriptor.api_model,
                input=[{"role": "user", "content": content}],
                tools=[{"type": "web_search_preview"}],
                max_output_tokens=self._descriptor.max_tokens,
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

        if not response.output_text:
            raise ProviderError(self.name(), "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.debug("OpenAI %s (web search): %s tokens", self.name(), token_count)
        return Generation(text=response.output_text, token_count=token_count)
