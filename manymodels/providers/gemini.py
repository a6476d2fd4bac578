"""Gemini provider using google-genai SDK with native async."""

import logging
import os

from google import genai
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from manymodels.models import Generation, ImageAttachment, ModelDescriptor
from manymodels.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, descriptor: ModelDescriptor, provider_config: ProviderConfig) -> None:
        self._descriptor = descriptor
        api_key = os.environ.get(provider_config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(descriptor.model_id, f"Missing API key: {provider_config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._descriptor.model_id

    def model_string(self) -> str:
        return self._descriptor.api_model

    async def generate(self, prompt: str, image: ImageAttachment | None = None) -> Generation:
        contents: list = [prompt]
        if image is not None:
            contents.insert(0, genai_types.Part.from_bytes(data=image.data, mime_type=image.media_type))

        tools = None
        if self._descriptor.web_search:
            tools = [genai_types.Tool(google_search=genai_types.GoogleSearch())]

        try:
            response = await self._client.aio.models.generate_content(
                model=self._descriptor.api_model,
                contents=contents,
                config=genai_types.GenerateContentConfig(
                    max_output_tokens=self._descriptor.max_tokens,
                    tools=tools,
                ),
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

        if not response.text:
            raise ProviderError(self.name(), "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.debug("Gemini %s: %s tokens", self.name(), token_count)
        return Generation(text=response.text, token_count=token_count)
