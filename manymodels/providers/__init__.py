"""Provider classes keyed by the capability tag used in settings.yaml."""

from config.config_loader import AppConfig
from manymodels.models import ModelDescriptor
from manymodels.providers.anthropic import AnthropicProvider
from manymodels.providers.base import AIProvider, JobBackend, ProviderError
from manymodels.providers.deep_research import GeminiDeepResearch, OpenAIDeepResearch
from manymodels.providers.gemini import GeminiProvider
from manymodels.providers.openai_provider import OpenAIProvider
from manymodels.providers.xai import XAIProvider

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GeminiProvider,
    "xai": XAIProvider,
}

JOB_BACKEND_CLASSES: dict[str, type[JobBackend]] = {
    "openai-deep": OpenAIDeepResearch,
    "gemini-deep": GeminiDeepResearch,
}


def build_provider(descriptor: ModelDescriptor, config: AppConfig) -> AIProvider:
    """Instantiate the synchronous provider for a model.

    Raises:
        ProviderError: Unknown provider tag or missing API key.
    """
    cls = PROVIDER_CLASSES.get(descriptor.provider)
    provider_config = config.providers.get(descriptor.provider)
    if cls is None or provider_config is None:
        raise ProviderError(descriptor.model_id, f"Unknown provider: {descriptor.provider}")
    return cls(descriptor, provider_config)


def build_job_backend(descriptor: ModelDescriptor, config: AppConfig) -> JobBackend:
    """Instantiate the deep research backend for a background model.

    Raises:
        ProviderError: Unknown provider tag or missing API key.
    """
    cls = JOB_BACKEND_CLASSES.get(descriptor.provider)
    provider_config = config.providers.get(descriptor.provider)
    if cls is None or provider_config is None:
        raise ProviderError(descriptor.model_id, f"Unknown deep research provider: {descriptor.provider}")
    return cls(descriptor, provider_config)
