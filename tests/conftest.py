"""Shared pytest fixtures."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ModelConfig,
    PresetConfig,
    PromptsConfig,
    ProviderConfig,
)
from manymodels.models import Generation, ImageAttachment, JobSnapshot, ModelDescriptor
from manymodels.providers.base import AIProvider, JobBackend, ProviderError
from manymodels.registry import ModelRegistry


def make_descriptor(model_id: str, **overrides) -> ModelDescriptor:
    fields = dict(
        model_id=model_id,
        provider="mock",
        api_model=f"{model_id}-api",
        display_name=model_id.title(),
        timeout_sec=30,
        poll_interval_sec=0.01,
    )
    fields.update(overrides)
    return ModelDescriptor(**fields)


class MockProvider(AIProvider):
    """Test double AIProvider with optional latency and failure."""

    def __init__(
        self,
        provider_name: str = "mock",
        response_content: str = "Mock response",
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._name = provider_name
        self._response_content = response_content
        self._delay = delay
        self._error = error
        self.prompts: list[str] = []
        self.images: list[ImageAttachment | None] = []

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, prompt: str, image: ImageAttachment | None = None) -> Generation:
        self.prompts.append(prompt)
        self.images.append(image)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return Generation(text=self._response_content, token_count=10)


class FakeJobBackend(JobBackend):
    """Replays scripted snapshots: the first from submit, the rest from poll."""

    def __init__(self, snapshots: list[JobSnapshot], submit_error: Exception | None = None) -> None:
        self._snapshots = list(snapshots)
        self._submit_error = submit_error
        self.submit_calls = 0
        self.poll_calls = 0
        self.contexts: list[str | None] = []

    def name(self) -> str:
        return "fake-deep"

    async def submit(self, prompt: str, context: str | None = None) -> JobSnapshot:
        self.submit_calls += 1
        self.contexts.append(context)
        if self._submit_error is not None:
            raise self._submit_error
        return self._snapshots.pop(0)

    async def poll(self, job_id: str) -> JobSnapshot:
        self.poll_calls += 1
        if len(self._snapshots) > 1:
            return self._snapshots.pop(0)
        return self._snapshots[0]


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        synthesis="Synthesise {count} answers to: {prompt}\n\n{responses}\n\n{depth_instructions}",
        depths={
            "brief": "Two sentences.",
            "executive": "One page summary.",
            "full": "Complete analysis.",
        },
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        preset="quick",
        timeout_sec=60,
        max_tokens=4096,
        synthesis_depth="executive",
        output_dir=tmp_path / "output",
        synthesizer="claude",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    models = {
        "claude": ModelConfig(name="claude", provider="anthropic", model="claude-opus-4-5",
                              display_name="Claude", vision=True),
        "gpt": ModelConfig(name="gpt", provider="openai", model="gpt-5.2", display_name="GPT"),
        "gpt-pro": ModelConfig(name="gpt-pro", provider="openai", model="gpt-5.2-pro",
                               display_name="GPT Pro", slow=True, timeout_sec=900),
        "deep": ModelConfig(name="deep", provider="openai-deep", model="o3-deep-research",
                            display_name="Deep", deep_research=True, timeout_sec=3600),
    }
    return AppConfig(
        defaults=sample_defaults_config,
        providers={
            "anthropic": ProviderConfig(name="anthropic", api_key_env="ANTHROPIC_API_KEY"),
            "openai": ProviderConfig(name="openai", api_key_env="OPENAI_API_KEY"),
            "openai-deep": ProviderConfig(name="openai-deep", api_key_env="OPENAI_API_KEY"),
        },
        models=models,
        presets={
            "quick": PresetConfig(name="quick", description="Fast models", models=["claude", "gpt"]),
            "all": PresetConfig(name="all", description="Everything", models=list(models), timeout_sec=120),
        },
        prompts=sample_prompts_config,
        available_providers={"anthropic"},
    )


@pytest.fixture
def sample_registry(sample_app_config: AppConfig) -> ModelRegistry:
    return ModelRegistry.from_config(sample_app_config)


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def failing_provider() -> MockProvider:
    provider = MockProvider("broken")
    provider.generate = AsyncMock(side_effect=ProviderError("broken", "500 Internal Server Error"))  # type: ignore[assignment]
    return provider
