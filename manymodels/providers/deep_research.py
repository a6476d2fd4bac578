"""Background deep research backends (OpenAI Responses API, Gemini interactions)."""

import logging
import os

from google import genai
from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from manymodels.models import Citation, JobSnapshot, ModelDescriptor
from manymodels.providers.base import JobBackend, ProviderError

logger = logging.getLogger(__name__)

_DEFAULT_SYSTEM_PROMPT = (
    "You are a research assistant conducting comprehensive literature review and synthesis."
)

_KNOWN_STATUSES = {"queued", "in_progress", "completed", "failed", "cancelled"}


def _normalise_status(raw: str | None) -> str:
    status = (raw or "in_progress").lower()
    if status == "incomplete":
        return "failed"
    if status == "canceled":
        return "cancelled"
    return status if status in _KNOWN_STATUSES else "in_progress"


def _api_key(descriptor: ModelDescriptor, provider_config: ProviderConfig) -> str:
    api_key = os.environ.get(provider_config.api_key_env, "").strip()
    if not api_key:
        raise ProviderError(descriptor.model_id, f"Missing API key: {provider_config.api_key_env}")
    return api_key


class OpenAIDeepResearch(JobBackend):
    """o3-deep-research style models run with ``background=True``."""

    def __init__(self, descriptor: ModelDescriptor, provider_config: ProviderConfig) -> None:
        self._descriptor = descriptor
        self._client = AsyncOpenAI(api_key=_api_key(descriptor, provider_config))

    def name(self) -> str:
        return self._descriptor.model_id

    async def submit(self, prompt: str, context: str | None = None) -> JobSnapshot:
        system_prompt = (
            f"{context}\n\n---\n\nYou are conducting research to help with the above context."
            if context
            else _DEFAULT_SYSTEM_PROMPT
        )
        try:
            response = await self._client.responses.create(
                model=self._descriptor.api_model,
                input=[
                    {"role": "developer", "content": [{"type": "input_text", "text": system_prompt}]},
                    {"role": "user", "content": [{"type": "input_text", "text": prompt}]},
                ],
                reasoning={"summary": "auto"},
                tools=[{"type": "web_search_preview"}],
                background=True,
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"Could not start research: {exc}") from exc
        return self._snapshot(response)

    async def poll(self, job_id: str) -> JobSnapshot:
        try:
            response = await self._client.responses.retrieve(job_id)
        except Exception as exc:
            raise ProviderError(self.name(), f"Status check failed: {exc}") from exc
        return self._snapshot(response)

    def _snapshot(self, response) -> JobSnapshot:
        status = _normalise_status(response.status)
        if status == "failed":
            reason = response.error.message if getattr(response, "error", None) else "unknown error"
            return JobSnapshot(job_id=response.id, status=status, error=f"Research failed: {reason}")
        if status == "cancelled":
            return JobSnapshot(job_id=response.id, status=status, error="Research was cancelled")
        if status != "completed":
            return JobSnapshot(job_id=response.id, status=status)

        citations: list[Citation] = []
        for item in response.output or []:
            for part in getattr(item, "content", None) or []:
                if getattr(part, "type", None) != "output_text":
                    continue
                for annotation in getattr(part, "annotations", None) or []:
                    url = getattr(annotation, "url", None)
                    if url:
                        citations.append(Citation(title=getattr(annotation, "title", "") or url, url=url))

        return JobSnapshot(
            job_id=response.id,
            status=status,
            text=response.output_text or "No output text found in response.",
            citations=tuple(citations),
        )


class GeminiDeepResearch(JobBackend):
    """Gemini deep research agent driven through the interactions API."""

    def __init__(self, descriptor: ModelDescriptor, provider_config: ProviderConfig) -> None:
        self._descriptor = descriptor
        self._client = genai.Client(api_key=_api_key(descriptor, provider_config))

    def name(self) -> str:
        return self._descriptor.model_id

    async def submit(self, prompt: str, context: str | None = None) -> JobSnapshot:
        full_prompt = (
            f"## Background Context\n\n{context}\n\n---\n\n## Research Question\n\n{prompt}"
            if context
            else prompt
        )
        try:
            interaction = await self._client.aio.interactions.create(
                input=full_prompt,
                agent=self._descriptor.api_model,
                background=True,
            )
        except Exception as exc:
            raise ProviderError(self.name(), f"Could not start research: {exc}") from exc
        return self._snapshot(interaction)

    async def poll(self, job_id: str) -> JobSnapshot:
        try:
            interaction = await self._client.aio.interactions.get(job_id)
        except Exception as exc:
            raise ProviderError(self.name(), f"Status check failed: {exc}") from exc
        return self._snapshot(interaction)

    def _snapshot(self, interaction) -> JobSnapshot:
        status = _normalise_status(getattr(interaction, "status", None))
        if status == "failed":
            reason = getattr(interaction, "error", None) or "unknown error"
            return JobSnapshot(job_id=interaction.id, status=status, error=f"Research failed: {reason}")
        if status == "cancelled":
            return JobSnapshot(job_id=interaction.id, status=status, error="Research was cancelled")
        if status != "completed":
            return JobSnapshot(job_id=interaction.id, status=status)

        outputs = getattr(interaction, "outputs", None) or []
        text = getattr(outputs[-1], "text", None) if outputs else None
        return JobSnapshot(
            job_id=interaction.id,
            status=status,
            text=text or "No output text available",
        )
