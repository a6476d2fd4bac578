"""Provider health checks: ping one model per provider to validate API keys."""

import asyncio
import logging

from manymodels.invoker import invoke
from manymodels.models import ModelDescriptor
from manymodels.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(descriptor: ModelDescriptor, provider: AIProvider) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (provider_tag, ok, error_message)."""
    outcome = await invoke(provider, descriptor, _PING_PROMPT, _TIMEOUT_SEC)
    return descriptor.provider, outcome.ok, outcome.error or ""


async def run_health_checks(
    targets: list[tuple[ModelDescriptor, AIProvider]],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers in parallel.

    Returns:
        Dict mapping provider tag -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(d, p) for d, p in targets))
    return {tag: (ok, err) for tag, ok, err in results}
