"""Run one prompt against one model and normalise the result to a QueryOutcome."""

import asyncio
import logging
import time

from manymodels.models import ImageAttachment, ModelDescriptor, QueryOutcome
from manymodels.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

VISION_NOTE = "[Note: An image was provided but {model} doesn't support vision.]"


def prepare_prompt(
    descriptor: ModelDescriptor,
    prompt: str,
    image: ImageAttachment | None,
) -> tuple[str, ImageAttachment | None]:
    """Decide what to send: attach the image, or fall back to text with a note."""
    if image is None:
        return prompt, None
    if descriptor.vision:
        return prompt, image
    note = VISION_NOTE.format(model=descriptor.display_name)
    return f"{note}\n\n{prompt}", None


async def invoke(
    provider: AIProvider,
    descriptor: ModelDescriptor,
    prompt: str,
    timeout_sec: float,
    image: ImageAttachment | None = None,
) -> QueryOutcome:
    """Call a single provider under a hard timeout.

    Never raises. Timeouts come back as ``status="timeout"``, provider and
    transport failures as ``status="error"``.
    """
    text, attachment = prepare_prompt(descriptor, prompt, image)
    start = time.monotonic()
    try:
        generation = await asyncio.wait_for(provider.generate(text, image=attachment), timeout=timeout_sec)
    except TimeoutError:
        latency = time.monotonic() - start
        logger.warning("%s timed out after %.1fs", descriptor.model_id, latency)
        return QueryOutcome(
            model=descriptor.model_id,
            status="timeout",
            error=f"Request timed out after {timeout_sec:g}s",
            latency_sec=latency,
        )
    except ProviderError as exc:
        logger.warning("%s failed: %s", descriptor.model_id, exc)
        return QueryOutcome(
            model=descriptor.model_id,
            status="error",
            error=str(exc),
            latency_sec=time.monotonic() - start,
        )
    except Exception as exc:
        logger.warning("%s unexpected failure: %s", descriptor.model_id, exc)
        return QueryOutcome(
            model=descriptor.model_id,
            status="error",
            error=f"Unexpected error: {exc}",
            latency_sec=time.monotonic() - start,
        )

    latency = time.monotonic() - start
    logger.info("%s: %.2fs, %s tokens", descriptor.model_id, latency, generation.token_count)
    return QueryOutcome(
        model=descriptor.model_id,
        status="success",
        response=generation.text,
        latency_sec=latency,
        token_count=generation.token_count,
    )
