"""Submit-then-poll driver for background deep research jobs."""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

from manymodels.models import (
    TERMINAL_JOB_STATUSES,
    Citation,
    JobProgressEvent,
    JobSnapshot,
    ModelDescriptor,
    QueryOutcome,
)
from manymodels.providers.base import JobBackend, ProviderError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[JobProgressEvent], None]


def dedupe_citations(citations: Iterable[Citation]) -> tuple[Citation, ...]:
    """Drop repeated URLs, keeping the first title seen for each."""
    seen: dict[str, Citation] = {}
    for citation in citations:
        if citation.url not in seen:
            seen[citation.url] = citation
    return tuple(seen.values())


async def run_job(
    backend: JobBackend,
    descriptor: ModelDescriptor,
    prompt: str,
    on_progress: ProgressCallback | None = None,
    context: str | None = None,
) -> QueryOutcome:
    """Run one background job to a terminal state or the local deadline.

    The job is submitted exactly once. Every observed status, the submit
    response included, is reported through ``on_progress`` before the
    terminal check. The poll loop races ``descriptor.timeout_sec``; whichever
    finishes first decides the outcome. Never raises.
    """
    start = time.monotonic()
    job_id: str | None = None

    def _emit(snapshot: JobSnapshot) -> None:
        if on_progress is None:
            return
        on_progress(JobProgressEvent(
            model=descriptor.model_id,
            status=snapshot.status,
            elapsed_sec=time.monotonic() - start,
            job_id=snapshot.job_id,
        ))

    async def _drive() -> JobSnapshot:
        nonlocal job_id
        snapshot = await backend.submit(prompt, context=context)
        job_id = snapshot.job_id
        logger.info("%s: started background job %s", descriptor.model_id, job_id)
        while True:
            _emit(snapshot)
            if snapshot.status in TERMINAL_JOB_STATUSES:
                return snapshot
            await asyncio.sleep(descriptor.poll_interval_sec)
            snapshot = await backend.poll(job_id)

    try:
        snapshot = await asyncio.wait_for(_drive(), timeout=descriptor.timeout_sec)
    except TimeoutError:
        logger.warning("%s: job %s exceeded %ss", descriptor.model_id, job_id, descriptor.timeout_sec)
        return QueryOutcome(
            model=descriptor.model_id,
            status="timeout",
            error=f"Timed out after {descriptor.timeout_sec} seconds",
            latency_sec=time.monotonic() - start,
            request_id=job_id,
        )
    except ProviderError as exc:
        logger.warning("%s: background job failed: %s", descriptor.model_id, exc)
        return QueryOutcome(
            model=descriptor.model_id,
            status="error",
            error=str(exc),
            latency_sec=time.monotonic() - start,
            request_id=job_id,
        )
    except Exception as exc:
        logger.warning("%s: unexpected background failure: %s", descriptor.model_id, exc)
        return QueryOutcome(
            model=descriptor.model_id,
            status="error",
            error=f"Unexpected error: {exc}",
            latency_sec=time.monotonic() - start,
            request_id=job_id,
        )

    latency = time.monotonic() - start
    if snapshot.status == "completed":
        logger.info("%s: job %s completed in %.0fs", descriptor.model_id, snapshot.job_id, latency)
        return QueryOutcome(
            model=descriptor.model_id,
            status="success",
            response=snapshot.text or "",
            latency_sec=latency,
            request_id=snapshot.job_id,
            citations=dedupe_citations(snapshot.citations),
        )

    reason = snapshot.error or f"Research {snapshot.status}"
    logger.warning("%s: job %s %s: %s", descriptor.model_id, snapshot.job_id, snapshot.status, reason)
    return QueryOutcome(
        model=descriptor.model_id,
        status="error",
        error=reason,
        latency_sec=latency,
        request_id=snapshot.job_id,
    )
