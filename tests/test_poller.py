"""Tests for manymodels/poller.py: submit once, poll to a terminal state or the deadline."""

from manymodels.models import Citation, JobSnapshot
from manymodels.poller import dedupe_citations, run_job
from manymodels.providers.base import ProviderError
from tests.conftest import FakeJobBackend, make_descriptor


def _deep(**overrides):
    return make_descriptor("deep", background=True, **overrides)


async def test_job_completes_with_progress_events():
    backend = FakeJobBackend([
        JobSnapshot("job-1", "queued"),
        JobSnapshot("job-1", "in_progress"),
        JobSnapshot(
            "job-1",
            "completed",
            text="Findings",
            citations=(
                Citation("A", "https://a.example"),
                Citation("A again", "https://a.example"),
                Citation("B", "https://b.example"),
            ),
        ),
    ])
    events = []

    outcome = await run_job(backend, _deep(), "research this", on_progress=events.append)

    assert [e.status for e in events] == ["queued", "in_progress", "completed"]
    assert all(e.job_id == "job-1" for e in events)
    assert backend.submit_calls == 1
    assert outcome.status == "success"
    assert outcome.response == "Findings"
    assert outcome.request_id == "job-1"
    assert [c.url for c in outcome.citations] == ["https://a.example", "https://b.example"]
    assert outcome.citations[0].title == "A"


async def test_job_failed():
    backend = FakeJobBackend([
        JobSnapshot("job-2", "in_progress"),
        JobSnapshot("job-2", "failed", error="quota exceeded"),
    ])
    outcome = await run_job(backend, _deep(), "q")

    assert outcome.status == "error"
    assert outcome.error == "quota exceeded"
    assert outcome.request_id == "job-2"


async def test_job_cancelled_without_message():
    backend = FakeJobBackend([JobSnapshot("job-3", "cancelled")])
    outcome = await run_job(backend, _deep(), "q")

    assert outcome.status == "error"
    assert outcome.error == "Research cancelled"
    assert backend.poll_calls == 0


async def test_job_deadline_is_timeout():
    backend = FakeJobBackend([JobSnapshot("job-4", "in_progress")])
    outcome = await run_job(backend, _deep(timeout_sec=0.1), "q")

    assert outcome.status == "timeout"
    assert "Timed out after" in outcome.error
    assert outcome.request_id == "job-4"
    assert backend.submit_calls == 1
    assert backend.poll_calls > 0


async def test_submit_failure_is_error():
    backend = FakeJobBackend([], submit_error=ProviderError("deep", "model not found"))
    events = []
    outcome = await run_job(backend, _deep(), "q", on_progress=events.append)

    assert outcome.status == "error"
    assert "model not found" in outcome.error
    assert outcome.request_id is None
    assert events == []


async def test_context_forwarded_to_backend():
    backend = FakeJobBackend([JobSnapshot("job-5", "completed", text="done")])
    await run_job(backend, _deep(), "q", context="## Background Context")
    assert backend.contexts == ["## Background Context"]


def test_dedupe_citations_keeps_first_title():
    citations = [Citation("First", "https://x"), Citation("Second", "https://x")]
    assert dedupe_citations(citations) == (Citation("First", "https://x"),)
