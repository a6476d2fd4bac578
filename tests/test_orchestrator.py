"""Tests for manymodels/orchestrator.py: tiers, triggers, isolation and ordering."""

import asyncio
from pathlib import Path

import pytest

from config.config_loader import PromptsConfig
from manymodels.errors import ConfigurationError
from manymodels.live_document import LiveDocument
from manymodels.models import JobSnapshot, QueryOutcome
from manymodels.orchestrator import (
    ASYNC_COMPLETE,
    FAST_COMPLETE,
    SYNC_COMPLETE,
    Orchestrator,
    QueryOptions,
    TierTriggers,
)
from manymodels.progress import ProgressTracker
from manymodels.providers.base import ProviderError
from manymodels.registry import ModelRegistry
from manymodels.synthesis import SynthesisStageManager
from tests.conftest import FakeJobBackend, MockProvider, make_descriptor


def _orchestrator(providers: dict, backends: dict | None = None, descriptors=None) -> Orchestrator:
    backends = backends or {}
    if descriptors is None:
        descriptors = [make_descriptor(name) for name in providers]
        descriptors += [make_descriptor(name, background=True) for name in backends]

    def provider_factory(descriptor):
        if descriptor.model_id not in providers:
            raise ProviderError(descriptor.model_id, "Missing API key: set MOCK_API_KEY")
        return providers[descriptor.model_id]

    def backend_factory(descriptor):
        return backends[descriptor.model_id]

    return Orchestrator(ModelRegistry(descriptors), provider_factory, backend_factory)


async def test_outcomes_in_request_order():
    orchestrator = _orchestrator({
        "a": MockProvider("a", "from a", delay=0.05),
        "b": MockProvider("b", "from b"),
        "c": MockProvider("c", "from c", delay=0.02),
    })

    result = await orchestrator.run("q", ["a", "b", "c"])

    assert [o.model for o in result.outcomes] == ["a", "b", "c"]
    assert [o.response for o in result.outcomes] == ["from a", "from b", "from c"]
    assert result.warnings == []


async def test_unknown_models_excluded_with_warning():
    orchestrator = _orchestrator({"a": MockProvider("a")})

    result = await orchestrator.run("q", ["a", "nope"])

    assert [o.model for o in result.outcomes] == ["a"]
    assert result.warnings == ["Unknown model: nope"]


async def test_all_unknown_is_configuration_error():
    orchestrator = _orchestrator({"a": MockProvider("a")})
    with pytest.raises(ConfigurationError):
        await orchestrator.run("q", ["x", "y"])


async def test_failure_is_isolated():
    orchestrator = _orchestrator({
        "a": MockProvider("a", "fine"),
        "b": MockProvider("b", error=ProviderError("b", "403 Forbidden")),
        "c": MockProvider("c", error=RuntimeError("connection reset")),
    })

    result = await orchestrator.run("q", ["a", "b", "c"])

    statuses = {o.model: o.status for o in result.outcomes}
    assert statuses == {"a": "success", "b": "error", "c": "error"}
    assert "403" in result.outcomes[1].error


async def test_per_model_timeout_override():
    orchestrator = _orchestrator({
        "a": MockProvider("a", delay=1.0),
        "b": MockProvider("b"),
    })

    result = await orchestrator.run("q", ["a", "b"], QueryOptions(model_timeouts={"a": 0.05}))

    assert result.outcomes[0].status == "timeout"
    assert result.outcomes[1].status == "success"


async def test_per_model_timeout_applies_to_background_job():
    backend = FakeJobBackend([JobSnapshot("job-9", "in_progress")])
    orchestrator = _orchestrator({}, {"deep": backend})

    result = await orchestrator.run("q", ["deep"], QueryOptions(model_timeouts={"deep": 0.05}))

    assert result.outcomes[0].status == "timeout"
    assert result.outcomes[0].request_id == "job-9"


async def test_unbuildable_client_becomes_error_outcome():
    descriptors = [make_descriptor("a"), make_descriptor("b")]
    orchestrator = _orchestrator({"a": MockProvider("a")}, descriptors=descriptors)

    result = await orchestrator.run("q", ["a", "b"])

    assert result.outcomes[0].ok
    assert result.outcomes[1].status == "error"
    assert "Missing API key" in result.outcomes[1].error


async def test_no_buildable_client_is_configuration_error():
    orchestrator = _orchestrator({}, descriptors=[make_descriptor("a")])
    with pytest.raises(ConfigurationError, match="No model could be started"):
        await orchestrator.run("q", ["a"])


async def test_context_prepended_for_sync_models():
    provider = MockProvider("a")
    orchestrator = _orchestrator({"a": provider})

    await orchestrator.run("the question", ["a"], QueryOptions(context="## Background Context\n\n---\n\n"))

    assert provider.prompts == ["## Background Context\n\n---\n\nthe question"]


async def test_fast_then_sync_triggers_stage_synthesis(tmp_path: Path, sample_prompts_config):
    descriptors = [
        make_descriptor("fast-a"),
        make_descriptor("fast-b"),
        make_descriptor("slow-s", slow=True),
    ]
    orchestrator = _orchestrator(
        {
            "fast-a": MockProvider("fast-a", "A says YAML", delay=0.01),
            "fast-b": MockProvider("fast-b", "B says JSON", delay=0.02),
            "slow-s": MockProvider("slow-s", "S says TOML", delay=0.2),
        },
        descriptors=descriptors,
    )
    document = LiveDocument(tmp_path / "live.md")
    synthesizer = MockProvider("synth", "Combined answer")
    synthesis = SynthesisStageManager(synthesizer, "q", sample_prompts_config, document=document)

    result = await orchestrator.run("q", ["fast-a", "fast-b", "slow-s"], document=document, synthesis=synthesis)

    assert result.triggers == [FAST_COMPLETE, SYNC_COMPLETE]
    assert len(synthesizer.prompts) == 2
    first, second = synthesizer.prompts
    assert "A says YAML" in first and "B says JSON" in first
    assert "S says TOML" not in first
    assert "S says TOML" in second
    assert result.synthesis == "Combined answer"
    assert result.synthesis_final

    text = document.path.read_text(encoding="utf-8")
    assert "# Synthesis\n\nCombined answer" in text
    assert "preliminary" not in text
    assert "_Waiting for response..._" not in text


async def test_only_slow_models_skip_empty_fast_stage(sample_prompts_config):
    descriptors = [make_descriptor("slow-s", slow=True)]
    orchestrator = _orchestrator({"slow-s": MockProvider("slow-s", "late")}, descriptors=descriptors)
    synthesizer = MockProvider("synth", "summary")
    synthesis = SynthesisStageManager(synthesizer, "q", sample_prompts_config)

    result = await orchestrator.run("q", ["slow-s"], synthesis=synthesis)

    assert result.triggers == [FAST_COMPLETE, SYNC_COMPLETE]
    assert len(synthesizer.prompts) == 1
    assert result.synthesis == "summary"


async def test_background_runs_in_parallel_with_sync(sample_prompts_config):
    backend = FakeJobBackend([
        JobSnapshot("job-1", "queued"),
        JobSnapshot("job-1", "in_progress"),
        JobSnapshot("job-1", "completed", text="Deep findings"),
    ])
    orchestrator = _orchestrator({"a": MockProvider("a", "quick answer")}, {"deep": backend})
    synthesizer = MockProvider("synth", "merged")
    synthesis = SynthesisStageManager(synthesizer, "q", sample_prompts_config)

    result = await orchestrator.run("q", ["deep", "a"], QueryOptions(context="ctx "), synthesis=synthesis)

    assert [o.model for o in result.outcomes] == ["deep", "a"]
    assert result.outcomes[0].response == "Deep findings"
    assert result.triggers == [FAST_COMPLETE, SYNC_COMPLETE, ASYNC_COMPLETE]
    assert backend.contexts == ["ctx "]
    # fast-complete and sync-complete fire together and share one stage.
    assert len(synthesizer.prompts) == 2
    assert "Deep findings" in synthesizer.prompts[-1]
    assert result.synthesis_final


async def test_live_document_updated_for_every_model(tmp_path: Path):
    orchestrator = _orchestrator({
        "a": MockProvider("a", "alpha"),
        "b": MockProvider("b", error=ProviderError("b", "boom")),
    })
    document = LiveDocument(tmp_path / "live.md")

    await orchestrator.run("q", ["a", "b"], QueryOptions(metadata={"Preset": "custom"}), document=document)

    text = document.path.read_text(encoding="utf-8")
    assert "**Preset:** custom" in text
    assert "alpha" in text
    assert "**Error:** [b] boom" in text


async def test_unwritable_document_raises(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    orchestrator = _orchestrator({"a": MockProvider("a")})

    with pytest.raises(OSError):
        await orchestrator.run("q", ["a"], document=LiveDocument(blocker / "live.md"))


def test_tier_triggers_fire_once():
    tracker = ProgressTracker([make_descriptor("a")])
    triggers = TierTriggers(has_background=False)

    assert triggers.evaluate(tracker) == []
    tracker.set_status("a", "querying")
    tracker.set_status("a", "success")
    assert triggers.evaluate(tracker) == [FAST_COMPLETE, SYNC_COMPLETE]
    assert triggers.evaluate(tracker) == []
    assert triggers.fired == [FAST_COMPLETE, SYNC_COMPLETE]


class _HangingProvider(MockProvider):
    """Never answers; records whether it was cancelled."""

    def __init__(self, provider_name: str) -> None:
        super().__init__(provider_name)
        self.cancelled = False

    async def generate(self, prompt, image=None):
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return await super().generate(prompt, image)


class _FailingDocument(LiveDocument):
    """Raises on the final write for one model."""

    def __init__(self, path: Path, failing_model: str) -> None:
        super().__init__(path)
        self._failing_model = failing_model

    def update_model_section(self, model_id, update):
        if model_id == self._failing_model and isinstance(update, QueryOutcome):
            raise OSError("No space left on device")
        super().update_model_section(model_id, update)


async def test_fast_error_with_slow_pending_stages(tmp_path: Path, sample_prompts_config):
    descriptors = [
        make_descriptor("fast-a"),
        make_descriptor("fast-b"),
        make_descriptor("slow-c", slow=True),
    ]
    orchestrator = _orchestrator(
        {
            "fast-a": MockProvider("fast-a", "A answer", delay=0.01),
            "fast-b": MockProvider("fast-b", error=ProviderError("fast-b", "503 Service Unavailable"), delay=0.02),
            "slow-c": MockProvider("slow-c", "C answer", delay=0.2),
        },
        descriptors=descriptors,
    )
    document = LiveDocument(tmp_path / "live.md")
    synthesizer = MockProvider("synth", "Summary")
    synthesis = SynthesisStageManager(synthesizer, "q", sample_prompts_config, document=document)

    result = await orchestrator.run("q", ["fast-a", "fast-b", "slow-c"], document=document, synthesis=synthesis)

    assert [o.status for o in result.outcomes] == ["success", "error", "success"]
    assert result.triggers == [FAST_COMPLETE, SYNC_COMPLETE]
    assert len(synthesizer.prompts) == 2
    first, final = synthesizer.prompts
    assert first.startswith("Synthesise 1 answers")
    assert "A answer" in first and "C answer" not in first
    assert final.startswith("Synthesise 2 answers")
    assert result.synthesis_final
    text = document.path.read_text(encoding="utf-8")
    assert text.count("# Synthesis") == 1
    assert "preliminary" not in text


@pytest.mark.parametrize(
    "prompts, depth",
    [
        (PromptsConfig(synthesis='Answer as JSON: {"key": 1}\n{responses}', depths={"executive": "x"}), "executive"),
        (PromptsConfig(synthesis="{count} {prompt} {responses} {depth_instructions}", depths={"brief": "x"}),
         "executive"),
    ],
)
async def test_bad_synthesis_settings_do_not_abort_query(prompts, depth):
    orchestrator = _orchestrator({"a": MockProvider("a", "fine")})
    synthesizer = MockProvider("synth", "never used")
    synthesis = SynthesisStageManager(synthesizer, "q", prompts, depth=depth)

    result = await orchestrator.run("q", ["a"], synthesis=synthesis)

    assert result.outcomes[0].ok
    assert result.outcomes[0].response == "fine"
    assert result.synthesis is None
    assert synthesizer.prompts == []


async def test_failure_cancels_and_awaits_remaining_work(tmp_path: Path, sample_prompts_config):
    descriptors = [
        make_descriptor("fast-a"),
        make_descriptor("slow-s", slow=True),
        make_descriptor("slow-x", slow=True),
    ]
    hanging = _HangingProvider("slow-x")
    orchestrator = _orchestrator(
        {
            "fast-a": MockProvider("fast-a", "A answer"),
            "slow-s": MockProvider("slow-s", "S answer", delay=0.05),
            "slow-x": hanging,
        },
        descriptors=descriptors,
    )
    slow_synthesizer = _HangingProvider("synth")
    synthesis = SynthesisStageManager(slow_synthesizer, "q", sample_prompts_config)

    with pytest.raises(OSError):
        await orchestrator.run(
            "q",
            ["fast-a", "slow-s", "slow-x"],
            document=_FailingDocument(tmp_path / "live.md", "slow-s"),
            synthesis=synthesis,
        )

    assert hanging.cancelled
    assert slow_synthesizer.cancelled
