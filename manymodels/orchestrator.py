"""Scheduling core: fan a prompt out over the fast, slow and background tiers."""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from rich.console import Console

from manymodels.errors import ConfigurationError
from manymodels.invoker import invoke
from manymodels.live_document import LiveDocument
from manymodels.models import (
    ImageAttachment,
    JobProgressEvent,
    ModelDescriptor,
    QueryOutcome,
    RunResult,
)
from manymodels.poller import run_job
from manymodels.progress import ProgressDisplay, ProgressTracker
from manymodels.providers.base import AIProvider, JobBackend, ProviderError
from manymodels.registry import ModelRegistry
from manymodels.synthesis import SynthesisStageManager

logger = logging.getLogger(__name__)

FAST_COMPLETE = "fast-complete"
SYNC_COMPLETE = "sync-complete"
ASYNC_COMPLETE = "async-complete"

ProviderFactory = Callable[[ModelDescriptor], AIProvider]
JobBackendFactory = Callable[[ModelDescriptor], JobBackend]


@dataclass
class QueryOptions:
    timeout_sec: int | None = None          # overrides the default for fast models
    model_timeouts: dict[str, int] = field(default_factory=dict)
    image: ImageAttachment | None = None
    context: str | None = None              # background context, prepended for synchronous models
    metadata: dict[str, str] = field(default_factory=dict)


class TierTriggers:
    """Fire-once observer over the tracker's tier predicates.

    Call :meth:`evaluate` after every terminal transition. It returns the
    triggers that became true since the last call, in dependency order.
    """

    def __init__(self, has_background: bool) -> None:
        self._checks: list[tuple[str, Callable[[ProgressTracker], bool]]] = [
            (FAST_COMPLETE, ProgressTracker.all_fast_complete),
            (SYNC_COMPLETE, ProgressTracker.all_sync_complete),
        ]
        if has_background:
            self._checks.append((ASYNC_COMPLETE, ProgressTracker.all_background_complete))
        self.fired: list[str] = []

    def evaluate(self, tracker: ProgressTracker) -> list[str]:
        newly: list[str] = []
        for name, predicate in self._checks:
            if name in self.fired:
                continue
            if predicate(tracker):
                self.fired.append(name)
                newly.append(name)
        return newly


class _QueryRun:
    """State for one call to :meth:`Orchestrator.run`."""

    def __init__(
        self,
        prompt: str,
        descriptors: list[ModelDescriptor],
        options: QueryOptions,
        document: LiveDocument | None,
        synthesis: SynthesisStageManager | None,
    ) -> None:
        self.prompt = prompt
        self.descriptors = descriptors
        self.options = options
        self.document = document
        self.synthesis = synthesis
        self.tracker = ProgressTracker(descriptors)
        self.triggers = TierTriggers(has_background=any(d.background for d in descriptors))
        self.outcomes: dict[str, QueryOutcome] = {}

    @property
    def sync_prompt(self) -> str:
        if self.options.context:
            return f"{self.options.context}{self.prompt}"
        return self.prompt

    def timeout_for(self, descriptor: ModelDescriptor) -> int:
        if descriptor.model_id in self.options.model_timeouts:
            return self.options.model_timeouts[descriptor.model_id]
        if descriptor.slow or self.options.timeout_sec is None:
            return descriptor.timeout_sec
        return self.options.timeout_sec

    def complete(self, descriptor: ModelDescriptor, outcome: QueryOutcome) -> None:
        """Record a terminal outcome, update its section, then check tier triggers."""
        self.outcomes[descriptor.model_id] = outcome
        self.tracker.set_status(descriptor.model_id, "querying")
        self.tracker.set_status(descriptor.model_id, outcome.status)
        if self.document is not None:
            self.document.update_model_section(descriptor.model_id, outcome)
        self.evaluate_triggers()

    def _pending_label(self) -> str:
        pending = [d for d in self.descriptors if not self.tracker[d.model_id].done]
        if any(d.slow for d in pending):
            return "waiting for slow models..."
        if any(d.background for d in pending):
            return "waiting for deep research..."
        return "waiting for more models..."

    def evaluate_triggers(self) -> None:
        fired = self.triggers.evaluate(self.tracker)
        if not fired:
            return
        done = len(self.tracker.completed_models())
        for name in fired:
            logger.info("Trigger %s fired (%d/%d models complete)", name, done, len(self.descriptors))
        if self.synthesis is None:
            return

        # Triggers that fire together cover the same outcomes; only the last is worth a stage.
        known = [self.outcomes[d.model_id] for d in self.descriptors if d.model_id in self.outcomes]
        final = self.tracker.all_complete()
        self.synthesis.schedule(
            fired[-1],
            known,
            final=final,
            label=None if final else self._pending_label(),
        )

    def on_job_progress(self, event: JobProgressEvent) -> None:
        self.tracker.set_detail(event.model, event.status.replace("_", " "))
        logger.debug("%s: job %s %s (%.0fs)", event.model, event.job_id, event.status, event.elapsed_sec)
        if self.document is not None:
            self.document.update_model_section(event.model, event)

    async def run_sync(self, descriptor: ModelDescriptor, provider: AIProvider) -> None:
        self.tracker.set_status(descriptor.model_id, "querying")
        outcome = await invoke(
            provider,
            descriptor,
            self.sync_prompt,
            self.timeout_for(descriptor),
            self.options.image,
        )
        self.complete(descriptor, outcome)

    async def run_background(self, descriptor: ModelDescriptor, backend: JobBackend) -> None:
        self.tracker.set_status(descriptor.model_id, "querying")
        if descriptor.model_id in self.options.model_timeouts:
            descriptor = replace(descriptor, timeout_sec=self.options.model_timeouts[descriptor.model_id])
        outcome = await run_job(
            backend,
            descriptor,
            self.prompt,
            on_progress=self.on_job_progress,
            context=self.options.context,
        )
        self.complete(descriptor, outcome)


class Orchestrator:
    """Runs one prompt against many models and aggregates the outcomes.

    The registry, client factories and optional console are shared across
    queries; the live document and synthesis manager belong to one query.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        provider_factory: ProviderFactory,
        job_backend_factory: JobBackendFactory,
        console: Console | None = None,
    ) -> None:
        self._registry = registry
        self._provider_factory = provider_factory
        self._job_backend_factory = job_backend_factory
        self._console = console

    def _build_clients(
        self, descriptors: list[ModelDescriptor]
    ) -> tuple[dict[str, AIProvider | JobBackend], dict[str, QueryOutcome]]:
        clients: dict[str, AIProvider | JobBackend] = {}
        unstarted: dict[str, QueryOutcome] = {}
        for descriptor in descriptors:
            factory = self._job_backend_factory if descriptor.background else self._provider_factory
            try:
                clients[descriptor.model_id] = factory(descriptor)
            except ProviderError as exc:
                logger.warning("Cannot start %s: %s", descriptor.model_id, exc)
                unstarted[descriptor.model_id] = QueryOutcome(
                    model=descriptor.model_id, status="error", error=str(exc)
                )
        return clients, unstarted

    async def run(
        self,
        prompt: str,
        model_ids: list[str],
        options: QueryOptions | None = None,
        document: LiveDocument | None = None,
        synthesis: SynthesisStageManager | None = None,
    ) -> RunResult:
        """Query every resolvable model and return outcomes in request order.

        Raises:
            ConfigurationError: No requested model is known, or none could be started.
            OSError: The live document could not be written.
        """
        options = options or QueryOptions()
        descriptors, warnings = self._registry.resolve(model_ids)
        if not descriptors:
            raise ConfigurationError(f"No known models in request: {', '.join(model_ids) or '(empty)'}")

        clients, unstarted = self._build_clients(descriptors)
        if not clients:
            reasons = "; ".join(o.error or "" for o in unstarted.values())
            raise ConfigurationError(f"No model could be started: {reasons}")

        run = _QueryRun(prompt, descriptors, options, document, synthesis)
        tiers = {tier: [d.model_id for d in descriptors if d.tier == tier] for tier in ("fast", "slow", "background")}
        logger.info(
            "Querying %d models (fast: %s, slow: %s, background: %s)",
            len(descriptors),
            ", ".join(tiers["fast"]) or "-",
            ", ".join(tiers["slow"]) or "-",
            ", ".join(tiers["background"]) or "-",
        )

        if document is not None:
            document.init(prompt, [d.model_id for d in descriptors], options.metadata)

        by_id = {d.model_id: d for d in descriptors}
        for model_id, outcome in unstarted.items():
            run.complete(by_id[model_id], outcome)
        # Empty tiers are vacuously complete.
        run.evaluate_triggers()

        background = [
            asyncio.create_task(run.run_background(d, clients[d.model_id]))
            for d in descriptors
            if d.background and d.model_id in clients
        ]
        sync = [
            asyncio.create_task(run.run_sync(d, clients[d.model_id]))
            for d in descriptors
            if not d.background and d.model_id in clients
        ]

        display = (
            ProgressDisplay(run.tracker, self._console)
            if self._console is not None
            else contextlib.nullcontext()
        )
        async with display:
            try:
                await asyncio.gather(*background, *sync)
                if synthesis is not None:
                    await synthesis.drain()
            except BaseException:
                tasks = background + sync
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                if synthesis is not None:
                    await synthesis.cancel()
                raise

        return RunResult(
            outcomes=[run.outcomes[d.model_id] for d in descriptors],
            warnings=warnings,
            triggers=list(run.triggers.fired),
            synthesis=synthesis.latest if synthesis is not None else None,
            synthesis_final=synthesis.latest_is_final if synthesis is not None else False,
        )
