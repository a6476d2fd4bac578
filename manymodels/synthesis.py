"""Staged synthesis: build the cross-model prompt and apply results in trigger order."""

import asyncio
import logging

from config.config_loader import PromptsConfig
from manymodels.live_document import LiveDocument
from manymodels.models import QueryOutcome
from manymodels.providers.base import AIProvider

logger = logging.getLogger(__name__)

SYNTHESIS_DEPTHS = ("brief", "executive", "full")


def _format_responses(outcomes: list[QueryOutcome]) -> str:
    """Format successful responses into one block for the synthesizer."""
    parts = [f"## {o.model} Response\n\n{o.response}\n" for o in outcomes if o.ok and o.response]
    return "\n---\n\n".join(parts)


def build_synthesis_prompt(
    prompt: str,
    outcomes: list[QueryOutcome],
    depth: str,
    prompts: PromptsConfig,
) -> str:
    """Fill the synthesis template with the successful responses.

    Raises:
        ValueError: Unknown depth.
    """
    if depth not in prompts.depths:
        raise ValueError(f"Unknown synthesis depth: {depth} (expected one of {', '.join(prompts.depths)})")

    successful = [o for o in outcomes if o.ok and o.response]
    if not successful:
        return "No successful responses to synthesise."

    return prompts.synthesis.format(
        count=len(successful),
        prompt=prompt,
        responses=_format_responses(successful),
        depth_instructions=prompts.depths[depth].strip(),
    )


class SynthesisStageManager:
    """Decides when a synthesis runs and makes sure the newest one wins.

    Each call reserves a sequence number synchronously, so the order of
    :meth:`schedule` calls is the order in which stages supersede each other.
    Text generation runs concurrently; document writes go through a lock and
    a stage older than the last applied write is discarded.
    """

    def __init__(
        self,
        synthesizer: AIProvider,
        prompt: str,
        prompts: PromptsConfig,
        depth: str = "executive",
        document: LiveDocument | None = None,
        preliminary_synthesizer: AIProvider | None = None,
        timeout_sec: float = 300,
    ) -> None:
        self._synthesizer = synthesizer
        self._preliminary = preliminary_synthesizer
        self._prompt = prompt
        self._prompts = prompts
        self._depth = depth
        self._document = document
        self._timeout_sec = timeout_sec
        self._lock = asyncio.Lock()
        self._next_seq = 0
        self._applied_seq = -1
        self._pending: list[asyncio.Task] = []
        self.latest: str | None = None
        self.latest_is_final = False

    def schedule(
        self,
        trigger: str,
        outcomes: list[QueryOutcome],
        *,
        final: bool = False,
        label: str | None = None,
    ) -> asyncio.Task:
        """Start a stage in the background and return its task."""
        seq = self._next_seq
        self._next_seq += 1
        task = asyncio.create_task(self._run_stage(seq, trigger, list(outcomes), final, label))
        self._pending.append(task)
        return task

    async def maybe_synthesize(
        self,
        trigger: str,
        outcomes: list[QueryOutcome],
        *,
        final: bool = False,
        label: str | None = None,
    ) -> str | None:
        """Run one stage and wait for it. Returns the applied text, or None if skipped."""
        return await self.schedule(trigger, outcomes, final=final, label=label)

    async def drain(self) -> None:
        """Wait for every scheduled stage. Document write errors propagate."""
        pending, self._pending = self._pending, []
        if pending:
            await asyncio.gather(*pending)

    async def cancel(self) -> None:
        """Cancel every scheduled stage and wait for them to finish unwinding."""
        pending, self._pending = self._pending, []
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _run_stage(
        self,
        seq: int,
        trigger: str,
        outcomes: list[QueryOutcome],
        final: bool,
        label: str | None,
    ) -> str | None:
        successful = [o for o in outcomes if o.ok]
        if not successful:
            logger.info("Synthesis stage %s skipped: no successful responses", trigger)
            return None

        synthesizer = self._synthesizer if final or self._preliminary is None else self._preliminary
        try:
            synthesis_prompt = build_synthesis_prompt(self._prompt, successful, self._depth, self._prompts)
        except (ValueError, KeyError, IndexError) as exc:
            logger.warning("Synthesis stage %s skipped: bad synthesis template or depth: %s", trigger, exc)
            return None
        logger.info(
            "Synthesis stage %s: %d responses via %s", trigger, len(successful), synthesizer.name()
        )

        try:
            generation = await asyncio.wait_for(
                synthesizer.generate(synthesis_prompt), timeout=self._timeout_sec
            )
        except TimeoutError:
            logger.warning("Synthesis stage %s timed out after %ss", trigger, self._timeout_sec)
            return None
        except Exception as exc:
            logger.warning("Synthesis stage %s failed: %s", trigger, exc)
            return None

        text = generation.text.strip()
        if not text:
            logger.warning("Synthesis stage %s: %s returned empty content", trigger, synthesizer.name())
            return None

        async with self._lock:
            if seq < self._applied_seq:
                logger.info("Synthesis stage %s superseded by a later stage, discarding", trigger)
                return None
            self._applied_seq = seq
            self.latest = text
            self.latest_is_final = final
            if self._document is not None:
                self._document.update_synthesis_section(text, is_preliminary=not final, label=label)
        return text
