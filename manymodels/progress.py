"""Per-query progress state machine and its live one-line rendering."""

import asyncio
import logging
import time
from collections.abc import Iterable

from rich.console import Console
from rich.live import Live
from rich.text import Text

from manymodels.models import TERMINAL_STATES, ModelDescriptor, ModelProgress, ProgressState

logger = logging.getLogger(__name__)

_ICONS: dict[str, tuple[str, str]] = {
    "pending": ("○", "bright_black"),
    "querying": ("◐", "yellow"),
    "success": ("✓", "green"),
    "error": ("✗", "red"),
    "timeout": ("⏱", "red"),
}

_ALLOWED: dict[str, set[str]] = {
    "pending": {"querying"},
    "querying": set(TERMINAL_STATES),
}


def format_elapsed(seconds: float) -> str:
    total = int(seconds)
    mins, secs = divmod(total, 60)
    return f"{mins}m {secs}s" if mins > 0 else f"{secs}s"


class ProgressTracker:
    """Tracks pending → querying → terminal for every model in one query."""

    def __init__(self, descriptors: Iterable[ModelDescriptor]) -> None:
        self._started = time.monotonic()
        self._models: dict[str, ModelProgress] = {
            d.model_id: ModelProgress(model=d.model_id, display_name=d.display_name, tier=d.tier)
            for d in descriptors
        }

    def __getitem__(self, model_id: str) -> ModelProgress:
        return self._models[model_id]

    def set_status(self, model_id: str, state: ProgressState) -> None:
        """Advance a model's state. Transitions only move forward.

        Raises:
            KeyError: Unknown model.
            ValueError: Backward transition, or any transition out of a terminal state.
        """
        progress = self._models[model_id]
        if state == progress.state:
            return
        if state not in _ALLOWED.get(progress.state, set()):
            raise ValueError(f"{model_id}: cannot move from {progress.state} to {state}")
        now = time.monotonic()
        if state == "querying":
            progress.started_at = now
        else:
            progress.finished_at = now
        progress.state = state
        logger.debug("%s -> %s", model_id, state)

    def set_detail(self, model_id: str, detail: str) -> None:
        self._models[model_id].detail = detail

    def _tier(self, tier: str) -> list[ModelProgress]:
        return [m for m in self._models.values() if m.tier == tier]

    def all_fast_complete(self) -> bool:
        return all(m.done for m in self._tier("fast"))

    def all_sync_complete(self) -> bool:
        return all(m.done for m in self._models.values() if m.tier != "background")

    def all_background_complete(self) -> bool:
        return all(m.done for m in self._tier("background"))

    def all_complete(self) -> bool:
        return all(m.done for m in self._models.values())

    def completed_models(self) -> list[str]:
        return [m.model for m in self._models.values() if m.done]

    def elapsed(self) -> str:
        return format_elapsed(time.monotonic() - self._started)

    def _render_model(self, progress: ModelProgress) -> Text:
        icon, style = _ICONS[progress.state]
        text = Text()
        text.append(icon, style=style)
        text.append(f" {progress.display_name}")
        if progress.state == "querying":
            if progress.tier == "slow":
                text.append(" (slow)", style="dim")
            elif progress.tier == "background" and progress.detail:
                text.append(f" ({progress.detail})", style="dim")
        return text

    def render(self) -> Text:
        """Build the status line: fast group, then slow, then background. Read-only."""
        groups = [self._tier(tier) for tier in ("fast", "slow", "background")]
        line = Text()
        first = True
        for group in groups:
            if not group:
                continue
            if not first:
                line.append("  |  ", style="dim")
            line.append(Text("  ").join(self._render_model(m) for m in group))
            first = False
        line.append(f"  [{self.elapsed()}]", style="dim")
        return line

    def __rich__(self) -> Text:
        return self.render()


class ProgressDisplay:
    """Refreshes a tracker's status line on a fixed timer while a query runs."""

    def __init__(self, tracker: ProgressTracker, console: Console, interval_sec: float = 0.5) -> None:
        self._tracker = tracker
        self._console = console
        self._interval = interval_sec
        self._live: Live | None = None
        self._task: asyncio.Task | None = None

    async def _tick(self, live: Live) -> None:
        while True:
            live.update(self._tracker.render(), refresh=True)
            await asyncio.sleep(self._interval)

    async def __aenter__(self) -> "ProgressDisplay":
        self._live = Live(self._tracker.render(), console=self._console, auto_refresh=False, transient=True)
        self._live.start()
        self._task = asyncio.create_task(self._tick(self._live))
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._live is not None:
            self._live.stop()
        self._console.print(self._tracker.render())
