"""The live markdown file: one section per model plus a replaceable synthesis."""

import logging
import re
from datetime import datetime
from pathlib import Path

from manymodels.models import JobProgressEvent, QueryOutcome
from manymodels.progress import format_elapsed

logger = logging.getLogger(__name__)

_WAITING = "_Waiting for response..._"
_H1 = re.compile(r"^# ", re.MULTILINE)


def normalise_headings(text: str) -> str:
    """Demote H1 headings in a model response so they don't look like model sections."""
    return _H1.sub("## ", text)


def format_citations(outcome: QueryOutcome) -> str:
    if not outcome.citations:
        return ""
    lines = ["", "---", "", "### Sources", ""]
    lines += [f"{i}. [{c.title}]({c.url})" for i, c in enumerate(outcome.citations, start=1)]
    return "\n".join(lines)


def format_outcome(outcome: QueryOutcome) -> str:
    """Markdown body for a finished model."""
    if outcome.status != "success":
        label = "Timeout" if outcome.status == "timeout" else "Error"
        return f"**{label}:** {outcome.error}"

    body = normalise_headings(outcome.response or "")
    body += format_citations(outcome)
    footer = f"_Latency: {outcome.latency_sec or 0:.1f}s"
    if outcome.token_count:
        footer += f" | Tokens: {outcome.token_count}"
    footer += "_"
    return f"{body}\n\n{footer}"


def format_progress(event: JobProgressEvent) -> str:
    """Markdown body for a background job that is still running."""
    status = event.status.replace("_", " ")
    line = f"_Deep research {status} ({format_elapsed(event.elapsed_sec)} elapsed)"
    if event.job_id:
        line += f" | Job: `{event.job_id}`"
    return line + "_"


class LiveDocument:
    """Single mutable markdown artifact updated as results arrive.

    Sections are kept in memory in request order and the whole file is
    rewritten on every update, so each update replaces exactly one section
    and applying it twice leaves the file unchanged. Write errors propagate.
    """

    def __init__(self, path: Path, long_prompt_chars: int = 500) -> None:
        self.path = path
        self.long_prompt_chars = long_prompt_chars
        self._header = ""
        self._sections: dict[str, str] = {}
        self._synthesis: str | None = None

    @property
    def prompt_path(self) -> Path:
        return self.path.with_name(f"{self.path.stem}.prompt.md")

    def init(
        self,
        prompt: str,
        model_ids: list[str],
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Create the skeleton: header, then one placeholder per model."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        metadata = dict(metadata or {})

        if len(prompt) > self.long_prompt_chars:
            self.prompt_path.write_text(prompt, encoding="utf-8")
            preview = " ".join(prompt.split())[:120]
            prompt_line = f"**Prompt:** [{self.prompt_path.name}]({self.prompt_path.name}) ({len(prompt)} chars): _{preview}..._"
        else:
            prompt_line = f"**Prompt:** {prompt}"

        lines = ["# Multi-Model Query", "", prompt_line, ""]
        for key, value in metadata.items():
            lines += [f"**{key}:** {value}", ""]
        lines += [f"**Time:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", "", "---", ""]

        self._header = "\n".join(lines)
        self._sections = {model_id: _WAITING for model_id in model_ids}
        self._synthesis = None
        self._flush()

    def update_model_section(self, model_id: str, update: QueryOutcome | JobProgressEvent) -> None:
        """Replace one model's section with its latest outcome or job progress."""
        if model_id not in self._sections:
            raise KeyError(f"No section for model: {model_id}")
        if isinstance(update, QueryOutcome):
            body = format_outcome(update)
        else:
            body = format_progress(update)
        if self._sections[model_id] == body:
            return
        self._sections[model_id] = body
        self._flush()

    def update_synthesis_section(self, text: str, is_preliminary: bool, label: str | None = None) -> None:
        """Insert or wholly replace the synthesis section below the header."""
        if is_preliminary:
            heading = f"# Synthesis (preliminary: {label or 'waiting for more models'})"
        else:
            heading = "# Synthesis"
        existed = self._synthesis is not None
        self._synthesis = f"{heading}\n\n{text.strip()}\n\n---\n"
        self._flush()
        logger.info("Synthesis %s: %s", "updated" if existed else "added", self.path)

    def render(self) -> str:
        parts = [self._header]
        if self._synthesis is not None:
            parts.append(self._synthesis)
        for model_id, body in self._sections.items():
            parts.append(f"# {model_id}\n\n---\n\n{body}\n")
        return "\n".join(parts)

    def _flush(self) -> None:
        self.path.write_text(self.render(), encoding="utf-8")
