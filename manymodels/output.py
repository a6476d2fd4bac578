"""Persist query results to disk and print them with Rich."""

import json
import logging
import re
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

from manymodels.models import Citation, QueryOutcome, QueryRecord

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

RESPONSES_FILE = "responses.json"


def _slug(text: str, max_len: int = 50) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len].rstrip("-")


def default_output_dir(prompt: str, base_dir: Path) -> Path:
    timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M")
    return base_dir / f"{timestamp}-{_slug(prompt)}"


def _outcome_from_dict(raw: dict) -> QueryOutcome:
    citations = tuple(Citation(**c) for c in raw.get("citations") or ())
    return QueryOutcome(
        model=raw["model"],
        status=raw["status"],
        response=raw.get("response"),
        error=raw.get("error"),
        latency_sec=raw.get("latency_sec"),
        token_count=raw.get("token_count"),
        request_id=raw.get("request_id"),
        citations=citations,
    )


def render_individual(outcome: QueryOutcome) -> str:
    """Standalone markdown for one model's outcome."""
    lines = [f"# {outcome.model}", ""]
    if outcome.ok:
        lines.append(outcome.response or "")
        if outcome.citations:
            lines += ["", "### Sources", ""]
            lines += [f"{i}. [{c.title}]({c.url})" for i, c in enumerate(outcome.citations, start=1)]
        footer = f"_Latency: {outcome.latency_sec or 0:.1f}s"
        if outcome.token_count:
            footer += f" | Tokens: {outcome.token_count}"
        lines += ["", "---", footer + "_"]
    else:
        lines.append(f"**{outcome.status.title()}**: {outcome.error}")
    return "\n".join(lines) + "\n"


def save_results(output_dir: Path, record: QueryRecord) -> Path:
    """Write responses.json plus one individual/<model>.md per outcome.

    Returns:
        Path to responses.json.
    """
    individual_dir = output_dir / "individual"
    individual_dir.mkdir(parents=True, exist_ok=True)

    responses_path = output_dir / RESPONSES_FILE
    payload = {
        "prompt": record.prompt,
        "timestamp": record.timestamp,
        "results": [asdict(o) for o in record.outcomes],
    }
    responses_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    for outcome in record.outcomes:
        (individual_dir / f"{outcome.model}.md").write_text(render_individual(outcome), encoding="utf-8")

    logger.info("Responses saved to: %s", output_dir)
    return responses_path


def load_responses(output_dir: Path) -> QueryRecord:
    """Read a saved query back.

    Raises:
        FileNotFoundError: No responses.json in output_dir.
    """
    responses_path = output_dir / RESPONSES_FILE
    if not responses_path.exists():
        raise FileNotFoundError(f"No {RESPONSES_FILE} found in {output_dir}")
    raw = json.loads(responses_path.read_text(encoding="utf-8"))
    return QueryRecord(
        prompt=raw["prompt"],
        timestamp=raw["timestamp"],
        outcomes=[_outcome_from_dict(r) for r in raw["results"]],
    )


def format_results_for_display(outcomes: list[QueryOutcome]) -> str:
    successful = [o for o in outcomes if o.ok]
    failed = [o for o in outcomes if not o.ok]

    lines = ["## Response Summary", "", f"- **{len(successful)}** models responded successfully"]
    if failed:
        lines.append(f"- **{len(failed)}** models failed:")
        lines += [f"  - {o.model}: {o.error}" for o in failed]
    lines += ["", "## Individual Responses", ""]

    for outcome in successful:
        lines += [f"### {outcome.model}", "", outcome.response or "[No response]", ""]
        if outcome.latency_sec:
            footer = f"_Latency: {outcome.latency_sec:.1f}s"
            if outcome.token_count:
                footer += f" | Tokens: {outcome.token_count}"
            lines += [footer + "_", ""]
        lines += ["---", ""]
    return "\n".join(lines)


def print_summary(outcomes: list[QueryOutcome]) -> None:
    """Print a per-model status/latency table."""
    console.print(Rule("[bold cyan]Results Summary[/bold cyan]"))
    table = Table(show_header=True, header_style="bold")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Error", overflow="fold")

    styles = {"success": "green", "error": "red", "timeout": "yellow"}
    for outcome in outcomes:
        table.add_row(
            escape(outcome.model),
            f"[{styles[outcome.status]}]{outcome.status}[/]",
            f"{outcome.latency_sec:.1f}s" if outcome.latency_sec is not None else "N/A",
            str(outcome.token_count) if outcome.token_count else "",
            escape(outcome.error.splitlines()[0][:120]) if outcome.error else "",
        )
    console.print(table)

    successful = sum(1 for o in outcomes if o.ok)
    console.print(f"[green]{successful} successful[/green]", end="")
    if successful < len(outcomes):
        console.print(f", [red]{len(outcomes) - successful} failed[/red]")
    else:
        console.print()
