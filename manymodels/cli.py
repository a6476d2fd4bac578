"""Click CLI: resolve models, run the orchestrator, persist and report results."""

import asyncio
import functools
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.rule import Rule

from config.config_loader import AppConfig, load_config
from manymodels.context import read_context
from manymodels.errors import ConfigurationError
from manymodels.healthcheck import run_health_checks
from manymodels.live_document import LiveDocument
from manymodels.models import ImageAttachment, QueryRecord
from manymodels.notify import notify_query_complete
from manymodels.orchestrator import Orchestrator, QueryOptions
from manymodels.output import (
    default_output_dir,
    format_results_for_display,
    load_responses,
    print_summary,
    save_results,
)
from manymodels.providers import build_job_backend, build_provider
from manymodels.providers.base import AIProvider, ProviderError
from manymodels.registry import ModelRegistry
from manymodels.synthesis import SYNTHESIS_DEPTHS, SynthesisStageManager, build_synthesis_prompt

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit() -> AppConfig:
    try:
        return load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        sys.exit(1)


def _parse_timeouts(values: tuple[str, ...]) -> tuple[int | None, dict[str, int]]:
    """Split --timeout values into a default and per-model overrides.

    Each value is either SECONDS or MODEL=SECONDS.
    """
    default: int | None = None
    per_model: dict[str, int] = {}
    for value in values:
        name, sep, seconds = value.rpartition("=")
        try:
            parsed = int(seconds)
        except ValueError:
            raise click.BadParameter(f"expected SECONDS or MODEL=SECONDS, got {value!r}") from None
        if parsed <= 0:
            raise click.BadParameter(f"timeout must be positive, got {value!r}")
        if sep:
            per_model[name.strip()] = parsed
        else:
            default = parsed
    return default, per_model


def _determine_models(
    registry: ModelRegistry,
    config: AppConfig,
    models_arg: str | None,
    preset_arg: str | None,
) -> tuple[list[str], int | None, str]:
    """Returns (model_ids, preset_timeout, selection_label). --models overrides presets."""
    if models_arg:
        return [m.strip() for m in models_arg.split(",") if m.strip()], None, "custom"
    preset_name = preset_arg or config.defaults.preset
    preset = registry.preset(preset_name)
    return registry.preset_models(preset_name), preset.timeout_sec, preset_name


def _build_synthesis(
    registry: ModelRegistry,
    config: AppConfig,
    prompt: str,
    depth: str,
    document: LiveDocument | None,
) -> SynthesisStageManager | None:
    """Build the stage manager, or None (with a warning) if no synthesizer can be built."""

    def _provider(model_id: str | None) -> AIProvider | None:
        descriptor = registry.describe(model_id) if model_id else None
        if descriptor is None or descriptor.background:
            if model_id:
                logger.warning("Synthesizer %s is not a synchronous model", model_id)
            return None
        try:
            return build_provider(descriptor, config)
        except ProviderError as exc:
            logger.warning("Synthesizer unavailable: %s", exc)
            return None

    synthesizer = _provider(config.defaults.synthesizer)
    preliminary = _provider(config.defaults.preliminary_synthesizer)
    if synthesizer is None:
        synthesizer, preliminary = preliminary, None
    if synthesizer is None:
        logger.warning("No synthesizer available, continuing without synthesis")
        return None

    return SynthesisStageManager(
        synthesizer=synthesizer,
        prompt=prompt,
        prompts=config.prompts,
        depth=depth,
        document=document,
        preliminary_synthesizer=preliminary,
        timeout_sec=config.defaults.synthesis_timeout_sec,
    )


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(verbose: bool) -> None:
    """Ask Many Models -- query several AI models in parallel and synthesise their answers.

    \b
    Examples:
      ask-many-models query "Rust or Go for a CLI?"
      ask-many-models query --preset comprehensive -s "Explain CRDTs"
      ask-many-models query -m gpt-5.2,gemini-3-pro -i diagram.png "What is wrong here?"
      ask-many-models query -p deep-research -c ./notes "State of solid-state batteries"
    """
    # Model responses may contain characters the Windows console codepage can't encode.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)


@main.command()
@click.argument("prompt")
@click.option("-p", "--preset", default=None, help="Named preset (default: from config)")
@click.option("-m", "--models", default=None, help="Comma-separated model list, overrides --preset")
@click.option("-t", "--timeout", "timeouts", multiple=True,
              help="Timeout in seconds, or MODEL=SECONDS for one model. Repeatable.")
@click.option("-o", "--output", "output_path", default=None, type=click.Path(path_type=Path),
              help="Directory for responses.json and individual responses")
@click.option("-l", "--live-file", default=None, type=click.Path(path_type=Path),
              help="Markdown file updated live as responses arrive (default: <output>/live.md)")
@click.option("-i", "--image", default=None, type=click.Path(path_type=Path),
              help="Image to include with the prompt (vision models only)")
@click.option("-c", "--context", "context_path", default=None, type=click.Path(path_type=Path),
              help="Context file or folder prepended to the prompt")
@click.option("--no-save", is_flag=True, help="Do not save responses to disk")
@click.option("-s", "--synthesise", "--synthesize", "synthesise", is_flag=True,
              help="Run staged automatic synthesis")
@click.option("--synthesis-depth", type=click.Choice(SYNTHESIS_DEPTHS), default=None,
              help="Synthesis depth (default: from config)")
@click.option("--no-notify", is_flag=True, help="Skip the desktop notification")
def query(
    prompt: str,
    preset: str | None,
    models: str | None,
    timeouts: tuple[str, ...],
    output_path: Path | None,
    live_file: Path | None,
    image: Path | None,
    context_path: Path | None,
    no_save: bool,
    synthesise: bool,
    synthesis_depth: str | None,
    no_notify: bool,
) -> None:
    """Send PROMPT to multiple models."""
    config = _load_config_or_exit()
    registry = ModelRegistry.from_config(config)
    default_timeout, model_timeouts = _parse_timeouts(timeouts)

    if image is not None and not image.is_file():
        console.print(f"[bold red]Error:[/bold red] Image file not found: {image}")
        sys.exit(1)

    try:
        model_ids, preset_timeout, selection = _determine_models(registry, config, models, preset)
    except ConfigurationError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)

    context = read_context(context_path) if context_path else None
    output_dir = output_path or default_output_dir(prompt, config.defaults.output_dir)
    if live_file is None and not no_save:
        live_file = output_dir / "live.md"

    metadata: dict[str, str] = {"Models": f"{', '.join(model_ids)} ({selection})"}
    if image is not None:
        metadata["Image"] = image.name
    if context_path is not None:
        metadata["Context"] = str(context_path)

    document = LiveDocument(live_file, config.defaults.long_prompt_chars) if live_file else None
    depth = synthesis_depth or config.defaults.synthesis_depth
    synthesis = _build_synthesis(registry, config, prompt, depth, document) if synthesise else None

    options = QueryOptions(
        timeout_sec=default_timeout or preset_timeout,
        model_timeouts=model_timeouts,
        image=ImageAttachment.from_path(image) if image is not None else None,
        context=context or None,
        metadata=metadata,
    )
    orchestrator = Orchestrator(
        registry,
        provider_factory=functools.partial(build_provider, config=config),
        job_backend_factory=functools.partial(build_job_backend, config=config),
        console=console,
    )

    console.print(f"\n[bold cyan]Ask Many Models[/bold cyan]: {len(model_ids)} models ({selection})")
    console.print(f"Prompt: [italic]{escape(prompt[:80])}{'...' if len(prompt) > 80 else ''}[/italic]")
    if document is not None:
        console.print(f"Live file: {document.path}")
    console.print()

    try:
        result = asyncio.run(
            orchestrator.run(prompt, model_ids, options, document=document, synthesis=synthesis)
        )
    except ConfigurationError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    except OSError as exc:
        console.print(f"[bold red]Error:[/bold red] Could not write live document: {escape(str(exc))}")
        sys.exit(1)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    if not no_save:
        record = QueryRecord(
            prompt=prompt,
            timestamp=datetime.now(timezone.utc).isoformat(),
            outcomes=result.outcomes,
        )
        save_results(output_dir, record)
        console.print(f"\n[dim]Saved to: {output_dir}[/dim]")

    print_summary(result.outcomes)

    if result.synthesis:
        label = "Synthesis" if result.synthesis_final else "Synthesis (preliminary)"
        console.print(Rule(f"[bold green]{label}[/bold green]"))
        console.print(Markdown(result.synthesis))

    if not no_notify:
        successes = sum(1 for o in result.outcomes if o.ok)
        notify_query_complete(len(result.outcomes), successes, str(document.path) if document else None)


@main.command(name="models")
def list_models() -> None:
    """List available models."""
    registry = ModelRegistry.from_config(_load_config_or_exit())
    for descriptor in registry.list_models():
        flags = [descriptor.tier]
        if descriptor.vision:
            flags.append("vision")
        if descriptor.web_search:
            flags.append("web search")
        console.print(
            f"  [bold]{descriptor.model_id}[/bold] ({descriptor.provider}) "
            f"[dim]{', '.join(flags)}, {descriptor.timeout_sec}s[/dim]"
        )


@main.command(name="presets")
def list_presets() -> None:
    """List available presets."""
    registry = ModelRegistry.from_config(_load_config_or_exit())
    for preset in registry.list_presets():
        console.print(f"  [bold]{preset.name}[/bold]")
        console.print(f"    {preset.description}")
        console.print(f"    Models: {', '.join(preset.models)}\n")


@main.command(name="synthesise")
@click.argument("output_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("-d", "--depth", type=click.Choice(SYNTHESIS_DEPTHS), default=None,
              help="Synthesis depth (default: from config)")
def synthesise_saved(output_dir: Path, depth: str | None) -> None:
    """Print the synthesis prompt for a saved query."""
    config = _load_config_or_exit()
    try:
        record = load_responses(output_dir)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    click.echo(build_synthesis_prompt(record.prompt, record.outcomes, depth or config.defaults.synthesis_depth,
                                      config.prompts))


main.add_command(synthesise_saved, name="synthesize")


@main.command()
@click.argument("output_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
def show(output_dir: Path) -> None:
    """Display responses from a previous query."""
    try:
        record = load_responses(output_dir)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)
    console.print(f"\n[bold]Query:[/bold] {escape(record.prompt)}")
    console.print(f"[dim]{record.timestamp}[/dim]\n")
    console.print(Markdown(format_results_for_display(record.outcomes)))


@main.command(name="list")
@click.option("-n", "--count", default=10, show_default=True, help="Number of recent queries to show")
def list_queries(count: int) -> None:
    """List recent query outputs."""
    base_dir = _load_config_or_exit().defaults.output_dir
    dirs: list[Path] = []
    if base_dir.exists():
        dirs = sorted((d for d in base_dir.iterdir() if (d / "responses.json").exists()), reverse=True)
    if not dirs:
        click.echo("No queries found yet.")
        return
    for directory in dirs[:count]:
        record = load_responses(directory)
        preview = record.prompt[:60] + ("..." if len(record.prompt) > 60 else "")
        click.echo(f"  {directory.name}\n    \"{preview}\"\n")


@main.command()
def check() -> None:
    """Validate API keys by pinging one model per provider."""
    config = _load_config_or_exit()
    registry = ModelRegistry.from_config(config)

    targets = []
    seen: set[str] = set()
    for descriptor in registry.list_models():
        if descriptor.background or descriptor.provider in seen:
            continue
        seen.add(descriptor.provider)
        try:
            targets.append((descriptor, build_provider(descriptor, config)))
        except ProviderError as exc:
            console.print(f"  [red]FAIL[/red] {descriptor.provider}: {escape(str(exc))}")

    results = asyncio.run(run_health_checks(targets))
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {escape(short_err)}")

    if not results or not any(ok for ok, _ in results.values()):
        sys.exit(1)


if __name__ == "__main__":
    main()
