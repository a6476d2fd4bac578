"""Load settings.yaml into typed dataclasses. Reports which provider keys are set."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_DEFAULT_BACKGROUND_TIMEOUT_SEC = 3600
_DEFAULT_POLL_INTERVAL_SEC = 10.0


@dataclass
class ProviderConfig:
    name: str                   # capability tag: "openai", "anthropic", "openai-deep", ...
    api_key_env: str
    base_url: str | None = None


@dataclass
class ModelConfig:
    name: str                   # registry key, e.g. "gpt-5.2"
    provider: str
    model: str                  # identifier sent to the provider
    display_name: str
    vision: bool = False
    slow: bool = False
    deep_research: bool = False
    web_search: bool = False
    timeout_sec: int | None = None
    poll_interval_sec: float = _DEFAULT_POLL_INTERVAL_SEC
    max_tokens: int | None = None


@dataclass
class PresetConfig:
    name: str
    description: str
    models: list[str] = field(default_factory=list)
    timeout_sec: int | None = None


@dataclass
class PromptsConfig:
    synthesis: str
    depths: dict[str, str] = field(default_factory=dict)


@dataclass
class DefaultsConfig:
    preset: str
    timeout_sec: int
    max_tokens: int
    synthesis_depth: str
    output_dir: Path
    synthesizer: str
    preliminary_synthesizer: str | None = None
    synthesis_timeout_sec: int = 300
    long_prompt_chars: int = 500


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    providers: dict[str, ProviderConfig]
    models: dict[str, ModelConfig]
    presets: dict[str, PresetConfig]
    prompts: PromptsConfig
    available_providers: set[str] = field(default_factory=set)


def _load_model(name: str, raw: dict) -> ModelConfig:
    deep_research = bool(raw.get("deep_research", False))
    timeout = raw.get("timeout_sec")
    if timeout is None and deep_research:
        timeout = _DEFAULT_BACKGROUND_TIMEOUT_SEC
    return ModelConfig(
        name=name,
        provider=str(raw["provider"]),
        model=str(raw["model"]),
        display_name=str(raw.get("display_name", name)),
        vision=bool(raw.get("vision", False)),
        slow=bool(raw.get("slow", False)),
        deep_research=deep_research,
        web_search=bool(raw.get("web_search", False)),
        timeout_sec=int(timeout) if timeout is not None else None,
        poll_interval_sec=float(raw.get("poll_interval_sec", _DEFAULT_POLL_INTERVAL_SEC)),
        max_tokens=int(raw["max_tokens"]) if "max_tokens" in raw else None,
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs which providers have API keys but does not raise; a model whose
    provider key is missing fails individually when its client is built.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    preliminary = defaults_raw.get("preliminary_synthesizer")
    defaults = DefaultsConfig(
        preset=str(defaults_raw["preset"]),
        timeout_sec=int(defaults_raw["timeout_sec"]),
        max_tokens=int(defaults_raw["max_tokens"]),
        synthesis_depth=str(defaults_raw.get("synthesis_depth", "executive")),
        output_dir=Path(defaults_raw["output_dir"]),
        synthesizer=str(defaults_raw["synthesizer"]),
        preliminary_synthesizer=str(preliminary) if preliminary else None,
        synthesis_timeout_sec=int(defaults_raw.get("synthesis_timeout_sec", 300)),
        long_prompt_chars=int(defaults_raw.get("long_prompt_chars", 500)),
    )

    prompts = PromptsConfig(
        synthesis=raw["prompts"]["synthesis"],
        depths={k: str(v) for k, v in raw.get("synthesis_depths", {}).items()},
    )

    presets = {
        name: PresetConfig(
            name=name,
            description=str(preset_raw.get("description", "")),
            models=list(preset_raw.get("models", [])),
            timeout_sec=int(preset_raw["timeout_sec"]) if "timeout_sec" in preset_raw else None,
        )
        for name, preset_raw in raw.get("presets", {}).items()
    }

    models = {name: _load_model(name, model_raw) for name, model_raw in raw["models"].items()}

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw["providers"].items():
        providers[provider_name] = ProviderConfig(
            name=provider_name,
            api_key_env=provider_raw["api_key_env"],
            base_url=provider_raw.get("base_url"),
        )

        api_key = os.environ.get(provider_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.debug("Provider available: %s", provider_name)
        else:
            logger.debug(
                "Provider unavailable (no API key): %s, set %s in .env",
                provider_name,
                provider_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        providers=providers,
        models=models,
        presets=presets,
        prompts=prompts,
        available_providers=available_providers,
    )
