"""Immutable model registry built once from settings.yaml."""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from config.config_loader import AppConfig, PresetConfig
from manymodels.errors import ConfigurationError
from manymodels.models import ModelDescriptor

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Read-only lookup from model identifier to capability metadata.

    Build it once per process with :meth:`from_config` and pass it to every
    component that needs it.
    """

    def __init__(
        self,
        descriptors: Iterable[ModelDescriptor],
        presets: Mapping[str, PresetConfig] | None = None,
    ) -> None:
        self._descriptors: Mapping[str, ModelDescriptor] = MappingProxyType(
            {d.model_id: d for d in descriptors}
        )
        self._presets: Mapping[str, PresetConfig] = MappingProxyType(dict(presets or {}))

    @classmethod
    def from_config(cls, config: AppConfig) -> "ModelRegistry":
        descriptors = [
            ModelDescriptor(
                model_id=m.name,
                provider=m.provider,
                api_model=m.model,
                display_name=m.display_name,
                timeout_sec=m.timeout_sec or config.defaults.timeout_sec,
                vision=m.vision,
                slow=m.slow,
                background=m.deep_research,
                poll_interval_sec=m.poll_interval_sec,
                max_tokens=m.max_tokens or config.defaults.max_tokens,
                web_search=m.web_search,
            )
            for m in config.models.values()
        ]
        return cls(descriptors, config.presets)

    def describe(self, model_id: str) -> ModelDescriptor | None:
        return self._descriptors.get(model_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._descriptors

    def resolve(self, model_ids: Iterable[str]) -> tuple[list[ModelDescriptor], list[str]]:
        """Look up every requested id, keeping request order.

        Unknown ids are skipped and reported as warnings. Duplicates are
        collapsed to their first occurrence.

        Returns:
            (descriptors, warnings)
        """
        descriptors: list[ModelDescriptor] = []
        warnings: list[str] = []
        seen: set[str] = set()
        for model_id in model_ids:
            if model_id in seen:
                continue
            seen.add(model_id)
            descriptor = self.describe(model_id)
            if descriptor is None:
                message = f"Unknown model: {model_id}"
                logger.warning("%s, skipping", message)
                warnings.append(message)
                continue
            descriptors.append(descriptor)
        return descriptors, warnings

    def preset(self, name: str) -> PresetConfig:
        try:
            return self._presets[name]
        except KeyError:
            available = ", ".join(sorted(self._presets)) or "none"
            raise ConfigurationError(f"Unknown preset: {name} (available: {available})") from None

    def preset_models(self, name: str) -> list[str]:
        """Known members of a preset; unknown members are logged and dropped."""
        members = []
        for model_id in self.preset(name).models:
            if model_id in self._descriptors:
                members.append(model_id)
            else:
                logger.warning("Preset %s lists unknown model %s, skipping", name, model_id)
        return members

    def list_models(self) -> list[ModelDescriptor]:
        return list(self._descriptors.values())

    def list_presets(self) -> list[PresetConfig]:
        return list(self._presets.values())
