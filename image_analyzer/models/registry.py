"""Registry mapping provider kinds to vision model gateways."""

from __future__ import annotations

import logging
from importlib import import_module
from typing import Callable, Dict

from ..config import AppConfig, ProviderType
from .base import ModelInfo, VisionModel

Factory = Callable[..., VisionModel]
logger = logging.getLogger(__name__)


class ModelRegistry:
    """Tracks one gateway factory per provider kind."""

    _factories: Dict[ProviderType, Factory] = {}
    _bootstrap_complete: bool = False

    @classmethod
    def register(cls, provider: ProviderType, factory: Factory) -> None:
        """Register the gateway factory used for ``provider``."""
        cls._factories[ProviderType(provider)] = factory

    @classmethod
    def unregister(cls, provider: ProviderType) -> None:
        cls._factories.pop(ProviderType(provider), None)

    @classmethod
    def ensure_bootstrapped(cls) -> None:
        if cls._bootstrap_complete:
            return
        import_module("image_analyzer.models.vision_remote")
        cls._bootstrap_complete = True

    @classmethod
    def list_model_infos(cls) -> list[ModelInfo]:
        """Return metadata for all registered gateways."""
        cls.ensure_bootstrapped()
        return [factory().info() for factory in cls._factories.values()]

    @classmethod
    def get(cls, provider: ProviderType, *, config: AppConfig | None = None) -> VisionModel:
        """Build and load the gateway for ``provider``."""
        cls.ensure_bootstrapped()
        try:
            factory = cls._factories[ProviderType(provider)]
        except (KeyError, ValueError) as exc:
            available = ", ".join(sorted(kind.value for kind in cls._factories))
            raise KeyError(f"Unknown provider '{provider}'. Available: {available}") from exc
        instance = factory(config) if config is not None else factory()
        logger.debug("Selected %s gateway for provider '%s'", instance.info().identifier, provider)
        instance.load()
        return instance

    @classmethod
    def for_config(cls, config: AppConfig) -> VisionModel:
        return cls.get(config.provider, config=config)
