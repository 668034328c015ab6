"""Top-level package for the Image Analyzer library."""

from .config import AppConfig, ConfigurationError, ProviderType, ToneOption
from .services.queue import ImageQueue, ImageStatus
from .services.batch import BatchOrchestrator, CancellationToken
from .settings_store import SettingsStore

__all__ = [
    "AppConfig",
    "BatchOrchestrator",
    "CancellationToken",
    "ConfigurationError",
    "ImageQueue",
    "ImageStatus",
    "ProviderType",
    "SettingsStore",
    "ToneOption",
]
