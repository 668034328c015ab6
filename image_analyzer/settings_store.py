"""Persistence helpers for the analysis settings edited between runs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import AppConfig

SETTINGS_PATH_ENV = "IMAGE_ANALYZER_SETTINGS"

logger = logging.getLogger(__name__)


class SettingsStore:
    """Keeps one ``AppConfig`` on disk between batch runs."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_settings_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AppConfig:
        if not self._path.exists():
            logger.debug("No settings at %s; using defaults.", self._path)
            return AppConfig()
        return AppConfig.load(self._path)

    def save(self, config: AppConfig) -> None:
        config.save(self._path)
        logger.info("Saved settings to %s", self._path)

    def update(self, **changes: Any) -> AppConfig:
        """Apply ``changes`` to the stored settings, validate and persist them."""
        current = self.load().as_dict()
        current.update(changes)
        updated = AppConfig.model_validate(current)
        self.save(updated)
        return updated


def default_settings_path() -> Path:
    override = os.getenv(SETTINGS_PATH_ENV)
    if override:
        return Path(override).expanduser()
    if os.name == "nt":
        base = Path(os.getenv("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base.expanduser() / "image_analyzer" / "settings.yaml"
