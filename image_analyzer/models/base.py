"""Interfaces shared by the vision model gateways."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from ..config import ProviderType
from ..fields import AnalysisResult, OutputFieldSpec


@dataclass(slots=True)
class ModelInfo:
    """Metadata describing an available model gateway."""

    identifier: str
    display_name: str
    description: str
    provider: ProviderType
    tags: Sequence[str] = ()


@dataclass(slots=True)
class AnalysisRequest:
    """Everything a gateway needs to analyse one image."""

    image_bytes: bytes
    media_type: str
    directive: str
    active_fields: tuple[str, ...]
    all_fields: tuple[OutputFieldSpec, ...] = field(default_factory=tuple)


class ModelError(RuntimeError):
    """Raised when a model cannot produce output for a given request."""


class VisionModel(Protocol):
    """Interface that all analysis gateways must satisfy."""

    def info(self) -> ModelInfo:
        """Return metadata describing the gateway."""

    def load(self) -> None:
        """Prepare transport resources before the first call."""

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Return every canonical field, with inactive fields left empty."""
