"""Vision model gateways and their registry."""

from .base import AnalysisRequest, ModelError, ModelInfo, VisionModel
from .registry import ModelRegistry
from .vision_remote import CustomVisionModel, GatewayVisionModel, OllamaVisionModel

__all__ = [
    "AnalysisRequest",
    "ModelError",
    "ModelInfo",
    "ModelRegistry",
    "VisionModel",
    "CustomVisionModel",
    "GatewayVisionModel",
    "OllamaVisionModel",
]
