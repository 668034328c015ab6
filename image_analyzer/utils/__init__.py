"""Utility helpers for the Image Analyzer library."""

from .paths import resolve_image_paths
from .preview import PreviewHandle, create_preview, identify_image
from .text import asset_extension, slugify

__all__ = [
    "PreviewHandle",
    "asset_extension",
    "create_preview",
    "identify_image",
    "resolve_image_paths",
    "slugify",
]
