"""String helpers for asset naming."""

from __future__ import annotations

import re
import unicodedata
from pathlib import PurePath

_SEP_PATTERN = re.compile(r"[^a-z0-9]+")

ASSET_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "tiff"}
DEFAULT_ASSET_EXTENSION = ".png"


def slugify(text: str, *, max_length: int = 80, default: str = "image") -> str:
    """Return a lowercase, ASCII-safe, hyphen-separated slug."""
    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    replaced = _SEP_PATTERN.sub("-", normalized.lower()).strip("-")
    slug = replaced[:max_length].strip("-")
    return slug or default


def filename_stem(filename: str) -> str:
    return PurePath(filename).stem or filename


def asset_extension(filename: str) -> str:
    """Return the dotted extension to store ``filename`` under."""
    suffix = PurePath(filename).suffix.lower().lstrip(".")
    if suffix in ASSET_EXTENSIONS:
        return f".{suffix}"
    return DEFAULT_ASSET_EXTENSION
