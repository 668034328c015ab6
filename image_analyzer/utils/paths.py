"""Path helpers used to collect images for a batch."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, Sequence

IMAGE_EXTENSIONS = {
    ".jpg",
    ".jpeg",
    ".png",
    ".webp",
    ".bmp",
    ".tiff",
    ".tif",
    ".gif",
}


def is_image_file(path: Path, *, extensions: Iterable[str] | None = None) -> bool:
    """Return True if the given path has a supported image extension."""
    exts = {ext.lower() for ext in (extensions or IMAGE_EXTENSIONS)}
    return path.suffix.lower() in exts


def resolve_image_paths(
    start: Path,
    *,
    recursive: bool = False,
    include_hidden: bool = False,
    extensions: Sequence[str] | None = None,
) -> list[Path]:
    """Collect image paths under ``start`` in a stable, sorted order.

    A file argument is returned as-is when it looks like an image. Directories
    are scanned (recursively when ``recursive`` is set). Dot-files are skipped
    unless ``include_hidden`` is True.
    """
    start = start.expanduser()
    if not start.exists():
        raise FileNotFoundError(start)

    if start.is_file():
        visible = include_hidden or not _is_hidden(Path(start.name))
        if visible and is_image_file(start, extensions=extensions):
            return [start]
        return []

    walker: Iterator[Path]
    if recursive:
        walker = (path for path in start.rglob("*") if path.is_file())
    else:
        walker = (path for path in start.iterdir() if path.is_file())

    collected = [
        path
        for path in walker
        if (include_hidden or not _is_hidden(path.relative_to(start)))
        and is_image_file(path, extensions=extensions)
    ]
    collected.sort()
    return collected


def _is_hidden(path: Path) -> bool:
    return any(part.startswith(".") for part in path.parts)
