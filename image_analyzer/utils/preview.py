"""Local preview thumbnails for queued images."""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

PREVIEW_SIZE = (256, 256)


class PreviewHandle:
    """A revocable reference to a thumbnail stored in a temporary file."""

    def __init__(self, path: Path) -> None:
        self._path: Path | None = path

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def released(self) -> bool:
        return self._path is None

    def release(self) -> None:
        """Delete the thumbnail. Calling this more than once is harmless."""
        if self._path is None:
            return
        path, self._path = self._path, None
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove preview %s: %s", path, exc)

    def __repr__(self) -> str:
        return f"PreviewHandle({str(self._path) if self._path else 'released'})"


def identify_image(data: bytes) -> str:
    """Return the MIME type of ``data``.

    Raises ``UnidentifiedImageError`` when Pillow does not recognise the payload
    and ``OSError`` when the pixel data cannot be decoded.
    """
    with Image.open(io.BytesIO(data)) as img:
        fmt = img.format
        img.load()
    mime = Image.MIME.get(fmt or "")
    if not mime:
        raise UnidentifiedImageError(f"No media type known for format {fmt!r}")
    return mime


def create_preview(data: bytes, *, size: tuple[int, int] = PREVIEW_SIZE) -> PreviewHandle:
    """Render a PNG thumbnail of ``data`` into a temporary file."""
    with Image.open(io.BytesIO(data)) as img:
        thumb = img.copy()
    thumb.thumbnail(size)
    if thumb.mode not in ("RGB", "RGBA", "L", "LA"):
        thumb = thumb.convert("RGBA")

    fd, name = tempfile.mkstemp(prefix="image-analyzer-", suffix=".png")
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            thumb.save(handle, format="PNG")
    except Exception:
        path.unlink(missing_ok=True)
        raise
    return PreviewHandle(path)
