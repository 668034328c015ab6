"""Queued images and the per-item status state machine."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from PIL import UnidentifiedImageError

from ..fields import AnalysisResult
from ..utils.preview import PreviewHandle, create_preview, identify_image

logger = logging.getLogger(__name__)


class ImageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class InvalidTransitionError(RuntimeError):
    """Raised when an item is moved between statuses in an unsupported way."""


class UnsupportedImageError(ValueError):
    """Raised when a payload cannot be identified as an image."""


@dataclass(eq=False)
class QueuedImage:
    """One image travelling through the batch pipeline."""

    filename: str
    source_bytes: bytes = field(repr=False)
    media_type: str
    preview: PreviewHandle | None = field(default=None, repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ImageStatus = ImageStatus.PENDING
    result: AnalysisResult | None = None
    asset_url: str | None = None
    index_id: str | None = None
    error_message: str | None = None

    def mark_processing(self) -> None:
        self._require(ImageStatus.PENDING, target=ImageStatus.PROCESSING)
        self.status = ImageStatus.PROCESSING

    def mark_complete(
        self,
        result: AnalysisResult,
        *,
        asset_url: str | None = None,
        index_id: str | None = None,
    ) -> None:
        self._require(ImageStatus.PROCESSING, target=ImageStatus.COMPLETE)
        self.status = ImageStatus.COMPLETE
        self.result = dict(result)
        self.asset_url = asset_url
        self.index_id = index_id
        self.error_message = None

    def mark_error(self, message: str) -> None:
        self._require(ImageStatus.PROCESSING, target=ImageStatus.ERROR)
        self.status = ImageStatus.ERROR
        self.result = None
        self.asset_url = None
        self.index_id = None
        self.error_message = message or "Analysis failed"

    def reset_for_retry(self) -> None:
        self._require(ImageStatus.ERROR, target=ImageStatus.PENDING)
        self.status = ImageStatus.PENDING
        self.error_message = None

    def release_preview(self) -> None:
        if self.preview is not None:
            self.preview.release()

    def _require(self, expected: ImageStatus, *, target: ImageStatus) -> None:
        if self.status != expected:
            raise InvalidTransitionError(
                f"Cannot move {self.filename} from {self.status.value} to {target.value}"
            )


@dataclass(frozen=True, slots=True)
class QueueCounts:
    pending: int = 0
    processing: int = 0
    complete: int = 0
    error: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.complete + self.error

    @property
    def finished(self) -> int:
        return self.complete + self.error

    @property
    def fraction(self) -> float:
        return self.finished / self.total if self.total else 0.0


class ImageQueue:
    """Ordered collection of queued images owned by the caller.

    Every image gets a preview thumbnail when added; the thumbnail is released
    when the image is removed, when the queue is cleared, or when the queue is
    closed.
    """

    def __init__(self, *, make_previews: bool = True) -> None:
        self._items: list[QueuedImage] = []
        self._make_previews = make_previews

    def __iter__(self) -> Iterator[QueuedImage]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __enter__(self) -> ImageQueue:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add(self, filename: str, data: bytes) -> QueuedImage:
        """Identify ``data`` and append it as a pending image."""
        try:
            media_type = identify_image(data)
            preview = create_preview(data) if self._make_previews else None
        except (UnidentifiedImageError, OSError) as exc:
            raise UnsupportedImageError(f"{filename} is not a supported image: {exc}") from exc
        item = QueuedImage(
            filename=filename,
            source_bytes=data,
            media_type=media_type,
            preview=preview,
        )
        self._items.append(item)
        logger.debug("Queued %s as %s (%s)", filename, item.id, media_type)
        return item

    def add_paths(self, paths: Iterable[Path]) -> list[QueuedImage]:
        """Queue files from disk, skipping those that are not images."""
        added: list[QueuedImage] = []
        for path in paths:
            try:
                added.append(self.add(path.name, path.read_bytes()))
            except UnsupportedImageError as exc:
                logger.warning("%s", exc)
        return added

    def get(self, item_id: str) -> QueuedImage:
        for item in self._items:
            if item.id == item_id:
                return item
        raise KeyError(item_id)

    def remove(self, item_id: str) -> QueuedImage:
        item = self.get(item_id)
        self._items.remove(item)
        item.release_preview()
        return item

    def clear(self) -> None:
        for item in self._items:
            item.release_preview()
        self._items.clear()

    close = clear

    def with_status(self, status: ImageStatus) -> list[QueuedImage]:
        return [item for item in self._items if item.status == status]

    def pending(self) -> list[QueuedImage]:
        return self.with_status(ImageStatus.PENDING)

    def completed(self) -> list[QueuedImage]:
        return self.with_status(ImageStatus.COMPLETE)

    def failed(self) -> list[QueuedImage]:
        return self.with_status(ImageStatus.ERROR)

    def retry(self, item_id: str) -> None:
        self.get(item_id).reset_for_retry()

    def retry_failed(self) -> int:
        """Return every errored image to pending. Returns how many were reset."""
        failed = self.failed()
        for item in failed:
            item.reset_for_retry()
        return len(failed)

    def counts(self) -> QueueCounts:
        tally = {status: 0 for status in ImageStatus}
        for item in self._items:
            tally[item.status] += 1
        return QueueCounts(
            pending=tally[ImageStatus.PENDING],
            processing=tally[ImageStatus.PROCESSING],
            complete=tally[ImageStatus.COMPLETE],
            error=tally[ImageStatus.ERROR],
        )
