"""Service layer for queueing images and running analysis batches."""

from .queue import ImageQueue, ImageStatus, QueuedImage
from .batch import BatchEvent, BatchOrchestrator, BatchSummary, CancellationToken, EventKind

__all__ = [
    "BatchEvent",
    "BatchOrchestrator",
    "BatchSummary",
    "CancellationToken",
    "EventKind",
    "ImageQueue",
    "ImageStatus",
    "QueuedImage",
]
