"""Core service driving queued images through analysis, storage and indexing."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..config import AppConfig, ConfigurationError
from ..io.asset_store import AssetStore, BlobAssetStore, LocalAssetStore
from ..io.search_index import IndexDocument, SearchIndex, UpstashSearchIndex
from ..models.base import AnalysisRequest, VisionModel
from ..models.registry import ModelRegistry
from ..prompts import build_directive
from .queue import ImageQueue, ImageStatus, QueueCounts, QueuedImage

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag, safe to raise from another thread or a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class EventKind(str, Enum):
    RUN_STARTED = "run_started"
    ITEM_STARTED = "item_started"
    ITEM_COMPLETED = "item_completed"
    ITEM_FAILED = "item_failed"
    RUN_FINISHED = "run_finished"
    RUN_CANCELLED = "run_cancelled"


@dataclass(frozen=True, slots=True)
class BatchEvent:
    """A single observable step of a run."""

    kind: EventKind
    total: int
    progress: QueueCounts
    item: QueuedImage | None = None
    index: int | None = None


@dataclass(frozen=True, slots=True)
class BatchSummary:
    selected: int
    completed: int
    failed: int
    cancelled: bool

    @property
    def attempted(self) -> int:
        return self.completed + self.failed

    @property
    def remaining(self) -> int:
        return self.selected - self.attempted


EventCallback = Callable[[BatchEvent], None]


class BatchOrchestrator:
    """Runs pending images one at a time through analyze, upload and index.

    A failed analysis marks only that image as ``error``. Upload and indexing
    are optional enrichments: their failures are logged and the image still
    completes.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        model: VisionModel | None = None,
        asset_store: AssetStore | None = None,
        search_index: SearchIndex | None = None,
    ) -> None:
        self.config = config
        self.model = model
        self.asset_store = asset_store
        self.search_index = search_index

    @classmethod
    def from_config(cls, config: AppConfig) -> BatchOrchestrator:
        """Build the enrichment gateways the settings ask for.

        A gateway whose credentials are missing is left out with a warning;
        its step is then skipped for every image.
        """
        asset_store: AssetStore | None = None
        if config.upload_assets:
            if config.asset_directory is not None:
                asset_store = LocalAssetStore(config.asset_directory, prefix=config.asset_prefix)
            else:
                try:
                    asset_store = BlobAssetStore.from_env(
                        prefix=config.asset_prefix, timeout=config.timeout
                    )
                except ConfigurationError as exc:
                    logger.warning("Asset uploads disabled: %s", exc)

        search_index: SearchIndex | None = None
        if config.index_results:
            try:
                search_index = UpstashSearchIndex.from_env(
                    index_name=config.search_index_name,
                    fields=config.output_fields,
                    timeout=config.timeout,
                )
            except ConfigurationError as exc:
                logger.warning("Search indexing disabled: %s", exc)

        return cls(config, asset_store=asset_store, search_index=search_index)

    def run(
        self,
        queue: ImageQueue,
        *,
        cancel: CancellationToken | None = None,
        on_event: EventCallback | None = None,
    ) -> BatchSummary:
        """Process every image that is pending when the run starts.

        Raises ``ConfigurationError`` before touching any image when the
        settings cannot reach a model.
        """
        config = self.config.model_copy(deep=True)
        config.validate_for_analysis()
        token = cancel or CancellationToken()
        model = self._resolve_model(config)
        directive = build_directive(config)
        active = tuple(spec.name for spec in config.active_fields())

        selected = queue.pending()
        total = len(selected)
        completed = failed = 0

        def emit(kind: EventKind, item: QueuedImage | None = None, index: int | None = None) -> None:
            if on_event is None:
                return
            event = BatchEvent(kind=kind, total=total, progress=queue.counts(), item=item, index=index)
            try:
                on_event(event)
            except Exception:
                logger.exception("Progress callback failed on %s", kind.value)

        logger.info("Starting batch of %d image(s) with %s", total, model.info().identifier)
        emit(EventKind.RUN_STARTED)

        stopped = False
        current: QueuedImage | None = None
        try:
            for index, item in enumerate(selected):
                if token.cancelled:
                    stopped = True
                    logger.info("Batch cancelled; %d image(s) left pending", total - index)
                    break

                current = item
                item.mark_processing()
                emit(EventKind.ITEM_STARTED, item, index)

                request = AnalysisRequest(
                    image_bytes=item.source_bytes,
                    media_type=item.media_type,
                    directive=directive,
                    active_fields=active,
                    all_fields=tuple(config.output_fields),
                )
                try:
                    result = model.analyze(request)
                except Exception as exc:
                    logger.warning("Analysis failed for %s: %s", item.filename, exc)
                    item.mark_error(str(exc))
                    current = None
                    failed += 1
                    emit(EventKind.ITEM_FAILED, item, index)
                    continue

                asset_url = self._store_asset(item, result)
                index_id = self._index_item(item, result, asset_url) if asset_url else None
                item.mark_complete(result, asset_url=asset_url, index_id=index_id)
                current = None
                completed += 1
                emit(EventKind.ITEM_COMPLETED, item, index)
        finally:
            token.reset()
            if current is not None and current.status == ImageStatus.PROCESSING:
                # Interrupted mid-item; leave it retryable.
                current.mark_error("Processing was interrupted")
                failed += 1

        summary = BatchSummary(selected=total, completed=completed, failed=failed, cancelled=stopped)
        logger.info(
            "Batch finished: %d complete, %d failed, %d pending",
            completed,
            failed,
            summary.remaining,
        )
        emit(EventKind.RUN_CANCELLED if stopped else EventKind.RUN_FINISHED)
        return summary

    def _resolve_model(self, config: AppConfig) -> VisionModel:
        if self.model is None:
            logger.info("Loading %s gateway...", config.provider.value)
            return ModelRegistry.for_config(config)
        return self.model

    def _store_asset(self, item: QueuedImage, result: dict) -> str | None:
        if self.asset_store is None:
            return None
        title = result.get("title")
        seed = title if isinstance(title, str) and title.strip() else None
        try:
            stored = self.asset_store.upload(
                item.source_bytes,
                filename=item.filename,
                name_seed=seed,
                media_type=item.media_type,
            )
        except Exception as exc:
            logger.warning("Asset upload failed for %s, continuing without URL: %s", item.filename, exc)
            return None
        return stored.url

    def _index_item(self, item: QueuedImage, result: dict, asset_url: str) -> str | None:
        if self.search_index is None:
            return None
        document = IndexDocument(
            id=item.id,
            asset_url=asset_url,
            filename=item.filename,
            metadata=dict(result),
        )
        try:
            return self.search_index.upsert(document)
        except Exception as exc:
            logger.warning("Search indexing failed for %s: %s", item.filename, exc)
            return None
