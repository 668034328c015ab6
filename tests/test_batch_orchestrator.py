"""Tests for the sequential batch workflow."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from image_analyzer.config import AppConfig, ConfigurationError, ProviderType
from image_analyzer.fields import normalize_result
from image_analyzer.io.asset_store import LocalAssetStore, StorageError, StoredAsset
from image_analyzer.io.search_index import SearchIndexError
from image_analyzer.models.base import ModelError, ModelInfo
from image_analyzer.services.batch import (
    BatchOrchestrator,
    CancellationToken,
    EventKind,
)
from image_analyzer.services.queue import ImageQueue, ImageStatus


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(123, 222, 111)).save(buffer, format="PNG")
    return buffer.getvalue()


def _config(**overrides) -> AppConfig:
    settings = {
        "provider": ProviderType.CUSTOM,
        "base_url": "http://models.local/v1",
        "model": "vision",
        "enabled_outputs": ["title", "tags"],
    }
    settings.update(overrides)
    return AppConfig(**settings)


def _queue(*names: str) -> ImageQueue:
    queue = ImageQueue(make_previews=False)
    for name in names:
        queue.add(name, _png_bytes())
    return queue


class FakeModel:
    """Answers from a script keyed by call order; exceptions are raised."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.requests = []

    def info(self) -> ModelInfo:
        return ModelInfo(
            identifier="fake", display_name="Fake", description="", provider=ProviderType.CUSTOM
        )

    def load(self) -> None:  # pragma: no cover - nothing to do
        return None

    def analyze(self, request):
        self.requests.append(request)
        answer = self.answers.pop(0) if self.answers else {"title": f"Image {len(self.requests)}"}
        if isinstance(answer, Exception):
            raise answer
        return normalize_result(answer, request.all_fields, request.active_fields)


class FakeStore:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = []

    def upload(self, data, *, filename, name_seed=None, media_type=None):
        self.calls.append({"filename": filename, "name_seed": name_seed, "media_type": media_type})
        if self.error is not None:
            raise self.error
        return StoredAsset(url=f"https://cdn.test/{filename}", storage_path=f"img-base/{filename}")


class FakeIndex:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.documents = []

    def upsert(self, document):
        self.documents.append(document)
        if self.error is not None:
            raise self.error
        return document.id


def test_run_completes_every_pending_item_in_order():
    queue = _queue("a.png", "b.png", "c.png")
    model = FakeModel({"title": "Cat", "tags": ["cat", "cute"], "mood": None})
    store, index = FakeStore(), FakeIndex()
    orchestrator = BatchOrchestrator(_config(), model=model, asset_store=store, search_index=index)

    summary = orchestrator.run(queue)

    assert summary.selected == 3
    assert summary.completed == 3
    assert summary.failed == 0
    assert summary.cancelled is False
    assert [item.status for item in queue] == [ImageStatus.COMPLETE] * 3
    first = next(iter(queue))
    assert first.result["title"] == "Cat"
    assert first.result["tags"] == ["cat", "cute"]
    assert first.result["mood"] == ""
    assert first.result["colors"] == []
    assert first.asset_url == "https://cdn.test/a.png"
    assert first.index_id == first.id
    assert [call["filename"] for call in store.calls] == ["a.png", "b.png", "c.png"]
    assert index.documents[0].asset_url == "https://cdn.test/a.png"
    assert index.documents[0].metadata["title"] == "Cat"


def test_model_receives_directive_and_active_fields():
    queue = _queue("a.png")
    model = FakeModel()
    config = _config(system_message="Describe it.")

    BatchOrchestrator(config, model=model).run(queue)

    request = model.requests[0]
    assert request.directive.startswith("Describe it.")
    assert request.active_fields == ("title", "tags")
    assert request.media_type == "image/png"
    assert len(request.all_fields) == len(config.output_fields)


def test_failed_item_does_not_stop_the_batch():
    queue = _queue("a.png", "b.png", "c.png")
    model = FakeModel({"title": "A"}, ModelError("rate limited"), {"title": "C"})

    summary = BatchOrchestrator(_config(), model=model).run(queue)

    items = list(queue)
    assert [item.status for item in items] == [
        ImageStatus.COMPLETE,
        ImageStatus.ERROR,
        ImageStatus.COMPLETE,
    ]
    assert items[1].error_message == "rate limited"
    assert items[1].result is None
    assert items[2].result["title"] == "C"
    assert summary.completed + summary.failed == summary.selected == 3


def test_unexpected_gateway_exception_marks_item_error():
    queue = _queue("a.png", "b.png")
    model = FakeModel(RuntimeError("socket closed"))

    BatchOrchestrator(_config(), model=model).run(queue)

    assert [item.status for item in queue] == [ImageStatus.ERROR, ImageStatus.COMPLETE]


def test_upload_failure_still_completes_without_enrichment():
    queue = _queue("a.png")
    index = FakeIndex()
    orchestrator = BatchOrchestrator(
        _config(),
        model=FakeModel({"title": "Cat"}),
        asset_store=FakeStore(error=StorageError("quota exceeded")),
        search_index=index,
    )

    orchestrator.run(queue)

    item = next(iter(queue))
    assert item.status == ImageStatus.COMPLETE
    assert item.result["title"] == "Cat"
    assert item.asset_url is None
    assert item.index_id is None
    assert index.documents == []


def test_index_failure_keeps_asset_url():
    queue = _queue("a.png")
    orchestrator = BatchOrchestrator(
        _config(),
        model=FakeModel(),
        asset_store=FakeStore(),
        search_index=FakeIndex(error=SearchIndexError("down")),
    )

    orchestrator.run(queue)

    item = next(iter(queue))
    assert item.status == ImageStatus.COMPLETE
    assert item.asset_url == "https://cdn.test/a.png"
    assert item.index_id is None


def test_upload_is_seeded_with_title_or_left_to_filename():
    queue = _queue("a.png", "b.png")
    store = FakeStore()
    orchestrator = BatchOrchestrator(
        _config(),
        model=FakeModel({"title": "Sunset Beach"}, {"title": ""}),
        asset_store=store,
    )

    orchestrator.run(queue)

    assert [call["name_seed"] for call in store.calls] == ["Sunset Beach", None]
    assert store.calls[0]["media_type"] == "image/png"


def test_cancellation_between_items_leaves_rest_pending():
    queue = _queue("a.png", "b.png", "c.png")
    token = CancellationToken()
    model = FakeModel()
    kinds = []

    def on_event(event):
        kinds.append(event.kind)
        if event.kind == EventKind.ITEM_COMPLETED and event.index == 0:
            token.cancel()

    summary = BatchOrchestrator(_config(), model=model).run(queue, cancel=token, on_event=on_event)

    assert [item.status for item in queue] == [
        ImageStatus.COMPLETE,
        ImageStatus.PENDING,
        ImageStatus.PENDING,
    ]
    assert len(model.requests) == 1
    assert summary.cancelled is True
    assert summary.remaining == 2
    assert kinds[-1] == EventKind.RUN_CANCELLED
    assert token.cancelled is False


def test_cancelled_before_start_processes_nothing():
    queue = _queue("a.png")
    token = CancellationToken()
    token.cancel()
    model = FakeModel()

    summary = BatchOrchestrator(_config(), model=model).run(queue, cancel=token)

    assert model.requests == []
    assert summary.attempted == 0
    assert next(iter(queue)).status == ImageStatus.PENDING


def test_items_added_during_run_wait_for_next_run():
    queue = _queue("a.png")

    def on_event(event):
        if event.kind == EventKind.ITEM_STARTED:
            queue.add("late.png", _png_bytes())

    summary = BatchOrchestrator(_config(), model=FakeModel()).run(queue, on_event=on_event)

    assert summary.selected == 1
    assert [item.status for item in queue] == [ImageStatus.COMPLETE, ImageStatus.PENDING]


def test_events_report_live_progress():
    queue = _queue("a.png", "b.png")
    events = []

    BatchOrchestrator(_config(), model=FakeModel(ModelError("x"))).run(queue, on_event=events.append)

    assert [event.kind for event in events] == [
        EventKind.RUN_STARTED,
        EventKind.ITEM_STARTED,
        EventKind.ITEM_FAILED,
        EventKind.ITEM_STARTED,
        EventKind.ITEM_COMPLETED,
        EventKind.RUN_FINISHED,
    ]
    started = events[1]
    assert started.progress.processing == 1
    assert started.index == 0
    assert started.total == 2
    assert events[-1].progress.finished == 2
    assert events[-1].progress.fraction == 1.0


def test_configuration_error_is_raised_before_any_item():
    queue = _queue("a.png")
    model = FakeModel()
    orchestrator = BatchOrchestrator(_config(base_url=None), model=model)

    with pytest.raises(ConfigurationError):
        orchestrator.run(queue)

    assert model.requests == []
    assert next(iter(queue)).status == ImageStatus.PENDING


def test_settings_changed_mid_run_do_not_affect_it():
    queue = _queue("a.png", "b.png")
    model = FakeModel()
    config = _config(system_message="Original.")
    orchestrator = BatchOrchestrator(config, model=model)

    def on_event(event):
        if event.kind == EventKind.ITEM_COMPLETED:
            config.system_message = "Changed."
            config.toggle_output("mood")

    orchestrator.run(queue, on_event=on_event)

    assert [request.directive.split("\n\n")[0] for request in model.requests] == [
        "Original.",
        "Original.",
    ]
    assert model.requests[1].active_fields == ("title", "tags")


def test_retry_failed_items_on_next_run():
    queue = _queue("a.png", "b.png")
    model = FakeModel(ModelError("boom"))
    orchestrator = BatchOrchestrator(_config(), model=model)

    orchestrator.run(queue)
    assert queue.counts().error == 1

    queue.retry_failed()
    summary = orchestrator.run(queue)

    assert summary.selected == 1
    assert [item.status for item in queue] == [ImageStatus.COMPLETE, ImageStatus.COMPLETE]


def test_model_is_resolved_from_registry_once_per_run(monkeypatch):
    queue = _queue("a.png", "b.png")
    model = FakeModel()
    calls = []

    def fake_for_config(config):
        calls.append(config.provider)
        return model

    monkeypatch.setattr(
        "image_analyzer.services.batch.ModelRegistry.for_config", fake_for_config
    )

    BatchOrchestrator(_config()).run(queue)

    assert calls == [ProviderType.CUSTOM]
    assert len(model.requests) == 2


def test_from_config_builds_local_store_and_skips_unconfigured_index(monkeypatch, tmp_path):
    monkeypatch.delenv("UPSTASH_SEARCH_REST_URL", raising=False)
    monkeypatch.delenv("UPSTASH_SEARCH_REST_TOKEN", raising=False)

    orchestrator = BatchOrchestrator.from_config(_config(asset_directory=tmp_path))

    assert isinstance(orchestrator.asset_store, LocalAssetStore)
    assert orchestrator.search_index is None


def test_from_config_respects_disabled_enrichment(monkeypatch):
    monkeypatch.setenv("BLOB_READ_WRITE_TOKEN", "token")
    monkeypatch.setenv("UPSTASH_SEARCH_REST_URL", "https://search.test")
    monkeypatch.setenv("UPSTASH_SEARCH_REST_TOKEN", "token")

    enabled = BatchOrchestrator.from_config(_config())
    disabled = BatchOrchestrator.from_config(_config(upload_assets=False, index_results=False))

    assert enabled.asset_store is not None
    assert enabled.search_index is not None
    assert disabled.asset_store is None
    assert disabled.search_index is None


def test_failing_progress_callback_does_not_strand_items():
    queue = _queue("a.png", "b.png")
    token = CancellationToken()

    def on_event(event):
        if event.kind == EventKind.ITEM_STARTED:
            token.cancel()
            raise RuntimeError("display closed")

    summary = BatchOrchestrator(_config(), model=FakeModel()).run(queue, cancel=token, on_event=on_event)

    assert [item.status for item in queue] == [ImageStatus.COMPLETE, ImageStatus.PENDING]
    assert summary.cancelled is True
    assert token.cancelled is False


def test_interrupted_item_is_left_retryable():
    queue = _queue("a.png", "b.png")
    token = CancellationToken()
    token_seen = []

    class InterruptingModel(FakeModel):
        def analyze(self, request):
            token.cancel()
            token_seen.append(token.cancelled)
            raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        BatchOrchestrator(_config(), model=InterruptingModel()).run(queue, cancel=token)

    first, second = queue
    assert token_seen == [True]
    assert token.cancelled is False
    assert first.status == ImageStatus.ERROR
    assert first.error_message == "Processing was interrupted"
    assert second.status == ImageStatus.PENDING
    assert queue.retry_failed() == 1
