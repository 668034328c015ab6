"""Render completed results as JSON or CSV."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Sequence

from ..fields import OutputFieldSpec, flatten_value
from ..services.queue import ImageStatus, QueuedImage

LIST_SEPARATOR = "; "


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


DEFAULT_EXPORT_FILENAMES = {
    ExportFormat.JSON: "image-analysis.json",
    ExportFormat.CSV: "image-analysis.csv",
}


def _completed(images: Iterable[QueuedImage]) -> list[QueuedImage]:
    return [img for img in images if img.status == ImageStatus.COMPLETE and img.result is not None]


def escape_csv(value: str) -> str:
    if "," in value or '"' in value or "\n" in value:
        return '"' + value.replace('"', '""') + '"'
    return value


def export_records(
    images: Iterable[QueuedImage], fields: Sequence[OutputFieldSpec]
) -> list[dict[str, Any]]:
    """Return one ordered mapping per completed image, enabled fields only."""
    records: list[dict[str, Any]] = []
    for img in _completed(images):
        entry: dict[str, Any] = {"filename": img.filename}
        if img.asset_url:
            entry["imageUrl"] = img.asset_url
        for spec in fields:
            entry[spec.name] = img.result.get(spec.name, spec.empty_value())
        records.append(entry)
    return records


def export_to_json(images: Iterable[QueuedImage], fields: Sequence[OutputFieldSpec]) -> str:
    return json.dumps(export_records(images, fields), indent=2, ensure_ascii=False)


def export_to_csv(images: Iterable[QueuedImage], fields: Sequence[OutputFieldSpec]) -> str:
    """Return CSV text with a header row, or ``""`` when nothing is complete.

    The ``Image URL`` column is present only if at least one image was stored.
    """
    completed = _completed(images)
    if not completed:
        return ""

    has_url = any(img.asset_url for img in completed)
    headers = ["Filename", *(["Image URL"] if has_url else []), *(spec.label for spec in fields)]
    rows = [",".join(escape_csv(header) for header in headers)]
    for img in completed:
        values = [img.filename]
        if has_url:
            values.append(img.asset_url or "")
        values.extend(
            flatten_value(img.result.get(spec.name), separator=LIST_SEPARATOR) for spec in fields
        )
        rows.append(",".join(escape_csv(value) for value in values))
    return "\n".join(rows)


def render_export(
    fmt: ExportFormat, images: Iterable[QueuedImage], fields: Sequence[OutputFieldSpec]
) -> str:
    if ExportFormat(fmt) == ExportFormat.JSON:
        return export_to_json(images, fields)
    return export_to_csv(images, fields)


def write_export(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content + ("\n" if content and not content.endswith("\n") else ""), encoding="utf-8")
    return path
