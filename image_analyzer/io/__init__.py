"""Gateways for storing and indexing results, plus export helpers."""

from .asset_store import BlobAssetStore, LocalAssetStore, StorageError, StoredAsset
from .search_index import IndexDocument, SearchIndexError, UpstashSearchIndex
from .export import ExportFormat, export_to_csv, export_to_json, render_export, write_export

__all__ = [
    "BlobAssetStore",
    "ExportFormat",
    "IndexDocument",
    "LocalAssetStore",
    "SearchIndexError",
    "StorageError",
    "StoredAsset",
    "UpstashSearchIndex",
    "export_to_csv",
    "export_to_json",
    "render_export",
    "write_export",
]
