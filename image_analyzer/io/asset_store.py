"""Persist analysed images and hand back durable URLs."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

import requests

from ..config import ConfigurationError
from ..utils.text import asset_extension, filename_stem, slugify

BLOB_API_URL = "https://blob.vercel-storage.com"
BLOB_TOKEN_ENV = "BLOB_READ_WRITE_TOKEN"
BLOB_API_VERSION = "7"

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when an asset cannot be stored."""


@dataclass(slots=True)
class StoredAsset:
    url: str
    storage_path: str


class AssetStore(Protocol):
    def upload(
        self,
        data: bytes,
        *,
        filename: str,
        name_seed: str | None = None,
        media_type: str | None = None,
    ) -> StoredAsset:
        """Store ``data`` and return where it can be fetched from."""


def build_storage_path(
    filename: str,
    name_seed: str | None,
    *,
    prefix: str = "img-base",
    clock: Callable[[], float] = time.time,
) -> str:
    """Return ``<prefix>/<slug>-<epoch ms><ext>`` for an upload.

    The slug comes from ``name_seed`` (usually the generated title) and falls
    back to the original file name without its extension.
    """
    seed = name_seed.strip() if name_seed and name_seed.strip() else filename_stem(filename)
    stamp = int(clock() * 1000)
    name = f"{slugify(seed)}-{stamp}{asset_extension(filename)}"
    prefix = prefix.strip("/")
    return f"{prefix}/{name}" if prefix else name


class BlobAssetStore:
    """Public blob storage reached over its HTTP API."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = BLOB_API_URL,
        prefix: str = "img-base",
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        if not token:
            raise ConfigurationError(f"Blob storage token is not configured; set {BLOB_TOKEN_ENV}.")
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._prefix = prefix
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls, **kwargs) -> BlobAssetStore:
        return cls(os.getenv(BLOB_TOKEN_ENV, ""), **kwargs)

    def upload(
        self,
        data: bytes,
        *,
        filename: str,
        name_seed: str | None = None,
        media_type: str | None = None,
    ) -> StoredAsset:
        pathname = build_storage_path(filename, name_seed, prefix=self._prefix)
        headers = {
            "Authorization": f"Bearer {self._token}",
            "x-api-version": BLOB_API_VERSION,
            "x-add-random-suffix": "0",
        }
        if media_type:
            headers["x-content-type"] = media_type
        try:
            response = self._session.put(
                f"{self._base_url}/{pathname}",
                data=data,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise StorageError(f"Upload of {filename} failed: {exc}") from exc
        if response.status_code >= 400:
            raise StorageError(
                f"Blob storage returned HTTP {response.status_code} for {filename}: {response.text}"
            )
        try:
            payload = response.json()
            url = payload["url"]
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageError(f"Blob storage returned an unexpected payload for {filename}") from exc
        logger.debug("Uploaded %s to %s", filename, url)
        return StoredAsset(url=url, storage_path=payload.get("pathname") or pathname)


class LocalAssetStore:
    """Copies assets into a directory and returns ``file://`` URLs."""

    def __init__(self, directory: Path, *, prefix: str = "img-base") -> None:
        self._directory = directory.expanduser()
        self._prefix = prefix

    def upload(
        self,
        data: bytes,
        *,
        filename: str,
        name_seed: str | None = None,
        media_type: str | None = None,
    ) -> StoredAsset:
        pathname = build_storage_path(filename, name_seed, prefix=self._prefix)
        target = self._directory / pathname
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write {target}: {exc}") from exc
        return StoredAsset(url=target.resolve().as_uri(), storage_path=pathname)
