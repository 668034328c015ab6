"""Search index gateway for analysed image metadata."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

import requests

from ..config import ConfigurationError
from ..fields import AnalysisResult, OutputFieldSpec, flatten_value

SEARCH_URL_ENV = "UPSTASH_SEARCH_REST_URL"
SEARCH_TOKEN_ENV = "UPSTASH_SEARCH_REST_TOKEN"

logger = logging.getLogger(__name__)


class SearchIndexError(RuntimeError):
    """Raised when a document cannot be written to the search index."""


@dataclass(slots=True)
class IndexDocument:
    """Metadata of one analysed image, ready to be indexed."""

    id: str
    asset_url: str
    filename: str
    metadata: AnalysisResult = field(default_factory=dict)

    def content(self, fields: Sequence[OutputFieldSpec]) -> dict[str, str]:
        payload = {"Image URL": self.asset_url}
        for spec in fields:
            payload[spec.label] = flatten_value(self.metadata.get(spec.name))
        return payload


class SearchIndex(Protocol):
    def upsert(self, document: IndexDocument) -> str:
        """Insert or replace ``document`` and return its id."""


class UpstashSearchIndex:
    """Upstash Search REST API client."""

    def __init__(
        self,
        url: str,
        token: str,
        *,
        index_name: str = "img-base",
        fields: Sequence[OutputFieldSpec] = (),
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url or not token:
            raise ConfigurationError("Search index credentials not configured.")
        self._url = url.rstrip("/")
        self._token = token
        self._index_name = index_name
        self._fields = tuple(fields)
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls, **kwargs: Any) -> UpstashSearchIndex:
        """Build a client from ``UPSTASH_SEARCH_REST_URL``/``UPSTASH_SEARCH_REST_TOKEN``."""
        return cls(os.getenv(SEARCH_URL_ENV, ""), os.getenv(SEARCH_TOKEN_ENV, ""), **kwargs)

    def build_payload(self, document: IndexDocument) -> list[dict[str, Any]]:
        return [
            {
                "id": document.id,
                "content": document.content(self._fields),
                "metadata": {
                    "filename": document.filename,
                    "indexedAt": datetime.now(timezone.utc).isoformat(),
                },
            }
        ]

    def upsert(self, document: IndexDocument) -> str:
        endpoint = f"{self._url}/upsert/{self._index_name}"
        try:
            response = self._session.post(
                endpoint,
                json=self.build_payload(document),
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise SearchIndexError(f"Indexing {document.filename} failed: {exc}") from exc
        if response.status_code >= 400:
            raise SearchIndexError(
                f"Search index returned HTTP {response.status_code} for {document.filename}: "
                f"{response.text}"
            )
        logger.debug("Indexed %s as %s", document.filename, document.id)
        return document.id
