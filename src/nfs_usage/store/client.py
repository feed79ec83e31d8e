"""Elasticsearch client for the usage index.

Wraps the official ``elasticsearch`` client.  One client (and so one pooled
HTTP connection per node) is reused for every request of a run.  Follows the
same lifecycle as the rest of the codebase: construct → ping → use → close.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from elasticsearch import ApiError, Elasticsearch, TransportError
from loguru import logger

from nfs_usage.errors import BatchRequestError, BatchTransportError, IndexStoreError
from nfs_usage.telemetry import get_tracer

if TYPE_CHECKING:
    from types import TracebackType

    from nfs_usage.settings import ElasticsearchSettings

_tracer = get_tracer(__name__)

DEFAULT_MAPPING: dict[str, Any] = {
    "mappings": {
        "properties": {
            "timestamp": {"type": "date"},
            "cluster": {"type": "keyword"},
            "volume_type": {"type": "keyword"},
            "full_path": {"type": "keyword"},
            "disk_size": {"type": "long"},
            "volume_name": {"type": "keyword"},
            "project_name": {"type": "keyword"},
            "user_name": {"type": "keyword"},
        }
    }
}


# search_after needs a total order; full_path breaks timestamp ties.
_DEFAULT_SORT = [{"timestamp": "asc"}, {"full_path": "asc"}]


class IndexStoreClient:
    """Usage-index client; also the :class:`~nfs_usage.bulk.BulkTransport` for the indexer."""

    def __init__(self, settings: ElasticsearchSettings, *, client: Elasticsearch | None = None) -> None:
        self.index_name = settings.index_name
        self._url = settings.url
        if client is None:
            options: dict[str, Any] = {"request_timeout": settings.request_timeout_s}
            if settings.username:
                options["basic_auth"] = (settings.username, settings.password)
            if settings.scheme == "https":
                options["verify_certs"] = settings.verify_certs
            client = Elasticsearch(self._url, **options)
        self._client = client

    @property
    def url(self) -> str:
        return self._url

    def ping(self) -> bool:
        """Health check — returns True if the cluster answers."""
        return bool(self._client.ping())

    def index_exists(self) -> bool:
        try:
            return bool(self._client.indices.exists(index=self.index_name))
        except (ApiError, TransportError) as exc:
            raise IndexStoreError(f"Cannot check index {self.index_name}: {exc}") from exc

    def create_index(self, mapping: dict[str, Any] | None = None) -> None:
        body = mapping if mapping is not None else DEFAULT_MAPPING
        try:
            self._client.indices.create(
                index=self.index_name,
                mappings=body.get("mappings"),
                settings=body.get("settings"),
            )
        except (ApiError, TransportError) as exc:
            raise IndexStoreError(f"Cannot create index {self.index_name}: {exc}") from exc
        logger.info("Created index {}", self.index_name)

    def bulk(self, payload: bytes) -> dict[str, Any]:
        """Send one line-delimited bulk payload and return the response body."""
        with _tracer.start_as_current_span("store.bulk", attributes={"bytes": len(payload)}):
            try:
                response = self._client.bulk(operations=payload, index=self.index_name)
            except ApiError as exc:
                raise BatchRequestError(exc.meta.status, exc.body) from exc
            except TransportError as exc:
                raise BatchTransportError(str(exc)) from exc
        return dict(response.body)

    def search(
        self,
        query: dict[str, Any],
        *,
        after: list[Any] | None = None,
        size: int = 100,
        sort: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        """Run one page of *query* against the usage index.

        Pages are chained with ``search_after``: pass the ``sort`` values of the
        last hit of the previous page as *after*.
        """
        try:
            response = self._client.search(
                index=self.index_name,
                query=query,
                size=size,
                sort=sort or _DEFAULT_SORT,
                search_after=after,
            )
        except (ApiError, TransportError) as exc:
            raise IndexStoreError(f"Search on {self.index_name} failed: {exc}") from exc
        return dict(response.body)

    def update(self, doc_id: str, doc: dict[str, Any]) -> None:
        """Partially update one document (corrections, not the hot path)."""
        try:
            self._client.update(index=self.index_name, id=doc_id, doc=doc)
        except (ApiError, TransportError) as exc:
            raise IndexStoreError(f"Cannot update {doc_id}: {exc}") from exc

    def delete(self, doc_id: str) -> None:
        try:
            self._client.delete(index=self.index_name, id=doc_id)
        except (ApiError, TransportError) as exc:
            raise IndexStoreError(f"Cannot delete {doc_id}: {exc}") from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> IndexStoreClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
