"""Store package — Elasticsearch client for the usage index."""

from __future__ import annotations

from nfs_usage.store.client import DEFAULT_MAPPING, IndexStoreClient

__all__ = [
    "DEFAULT_MAPPING",
    "IndexStoreClient",
]
