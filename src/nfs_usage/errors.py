"""Exception hierarchy for nfs-usage.

Recoverable failures (one directory, one batch, one document) are absorbed
into counters by the component that sees them.  Only the exceptions marked
fatal here are expected to reach the caller of a whole run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nfs_usage.bulk import IndexingStats


class UsageError(Exception):
    """Base class for all nfs-usage errors."""


class ConfigError(UsageError):
    """Configuration could not be loaded or is inconsistent."""


class MeasurementError(UsageError):
    """The disk-usage measurement step failed for one directory."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Measurement failed for {path}: {reason}")


class SerializationError(UsageError):
    """A record could not be encoded into the bulk payload.  Fatal for the run."""

    def __init__(self, position: int, cause: Exception) -> None:
        self.position = position
        self.cause = cause
        super().__init__(f"Cannot encode record #{position}: {cause}")


class BatchTransportError(UsageError):
    """The bulk request never got an HTTP answer (refused, reset, timed out)."""


class BatchRequestError(UsageError):
    """The index store rejected the whole bulk request with an HTTP error."""

    def __init__(self, status: int, body: Any = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Bulk request failed with HTTP {status}: {describe_error_body(body)}")


class IndexStoreError(UsageError):
    """A single-document or index-management call to the store failed."""


class IndexingFailedError(UsageError):
    """A job finished with indexing errors and the error policy says to stop."""

    def __init__(self, location: str, stats: IndexingStats) -> None:
        self.location = location
        self.stats = stats
        super().__init__(f"Indexing for {location} completed with {stats.errored} error(s)")


def describe_error_body(body: Any) -> str:
    """Render ``{"error": {"type": .., "reason": ..}}`` bodies as ``type: reason``."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return f"{error.get('type', '?')}: {error.get('reason', '?')}"
        if error is not None:
            return str(error)
    return str(body) if body is not None else "no body"
