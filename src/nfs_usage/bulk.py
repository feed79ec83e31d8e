"""Batched bulk ingestion into the index store.

Records are grouped, in input order, into fixed-size batches.  Each batch is
encoded as one line-delimited payload (``{"index":{}}`` header + document per
record) and sent as a single request.  Batches go out strictly one after the
other over the same transport, so at most one serialised batch is in flight
and a slow store directly throttles the producer.

Failure classes, per batch:

* transport error (no HTTP answer) — every record in the batch is errored;
* HTTP error for the whole request — every record in the batch is errored;
* accepted request — each item result is inspected; statuses outside
  200/201 are errored, the rest indexed.

None of these stop the run.  Only a record that cannot be serialised does
(:class:`~nfs_usage.errors.SerializationError`).
"""

from __future__ import annotations

import itertools
import json
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger

from nfs_usage.errors import BatchRequestError, BatchTransportError, SerializationError, describe_error_body
from nfs_usage.telemetry import get_metrics, get_tracer

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

_tracer = get_tracer(__name__)

DEFAULT_BATCH_SIZE = 255

_ACTION_HEADER = b'{"index":{}}\n'


class BulkTransport(Protocol):
    """Sends one encoded bulk payload and returns the decoded response body.

    Implementations raise :class:`BatchTransportError` when no HTTP answer
    arrives and :class:`BatchRequestError` when the request as a whole fails.
    """

    def bulk(self, payload: bytes) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class Severity(StrEnum):
    OK = "ok"
    ERROR = "error"


@dataclass
class IndexingStats:
    """Counters for one :meth:`BulkIndexer.submit` call.

    After a non-fatal run ``indexed + errored == submitted``.
    """

    submitted: int = 0
    indexed: int = 0
    errored: int = 0
    batches: int = 0
    elapsed_s: float = 0.0

    @property
    def rate(self) -> float:
        """Successfully indexed documents per second."""
        return self.indexed / self.elapsed_s if self.elapsed_s > 0 else 0.0

    @property
    def ok(self) -> bool:
        return self.errored == 0

    @property
    def severity(self) -> Severity:
        return Severity.OK if self.ok else Severity.ERROR

    def summary(self) -> str:
        """Human-readable end-of-run line."""
        if self.ok:
            return (
                f"Successfully indexed [{self.indexed:,}] documents "
                f"in {self.elapsed_s:.3f}s ({self.rate:,.0f} docs/sec)"
            )
        return (
            f"Indexed [{self.indexed:,}] documents with [{self.errored:,}] errors "
            f"in {self.elapsed_s:.3f}s ({self.rate:,.0f} docs/sec)"
        )


# ---------------------------------------------------------------------------
# Batching and encoding
# ---------------------------------------------------------------------------


def iter_batches(records: Iterable[Any], size: int) -> Iterator[tuple[Any, ...]]:
    """Group *records* in order into batches of *size*; the last holds the remainder."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return itertools.batched(records, size)


def encode_record(record: Any) -> bytes:
    """Serialise one record body (no trailing newline).

    Accepts a mapping or any object with a ``to_document()`` method.
    """
    doc = record.to_document() if hasattr(record, "to_document") else record
    return json.dumps(doc, ensure_ascii=False, allow_nan=False, separators=(",", ":")).encode("utf-8")


def encode_batch(batch: Sequence[Any], *, offset: int = 0) -> bytes:
    """Encode *batch* as a line-delimited bulk payload.

    *offset* is the position of the first record in the whole submission and
    only feeds the error message.
    """
    buf = bytearray()
    for i, record in enumerate(batch):
        try:
            body = encode_record(record)
        except (TypeError, ValueError) as exc:
            raise SerializationError(offset + i, exc) from exc
        buf += _ACTION_HEADER
        buf += body
        buf += b"\n"
    return bytes(buf)


# ---------------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------------


class BulkIndexer:
    """Drains a record sequence into the index store, one batch at a time."""

    def __init__(self, transport: BulkTransport, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError(f"batch size must be >= 1, got {batch_size}")
        self._transport = transport
        self.batch_size = batch_size

    def submit(self, records: Iterable[Any]) -> IndexingStats:
        """Index every record and return the accumulated stats.

        Raises :class:`SerializationError` (fatal) if a record cannot be
        encoded; every other failure is counted and the run continues.
        """
        stats = IndexingStats()
        start = time.perf_counter()
        metrics = get_metrics()

        with _tracer.start_as_current_span("bulk.submit", attributes={"batch_size": self.batch_size}) as span:
            for batch_no, batch in enumerate(iter_batches(records, self.batch_size)):
                payload = encode_batch(batch, offset=stats.submitted)
                stats.submitted += len(batch)
                stats.batches += 1

                indexed, errored = self._send(batch_no, len(batch), payload)
                stats.indexed += indexed
                stats.errored += errored
                metrics.index_docs_total.add(indexed)
                metrics.index_errors_total.add(errored)

            stats.elapsed_s = time.perf_counter() - start
            span.set_attribute("submitted", stats.submitted)
            span.set_attribute("errored", stats.errored)

        if stats.ok:
            logger.info(stats.summary())
        else:
            logger.error(stats.summary())
        return stats

    def _send(self, batch_no: int, count: int, payload: bytes) -> tuple[int, int]:
        """Send one batch; return ``(indexed, errored)`` for it."""
        logger.debug("Sending batch {} ({} records, {} bytes)", batch_no, count, len(payload))
        t0 = time.perf_counter()
        try:
            response = self._transport.bulk(payload)
        except BatchTransportError as exc:
            logger.error("Failure indexing batch {}: {}", batch_no, exc)
            return 0, count
        except BatchRequestError as exc:
            logger.error("  Error: [{}] {}", exc.status, describe_error_body(exc.body))
            return 0, count
        finally:
            get_metrics().bulk_batch_latency.record(time.perf_counter() - t0)

        return _classify_items(batch_no, response, count)


def _classify_items(batch_no: int, response: Any, expected: int) -> tuple[int, int]:
    """Count per-item successes and failures in an accepted bulk response.

    Item results missing from the response count as errors.
    """
    items = response.get("items") if isinstance(response, dict) else None
    if not isinstance(items, list):
        logger.error("Batch {}: response carries no per-item results, counting {} as failed", batch_no, expected)
        return 0, expected

    indexed = errored = 0
    for item in items[:expected]:
        result = next(iter(item.values()), None) if isinstance(item, dict) and item else None
        if not isinstance(result, dict):
            errored += 1
            logger.error("  Error: malformed item result {!r}", item)
            continue
        status = result.get("status", 0)
        if isinstance(status, int) and 200 <= status <= 201:
            indexed += 1
            continue
        errored += 1
        error = result.get("error") or {}
        if isinstance(error, dict):
            cause = error.get("caused_by") or {}
            logger.error(
                "  Error: [{}]: {}: {}: {}: {}",
                status,
                error.get("type", ""),
                error.get("reason", ""),
                cause.get("type", ""),
                cause.get("reason", ""),
            )
        else:
            logger.error("  Error: [{}]: {}", status, error)

    missing = expected - min(len(items), expected)
    if missing:
        logger.error("Batch {}: response is missing {} item result(s)", batch_no, missing)
        errored += missing
    return indexed, errored
