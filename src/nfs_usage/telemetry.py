"""OpenTelemetry integration for nfs-usage.

OTel is an optional extra (``pip install nfs-usage[otel]``).  Modules create
their tracer at import time with :func:`get_tracer`; the returned tracer looks
up the real provider on every span, so spans start flowing as soon as
:func:`init_telemetry` has run and cost nothing before that or when OTel is
not installed.

Metric instruments live in one registry (:func:`get_metrics`) that holds no-op
instruments until telemetry is initialized.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from nfs_usage.settings import ObservabilitySettings

try:
    from opentelemetry import metrics as otel_metrics
    from opentelemetry import trace as otel_trace

    _HAS_OTEL = True
except ModuleNotFoundError:
    _HAS_OTEL = False

# ---------------------------------------------------------------------------
# No-op instruments
# ---------------------------------------------------------------------------


class _NoOpSpan:
    """Span stand-in; also its own context manager."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_status(self, status: Any, description: str | None = None) -> None:
        pass

    def record_exception(self, exception: BaseException, **kwargs: Any) -> None:
        pass

    def end(self) -> None:
        pass

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(self, *args: object) -> None:
        pass


_NOOP_SPAN = _NoOpSpan()


class _NoOpInstrument:
    """Counter and histogram stand-in."""

    def add(self, amount: int | float, attributes: dict[str, Any] | None = None) -> None:
        pass

    def record(self, amount: int | float, attributes: dict[str, Any] | None = None) -> None:
        pass


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class _State:
    initialized: bool = False
    enabled: bool = False


_state = _State()


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------


class Tracer:
    """Named tracer that defers to OTel only while telemetry is enabled."""

    def __init__(self, name: str) -> None:
        self.name = name

    def start_as_current_span(self, span_name: str, **kwargs: Any) -> Any:
        if _state.enabled:
            return otel_trace.get_tracer(self.name).start_as_current_span(span_name, **kwargs)
        return _NOOP_SPAN


def get_tracer(name: str) -> Tracer:
    """Return a tracer for *name*; safe to call at module level."""
    return Tracer(name)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass
class _Metrics:
    """Central registry of metric instruments.

    Field metadata carries the OTel instrument kind, name and description used
    by :meth:`from_meter`.
    """

    walk_entries_visited: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "counter", "name": "nfs_usage_walk_entries_visited", "help": "Entries at target depth"},
    )
    walk_errors_total: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "counter", "name": "nfs_usage_walk_errors_total", "help": "Directory listing errors"},
    )
    measure_latency: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "histogram", "name": "nfs_usage_measure_seconds", "help": "duc run time per directory"},
    )
    index_docs_total: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "counter", "name": "nfs_usage_index_docs_total", "help": "Documents indexed"},
    )
    index_errors_total: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "counter", "name": "nfs_usage_index_errors_total", "help": "Documents not indexed"},
    )
    bulk_batch_latency: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "histogram", "name": "nfs_usage_bulk_batch_seconds", "help": "Bulk request latency"},
    )
    job_duration: Any = field(
        default_factory=_NoOpInstrument,
        metadata={"kind": "histogram", "name": "nfs_usage_job_seconds", "help": "Walk, measure and index per job"},
    )

    @classmethod
    def from_meter(cls, meter: Any) -> _Metrics:
        instruments: dict[str, Any] = {}
        for f in fields(cls):
            meta = f.metadata
            if meta["kind"] == "counter":
                instruments[f.name] = meter.create_counter(meta["name"], description=meta["help"])
            else:
                instruments[f.name] = meter.create_histogram(meta["name"], description=meta["help"], unit="s")
        return cls(**instruments)


_metrics = _Metrics()


def get_metrics() -> _Metrics:
    """Return the metric registry (no-op instruments until telemetry is initialized)."""
    return _metrics


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def init_telemetry(settings: ObservabilitySettings) -> None:
    """Install OTel tracer and meter providers according to *settings*.

    Only the first call in a process does anything.  Without the ``[otel]``
    extra, or with ``enabled = false``, telemetry stays off.
    """
    global _metrics  # noqa: PLW0603

    if _state.initialized:
        return
    _state.initialized = True

    if not settings.enabled or not _HAS_OTEL:
        logger.debug("Telemetry off (enabled={}, otel installed={})", settings.enabled, _HAS_OTEL)
        return

    from opentelemetry.sdk.metrics import MeterProvider  # noqa: PLC0415
    from opentelemetry.sdk.resources import Resource  # noqa: PLC0415
    from opentelemetry.sdk.trace import TracerProvider  # noqa: PLC0415
    from opentelemetry.sdk.trace.export import BatchSpanProcessor  # noqa: PLC0415
    from opentelemetry.sdk.trace.sampling import TraceIdRatioBased  # noqa: PLC0415

    resource = Resource.create({"service.name": settings.service_name, "service.version": _package_version()})
    span_exporter, metric_reader = _build_exporters(settings)

    tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(settings.sample_rate))
    if span_exporter is not None:
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    otel_trace.set_tracer_provider(tracer_provider)

    readers = [metric_reader] if metric_reader is not None else []
    otel_metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    _metrics = _Metrics.from_meter(otel_metrics.get_meter("nfs_usage"))
    _state.enabled = True
    logger.info("Telemetry on (exporter={}, sample_rate={})", settings.exporter, settings.sample_rate)


def shutdown_telemetry() -> None:
    """Flush pending spans and metrics.  A no-op unless telemetry is on."""
    if not _state.enabled:
        return

    for provider in (otel_trace.get_tracer_provider(), otel_metrics.get_meter_provider()):
        shutdown = getattr(provider, "shutdown", None)
        if shutdown is not None:
            shutdown()

    _state.initialized = False
    _state.enabled = False
    logger.debug("Telemetry shut down")


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _package_version() -> str:
    from importlib.metadata import PackageNotFoundError, version  # noqa: PLC0415

    try:
        return version("nfs-usage")
    except PackageNotFoundError:
        return "0.0.0-dev"


def _build_exporters(settings: ObservabilitySettings) -> tuple[Any, Any]:
    """Return ``(span_exporter, metric_reader)`` for ``settings.exporter``; both ``None`` for ``"none"``."""
    if settings.exporter == "none":
        return None, None

    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader  # noqa: PLC0415

    if settings.exporter == "console":
        from opentelemetry.sdk.metrics.export import ConsoleMetricExporter  # noqa: PLC0415
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter  # noqa: PLC0415

        return ConsoleSpanExporter(), PeriodicExportingMetricReader(ConsoleMetricExporter())

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter  # noqa: PLC0415
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter  # noqa: PLC0415

    return (
        OTLPSpanExporter(endpoint=settings.endpoint),
        PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=settings.endpoint)),
    )
