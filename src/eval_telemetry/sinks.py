"""Span and metric sinks: the hand-off between the pure core and a backend.

The core never creates spans or instruments itself. It calls two narrow
interfaces supplied by the host:

    SpanSink.record_span(span, events)
    MetricSink.record(point)

Adapters provided here:
    OtelSpanSink / OtelMetricSink: forward to an OpenTelemetry tracer / meter
    RecordingSpanSink / RecordingMetricSink: keep everything in memory

`init_telemetry()` installs a local OpenTelemetry SDK tracer and meter
provider with console exporters (used by the CLI). No network transport is
configured here; hosts wire their own exporters.
"""
from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.trace import Link, SpanKind, Status, StatusCode

from .config import Settings
from .models.emission import MetricPoint, SpanEvent, SpanPayload

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "eval_telemetry"

__all__ = [
    "SpanSink",
    "MetricSink",
    "OtelSpanSink",
    "OtelMetricSink",
    "RecordingSpanSink",
    "RecordingMetricSink",
    "init_telemetry",
    "shutdown_telemetry",
]


class SpanSink(Protocol):
    def record_span(self, span: SpanPayload, events: Sequence[SpanEvent]) -> None: ...


class MetricSink(Protocol):
    def record(self, point: MetricPoint) -> None: ...


_KINDS = {
    "client": SpanKind.CLIENT,
    "internal": SpanKind.INTERNAL,
    "server": SpanKind.SERVER,
}


class OtelSpanSink:
    """Create one OpenTelemetry span per payload.

    Events are stamped with the span start time so replayed records keep
    their original timing. The span is started under `span.parent` and linked
    to every context in `span.links`.
    """

    def __init__(self, tracer: Optional[trace.Tracer] = None):
        self._tracer = tracer or trace.get_tracer(INSTRUMENTATION_NAME)

    def record_span(self, span: SpanPayload, events: Sequence[SpanEvent]) -> None:
        span_ot = self._tracer.start_span(
            span.name,
            kind=_KINDS.get(span.kind, SpanKind.CLIENT),
            start_time=span.start_time_ns,
            attributes=span.attributes,
            context=span.parent,
            links=[Link(ctx) for ctx in span.links],
        )
        for event in events:
            span_ot.add_event(event.name, attributes=event.attributes, timestamp=span.start_time_ns)
        if span.status == "error":
            span_ot.set_status(Status(StatusCode.ERROR, span.status_message))
        else:
            span_ot.set_status(Status(StatusCode.OK))
        span_ot.end(end_time=span.end_time_ns)


class OtelMetricSink:
    """Record metric points on lazily created OpenTelemetry histograms."""

    def __init__(self, meter: Optional[metrics.Meter] = None):
        self._meter = meter or metrics.get_meter(INSTRUMENTATION_NAME)
        self._histograms: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _histogram(self, point: MetricPoint) -> Any:
        with self._lock:
            hist = self._histograms.get(point.name)
            if hist is None:
                hist = self._meter.create_histogram(
                    point.name, unit=point.unit, description=point.description
                )
                self._histograms[point.name] = hist
            return hist

    def record(self, point: MetricPoint) -> None:
        self._histogram(point).record(point.value, attributes=point.attributes)


class RecordingSpanSink:
    def __init__(self) -> None:
        self.spans: List[Tuple[SpanPayload, List[SpanEvent]]] = []

    def record_span(self, span: SpanPayload, events: Sequence[SpanEvent]) -> None:
        self.spans.append((span, list(events)))


class RecordingMetricSink:
    def __init__(self) -> None:
        self.points: List[MetricPoint] = []

    def record(self, point: MetricPoint) -> None:
        self.points.append(point)


_initialized = False


def init_telemetry(settings: Settings) -> None:
    """Install global SDK tracer/meter providers exporting to the console.

    Exporters write to stderr so stdout stays free for canonical JSON output.
    The initialization is idempotent and will only run once.
    """
    global _initialized
    if _initialized:
        return
    attrs: Dict[str, Any] = {
        "service.name": settings.SERVICE_NAME,
        "service.version": settings.SERVICE_VERSION,
        "telemetry.sdk.language": "python",
    }
    if settings.DEPLOYMENT_ENVIRONMENT:
        attrs["deployment.environment"] = settings.DEPLOYMENT_ENVIRONMENT
    resource = Resource.create(attrs)
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))
    trace.set_tracer_provider(tracer_provider)
    reader = PeriodicExportingMetricReader(
        ConsoleMetricExporter(out=sys.stderr), export_interval_millis=60_000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    _initialized = True
    logger.info("Initialized console telemetry for service %s", settings.SERVICE_NAME)


def shutdown_telemetry() -> None:  # pragma: no cover - simple shutdown hook
    """Flush and shut down the global tracer and meter providers."""
    for provider in (trace.get_tracer_provider(), metrics.get_meter_provider()):
        shut_fn = getattr(provider, "shutdown", None)
        if not callable(shut_fn):
            continue
        try:
            shut_fn()
        except Exception:  # pragma: no cover
            logger.debug("Error during telemetry provider shutdown", exc_info=True)
