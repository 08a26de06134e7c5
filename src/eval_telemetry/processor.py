"""Record processing entry points.

`process()` is the pure core: validate, decide, build. `emit()` is the only
place that touches the host's sinks. Keeping them separate lets dry runs,
tests and offline tooling inspect exactly what would be sent.

Per-Record State:
    An `EventBudget` is created inside `process()` for the record being
    processed and discarded when it returns. Nothing else is carried between
    calls, so records may be processed concurrently from many threads.
"""
from __future__ import annotations

import logging
from typing import Optional

from .emission import EmissionOptions, build_events, build_metric_points, build_span
from .guard import EventBudget
from .models.canonical import CanonicalRecord, validate_record
from .models.emission import ProcessResult
from .privacy.pipeline import decide_record
from .privacy.policy import ContentPolicy
from .sinks import MetricSink, SpanSink

logger = logging.getLogger(__name__)

__all__ = ["process", "emit"]


def process(
    record: CanonicalRecord,
    policy: Optional[ContentPolicy] = None,
    options: Optional[EmissionOptions] = None,
) -> ProcessResult:
    """Build the span, events and metric points for one record.

    Args:
        record: Normalized record (not modified)
        policy: Content policy; defaults to capture disabled
        options: Extra attributes, custom metrics, parent and links from the host

    Returns:
        ProcessResult ready to hand to `emit()`

    Raises:
        RecordValidationError: When the record lacks a model name or carries
            a negative duration.
    """
    policy = policy or ContentPolicy()
    options = options or EmissionOptions()
    validate_record(record)
    decisions = decide_record(record, policy)
    budget = EventBudget(policy.max_events_per_span)
    events = build_events(record, decisions, policy, budget)
    return ProcessResult(
        record_id=record.id,
        span=build_span(
            record,
            policy,
            options.attributes,
            parent=options.parent,
            links=options.links,
        ),
        events=events,
        metrics=build_metric_points(record, policy, options),
        decisions=decisions,
        events_dropped=budget.dropped,
    )


def emit(result: ProcessResult, span_sink: SpanSink, metric_sink: MetricSink) -> None:
    """Forward a processed record to the host's span and metric sinks."""
    span_sink.record_span(result.span, result.events)
    for point in result.metrics:
        metric_sink.record(point)
    logger.debug(
        "emitted record %s: span=%s events=%d metrics=%d",
        result.record_id,
        result.span.name,
        len(result.events),
        len(result.metrics),
    )
