"""Models describing what the core hands to the host's span and metric sinks.

`process()` is pure: it returns a `ProcessResult` holding one `SpanPayload`,
its `SpanEvent`s and the `MetricPoint`s to record. Creating spans and
histograms from these values is the host's job (see `eval_telemetry.sinks`).
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

AttributeValue = Union[str, bool, int, float, Sequence[str], Sequence[int], Sequence[float]]

__all__ = [
    "AttributeValue",
    "ContentType",
    "EmissionDecision",
    "RecordDecisions",
    "SpanEvent",
    "SpanPayload",
    "MetricPoint",
    "ProcessResult",
]


class ContentType(str, Enum):
    TEXT = "text"
    JSON = "json"


class EmissionDecision(BaseModel):
    """The privacy pipeline's verdict for one content field.

    `emit` is True when an event is materialized for the field (with either a
    value or only a fingerprint). `value` is None whenever content must not
    leave the process; `fingerprint` is then set to a one-way hash of the
    original value.
    """

    emit: bool
    value: Optional[str] = None
    content_type: ContentType = ContentType.TEXT
    truncated: bool = False
    fingerprint: Optional[str] = None
    redacted: bool = False
    hook_failed: bool = False


class RecordDecisions(BaseModel):
    """Record-level gate outcome plus one decision per content field."""

    capture_enabled: bool
    sampled: bool
    decisions: List[EmissionDecision] = Field(default_factory=list)

    @property
    def gate_open(self) -> bool:
        return self.capture_enabled and self.sampled


class SpanEvent(BaseModel):
    name: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class SpanPayload(BaseModel):
    """Everything needed to create the span for one record.

    `parent` is an OpenTelemetry Context and `links` are valid SpanContexts;
    both are live objects and are left out of serialized output.
    """

    name: str
    kind: str = "client"
    start_time_ns: int
    end_time_ns: int
    attributes: Dict[str, Any] = Field(default_factory=dict)
    status: str = "ok"  # "ok" | "error"
    status_message: Optional[str] = None
    error_type: Optional[str] = None
    parent: Optional[Any] = Field(default=None, exclude=True)
    links: List[Any] = Field(default_factory=list, exclude=True)


class MetricPoint(BaseModel):
    """A single histogram observation."""

    name: str
    value: float
    unit: str
    description: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ProcessResult(BaseModel):
    record_id: str
    span: SpanPayload
    events: List[SpanEvent] = Field(default_factory=list)
    metrics: List[MetricPoint] = Field(default_factory=list)
    decisions: RecordDecisions
    events_dropped: int = 0
