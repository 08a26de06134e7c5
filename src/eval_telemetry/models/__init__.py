"""Canonical record and emission models."""
from __future__ import annotations

from .canonical import (
    CanonicalRecord,
    ContentField,
    ContentKind,
    ContentRole,
    ContentSource,
    Operation,
    ProviderTag,
    RecordValidationError,
    TokenUsage,
    ToolInvocation,
    validate_record,
)
from .emission import (
    ContentType,
    EmissionDecision,
    MetricPoint,
    ProcessResult,
    RecordDecisions,
    SpanEvent,
    SpanPayload,
)

__all__ = [
    "CanonicalRecord",
    "ContentField",
    "ContentKind",
    "ContentRole",
    "ContentSource",
    "Operation",
    "ProviderTag",
    "RecordValidationError",
    "TokenUsage",
    "ToolInvocation",
    "validate_record",
    "ContentType",
    "EmissionDecision",
    "MetricPoint",
    "ProcessResult",
    "RecordDecisions",
    "SpanEvent",
    "SpanPayload",
]
