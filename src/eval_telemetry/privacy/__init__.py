"""Content privacy pipeline: capture gate, sampling, redaction, truncation."""
from __future__ import annotations

from .pipeline import decide_field, decide_record, fingerprint, is_sampled, serialize_value
from .policy import ContentPolicy, MessageInfo, ToolCallInfo
from .sampling import normalized_hash, sampling_hash, should_sample

__all__ = [
    "ContentPolicy",
    "MessageInfo",
    "ToolCallInfo",
    "decide_record",
    "decide_field",
    "fingerprint",
    "is_sampled",
    "serialize_value",
    "sampling_hash",
    "normalized_hash",
    "should_sample",
]
