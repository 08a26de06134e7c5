"""Content policy container and the hook signatures it accepts.

`ContentPolicy` is immutable configuration handed to `process()`. Hooks are
plain callables supplied by the host; the pipeline calls them under a
fail-closed contract (an exception means "do not emit this content").

Hook Signatures:
    sampler(record) -> bool
    redact(serialized: str) -> str | None
    redact_message_content(value, MessageInfo) -> str | dict | list | None
    redact_tool_arguments(value, ToolCallInfo) -> str | dict | list | None
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..models.canonical import CanonicalRecord

__all__ = ["ContentPolicy", "MessageInfo", "ToolCallInfo"]


@dataclass(frozen=True)
class MessageInfo:
    """Context passed to the message-content redaction hook."""

    role: str
    index: int
    source: str
    record_id: str


@dataclass(frozen=True)
class ToolCallInfo:
    """Context passed to the tool-argument redaction hook."""

    function_name: str
    call_id: Optional[str]
    index: int
    record_id: str


@dataclass(frozen=True)
class ContentPolicy:
    capture_content: bool = False
    sample_rate: float = 1.0
    sampler: Optional[Callable[["CanonicalRecord"], bool]] = None
    max_content_length: Optional[int] = None
    mark_truncated: bool = False
    redact: Optional[Callable[[str], Optional[str]]] = None
    redact_message_content: Optional[Callable[[Any, MessageInfo], Any]] = None
    redact_tool_arguments: Optional[Callable[[Any, ToolCallInfo], Any]] = None
    suppress_informational_events: bool = False
    max_events_per_span: Optional[int] = None
    metric_attribute_allowlist: Optional[List[str]] = field(default=None)
    max_metric_attributes: Optional[int] = None
    environment: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.sample_rate) <= 1.0:
            raise ValueError(f"sample_rate must be within [0, 1], got {self.sample_rate!r}")
        for name in ("max_content_length", "max_events_per_span", "max_metric_attributes"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value!r}")
