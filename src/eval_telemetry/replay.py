"""Offline JSONL replay: turn input lines into canonical records.

Accepted line shapes (one JSON object per line):

    Provider payload:
        {"request": {...}, "response": {...}, "startTime": ms, "endTime": ms,
         "id"?: str, "metrics"?: {name: number}, "attributes"?: {...}}
    Canonical record:
        The `CanonicalRecord.to_json_line()` shape (camelCase or snake_case).
    Legacy evaluation result:
        {"id", "timestamp", "operation", "request", "response": {"choices"},
         "usage": {"inputTokens", "outputTokens"}, "performance": {"duration"},
         "conversation": {"id", "messages"}, ...}

Record shapes are recognised first. A provider payload whose shape cannot be
detected (and no provider was forced) is normalized as `unknown`, keeping
only identity, timing and model fields, unless `strict` rejects it.

Errors:
    ReplayError: The line is not JSON, not an object, or not any known shape
    RecordValidationError: The line is a record but violates the model
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from .emission import EmissionOptions
from .mapping.content import build_tool_invocation, choice_field, conversation_fields, iter_dicts
from .mapping.detector import detect_provider
from .mapping.normalizers import coerce_provider_tag, normalize
from .models.canonical import (
    AgentInfo,
    CanonicalRecord,
    ContentField,
    ErrorInfo,
    ProviderTag,
    RagInfo,
    RecordValidationError,
    RequestInfo,
    ResponseInfo,
    TokenUsage,
    ToolExecution,
    ToolInvocation,
    WorkflowInfo,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ReplayError",
    "ReplayItem",
    "parse_line",
    "load_canonical",
    "legacy_to_record",
    "iter_jsonl",
]

_CANONICAL_MARKERS = (
    "providerTag",
    "provider_tag",
    "contentFields",
    "content_fields",
    "durationSeconds",
    "duration_seconds",
)
_LEGACY_MARKERS = ("performance", "conversation")


class ReplayError(ValueError):
    """A replay line could not be interpreted."""


@dataclass
class ReplayItem:
    record: CanonicalRecord
    source: str  # "payload" | "canonical" | "legacy"
    options: EmissionOptions = field(default_factory=EmissionOptions)


def _wrap_validation(record_id: Optional[str], exc: ValidationError) -> RecordValidationError:
    errors = [
        {"loc": tuple(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return RecordValidationError(record_id, errors)


def _record_id(obj: Dict[str, Any]) -> Optional[str]:
    rid = obj.get("id")
    return str(rid) if rid is not None else None


def load_canonical(obj: Dict[str, Any]) -> CanonicalRecord:
    """Load a canonical record object; pydantic errors become RecordValidationError."""
    try:
        return CanonicalRecord.model_validate(obj)
    except ValidationError as exc:
        raise _wrap_validation(_record_id(obj), exc) from exc


def _legacy_choices(choices: Any) -> Tuple[List[ContentField], List[ToolInvocation]]:
    fields: List[ContentField] = []
    tools: List[ToolInvocation] = []
    for pos, choice in iter_dicts(choices):
        index = choice.get("index") if isinstance(choice.get("index"), int) else pos
        message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
        fields.append(
            choice_field(
                index,
                message.get("content"),
                role=message.get("role"),
                finish_reason=choice.get("finishReason"),
            )
        )
        for j, call in iter_dicts(message.get("toolCalls")):
            fn = call.get("function") if isinstance(call.get("function"), dict) else {}
            tools.append(
                build_tool_invocation(
                    fn.get("name"), fn.get("arguments"), call_id=call.get("id"),
                    choice_index=index, index=j,
                )
            )
    return fields, tools


def legacy_to_record(obj: Dict[str, Any]) -> CanonicalRecord:
    """Convert a legacy evaluation-result object into a canonical record."""
    record_id = _record_id(obj)
    try:
        request = obj.get("request") or {}
        response = obj.get("response") or {}
        usage = obj.get("usage") or {}
        performance = obj.get("performance") or {}
        conversation = obj.get("conversation") or {}
        conv_fields, _images = conversation_fields(conversation.get("messages"))
        choice_fields, tools = _legacy_choices(response.get("choices"))
        data: Dict[str, Any] = {
            "id": record_id,
            "timestamp": obj.get("timestamp"),
            "duration_seconds": performance.get("duration", 0.0),
            "system": obj.get("system"),
            "operation": obj.get("operation", "chat"),
            "request": RequestInfo.model_validate(request),
            "response": ResponseInfo.model_validate(response),
            "usage": TokenUsage.from_counts(
                usage.get("inputTokens"), usage.get("outputTokens"), usage.get("totalTokens")
            ),
            "time_to_first_token": performance.get("timeToFirstToken"),
            "time_per_output_token": performance.get("timePerOutputToken"),
            "conversation_id": conversation.get("id"),
            "content_fields": conv_fields + choice_fields,
            "tool_invocations": tools,
        }
        for key, model in (
            ("error", ErrorInfo),
            ("tool", ToolExecution),
            ("agent", AgentInfo),
            ("workflow", WorkflowInfo),
            ("rag", RagInfo),
        ):
            if obj.get(key) is not None:
                data[key] = model.model_validate(obj[key])
        return CanonicalRecord(**data)
    except ValidationError as exc:
        raise _wrap_validation(record_id, exc) from exc
    except AttributeError as exc:
        # a nested block was not an object
        raise RecordValidationError(
            record_id, [{"loc": (), "msg": str(exc), "type": "model_type"}]
        ) from exc


def _record_shape(obj: Dict[str, Any]) -> Optional[str]:
    if any(k in obj for k in _CANONICAL_MARKERS):
        return "canonical"
    if any(isinstance(obj.get(k), dict) for k in _LEGACY_MARKERS):
        return "legacy"
    return None


def _load_record_object(obj: Dict[str, Any], shape: Optional[str]) -> ReplayItem:
    if shape == "canonical":
        return ReplayItem(record=load_canonical(obj), source=shape, options=_options(obj))
    if shape == "legacy":
        return ReplayItem(record=legacy_to_record(obj), source=shape, options=_options(obj))
    raise ReplayError("line is neither a provider payload nor an evaluation record")


def _options(obj: Dict[str, Any]) -> EmissionOptions:
    metrics = obj.get("metrics") if isinstance(obj.get("metrics"), dict) else {}
    attributes = obj.get("attributes") if isinstance(obj.get("attributes"), dict) else {}
    return EmissionOptions(attributes=attributes, metrics=metrics)


def _time_ms(obj: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def parse_line(
    line: str,
    *,
    provider: Optional[Union[ProviderTag, str]] = None,
    strict: bool = False,
) -> Optional[ReplayItem]:
    """Interpret one JSONL line.

    Args:
        line: Raw line text (blank lines yield None)
        provider: Force this provider tag for payload lines
        strict: Reject payload lines whose shape cannot be detected instead of
            normalizing them as `unknown`

    Returns:
        ReplayItem, or None for blank lines
    """
    text = line.strip()
    if not text:
        return None
    try:
        obj = json.loads(text)
    except ValueError as exc:
        raise ReplayError(f"invalid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ReplayError("line must be a JSON object")

    shape = _record_shape(obj)
    if shape is None and ("request" in obj or "response" in obj):
        request, response = obj.get("request"), obj.get("response")
        tag = coerce_provider_tag(provider) if provider is not None else ProviderTag.UNKNOWN
        if tag is ProviderTag.UNKNOWN:
            tag = detect_provider(request, response)
        if tag is ProviderTag.UNKNOWN:
            if strict:
                raise ReplayError("provider autodetect failed and fallback is disabled")
            logger.debug("payload shape undetected; normalizing as unknown provider")
        start = _time_ms(obj, "startTime", "start_time")
        if start is None:
            start = time.time() * 1000
        end = _time_ms(obj, "endTime", "end_time")
        try:
            record = normalize(
                tag,
                request,
                response,
                start,
                end if end is not None else start + 1000,
                eval_id=_record_id(obj),
                conversation_id=obj.get("conversationId"),
                tool_execution=obj.get("tool"),
            )
        except ValidationError as exc:
            raise _wrap_validation(_record_id(obj), exc) from exc
        return ReplayItem(record=record, source="payload", options=_options(obj))
    return _load_record_object(obj, shape)


def iter_jsonl(path: Union[str, Path]) -> Iterator[Tuple[int, str]]:
    """Yield (line_number, line) pairs, 1-based, skipping blank lines."""
    with open(path, "r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if line.strip():
                yield lineno, line
