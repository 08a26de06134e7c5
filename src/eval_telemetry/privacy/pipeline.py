"""Per-record and per-field content emission decisions.

Decision procedure:
    1. Capture flag off -> no field emits (gate closed).
    2. Record-level sampling: custom sampler, else deterministic id hash.
       A sampler that raises closes the gate.
    3. Gate closed -> stop; no field reaches redaction.
    4. Per field: specialized hook (message content or tool arguments) if
       configured, else the general string hook, else identity. A hook that
       returns None or raises withholds the value and leaves only a
       fingerprint of the original.
    5. Values longer than `max_content_length` are cut to exactly that many
       characters; `truncated` is reported only with `mark_truncated`.
    6. `content_type` is `json` for structured fields, `text` otherwise.

Fail-Closed Contract:
    Hook exceptions are logged at WARNING with the record id and never
    re-raised. They can only ever remove content, never expose raw content.

Public Functions:
    decide_record: Gate + per-field decisions for one CanonicalRecord
    decide_field: Redaction/truncation decision for one field (gate assumed open)
    serialize_value: Canonical string form of a raw value
    fingerprint: SHA-256 hex digest of a raw value's serialized form
"""
from __future__ import annotations

import copy
import hashlib
import json
import logging
from typing import Any, List, Optional, Tuple

from ..models.canonical import CanonicalRecord, ContentField, ContentKind, ContentSource
from ..models.emission import ContentType, EmissionDecision, RecordDecisions
from .policy import ContentPolicy, MessageInfo, ToolCallInfo
from .sampling import should_sample

logger = logging.getLogger(__name__)

__all__ = ["decide_record", "decide_field", "serialize_value", "fingerprint", "is_sampled"]


class _Withheld(Exception):
    """Internal signal: a hook asked for the value to be withheld."""


def serialize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def fingerprint(value: Any) -> str:
    return hashlib.sha256(serialize_value(value).encode("utf-8", errors="surrogatepass")).hexdigest()


def is_sampled(record: CanonicalRecord, policy: ContentPolicy) -> bool:
    """Record-level sampling decision; a failing sampler means "not sampled"."""
    if policy.sampler is not None:
        try:
            return bool(policy.sampler(record))
        except Exception as exc:
            logger.warning(
                "content sampler raised for record %s; withholding content: %s",
                record.id,
                exc,
            )
            return False
    return should_sample(record.id, policy.sample_rate)


def _apply_hooks(field: ContentField, policy: ContentPolicy, record_id: str) -> Tuple[str, bool]:
    """Run the applicable redaction hook.

    Returns:
        Tuple of (value, changed). Raises `_Withheld` when the hook returned
        None; hook exceptions propagate to the caller.
    """
    original = serialize_value(field.raw_value)
    result: Any
    if field.source is ContentSource.TOOL_CALL and policy.redact_tool_arguments is not None:
        info = ToolCallInfo(
            function_name=field.tool_name or "unknown",
            call_id=field.tool_call_id,
            index=field.index,
            record_id=record_id,
        )
        result = policy.redact_tool_arguments(copy.deepcopy(field.raw_value), info)
    elif field.source is not ContentSource.TOOL_CALL and policy.redact_message_content is not None:
        info_msg = MessageInfo(
            role=field.role.value,
            index=field.index,
            source=field.source.value,
            record_id=record_id,
        )
        result = policy.redact_message_content(copy.deepcopy(field.raw_value), info_msg)
    elif policy.redact is not None:
        result = policy.redact(original)
    else:
        return original, False
    if result is None:
        raise _Withheld()
    value = result if isinstance(result, str) else serialize_value(result)
    return value, value != original


def _truncate(value: str, limit: Optional[int]) -> Tuple[str, bool]:
    if isinstance(limit, int) and limit > 0 and len(value) > limit:
        return value[:limit], True
    return value, False


def decide_field(field: ContentField, policy: ContentPolicy, record_id: str = "") -> EmissionDecision:
    """Decide how one field's content is emitted, assuming the record gate is open.

    Args:
        field: Content field (its `raw_value` is never modified)
        policy: Active content policy
        record_id: Owning record id (passed to hooks and used in logs)

    Returns:
        EmissionDecision with `emit=True`; `value` is None when withheld
    """
    content_type = ContentType.JSON if field.kind is ContentKind.STRUCTURED else ContentType.TEXT
    try:
        value, changed = _apply_hooks(field, policy, record_id)
    except _Withheld:
        return EmissionDecision(
            emit=True,
            content_type=content_type,
            fingerprint=fingerprint(field.raw_value),
            redacted=True,
        )
    except Exception as exc:
        logger.warning(
            "redaction hook raised for record %s field %s[%d]; emitting fingerprint only: %s",
            record_id,
            field.source.value,
            field.index,
            exc,
        )
        return EmissionDecision(
            emit=True,
            content_type=content_type,
            fingerprint=fingerprint(field.raw_value),
            redacted=True,
            hook_failed=True,
        )
    value, was_cut = _truncate(value, policy.max_content_length)
    return EmissionDecision(
        emit=True,
        value=value,
        content_type=content_type,
        truncated=was_cut and policy.mark_truncated,
        redacted=changed,
    )


def decide_record(record: CanonicalRecord, policy: ContentPolicy) -> RecordDecisions:
    """Apply the record gate once, then decide every field in emission order."""
    fields: List[ContentField] = list(record.iter_content_fields())
    if not policy.capture_content:
        return RecordDecisions(
            capture_enabled=False,
            sampled=False,
            decisions=[EmissionDecision(emit=False) for _ in fields],
        )
    if not is_sampled(record, policy):
        logger.debug("record %s not sampled for content capture", record.id)
        return RecordDecisions(
            capture_enabled=True,
            sampled=False,
            decisions=[EmissionDecision(emit=False) for _ in fields],
        )
    return RecordDecisions(
        capture_enabled=True,
        sampled=True,
        decisions=[decide_field(f, policy, record.id) for f in fields],
    )
