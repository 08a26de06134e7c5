"""Deterministic record identifiers using UUIDv5.

A record id doubles as the content-sampling key, so retries of the same
logical evaluation must map to the same id. When the caller does not supply
one, the id is derived from the provider tag, the start time and a digest of
the request/response payloads.

Constants:
    RECORD_NAMESPACE: UUIDv5 namespace derived from DNS namespace + seed string
        "eval-telemetry-record". This value MUST NOT change as it would change
        every derived id and therefore every sampling decision.

ID Format:
    Record ID: UUIDv5(RECORD_NAMESPACE, f"{provider_tag}:{start_ms:.3f}:{payload_sha256}")
    Conversation ID: f"conv-{record_id}"
"""
from __future__ import annotations

import hashlib
import json
from typing import Any
from uuid import NAMESPACE_DNS, uuid5

RECORD_NAMESPACE = uuid5(NAMESPACE_DNS, "eval-telemetry-record")

__all__ = ["RECORD_NAMESPACE", "payload_digest", "record_uuid", "conversation_id_for"]


def payload_digest(request: Any, response: Any) -> str:
    """SHA-256 over the key-sorted JSON form of the request/response pair."""
    try:
        raw = json.dumps(
            {"request": request, "response": response},
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )
    except (TypeError, ValueError):
        raw = repr((request, response))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def record_uuid(provider_tag: str, start_ms: float, request: Any, response: Any) -> str:
    """Generate a deterministic record id for a provider payload.

    Args:
        provider_tag: Detected or forced provider tag value
        start_ms: Invocation start time (epoch milliseconds)
        request: Raw provider request payload
        response: Raw provider response payload

    Returns:
        UUIDv5 string representation
    """
    name = f"{provider_tag}:{float(start_ms):.3f}:{payload_digest(request, response)}"
    return str(uuid5(RECORD_NAMESPACE, name))


def conversation_id_for(record_id: str) -> str:
    return f"conv-{record_id}"
