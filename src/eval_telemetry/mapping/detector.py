"""Provider shape detection for raw (request, response) payload pairs.

No provider payload carries an explicit "provider" discriminator, so detection
sniffs for the presence, absence and type of specific fields. Checks run
top-to-bottom and the first match wins; a later, more specific heuristic never
overrides an earlier one even when both match an ambiguous payload.

Field checks use JavaScript truthiness (`_truthy`): empty objects and arrays
count as present, zero, NaN and empty strings do not.

Priority order (immutable contract, pinned by tests):
    1. openai-chat: `object == "chat.completion"` or a `system_fingerprint`
    2. openai-compatible: first choice's first tool call has string arguments
    3. bedrock: `modelId` on the response or request
    4. vertex: `candidates` array on the response
    5. anthropic: typed content parts including a `tool_use` part
    6. cohere: plain `text` plus `meta.billed_units`
    7. ollama: `message.role` plus eval/load duration or eval counts
    8. unknown

Public Functions:
    detect_provider: Return the ProviderTag for a payload pair (never raises)
"""
from __future__ import annotations

import logging
import math
from typing import Any, Callable, List, Optional, Tuple

from ..models.canonical import ProviderTag

logger = logging.getLogger(__name__)

__all__ = ["detect_provider", "DETECTION_ORDER"]


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return None


def _truthy(value: Any) -> bool:
    """JavaScript-style truthiness, so detection agrees across SDKs.

    Only None, False, 0, NaN and "" are falsy; empty dicts and lists count as
    present, unlike Python's `bool()`.
    """
    if value is None or value is False or value == "":
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not math.isnan(value)
    return True


def _first(seq: Any) -> Any:
    if isinstance(seq, list) and seq:
        return seq[0]
    return None


def _is_openai_chat(request: Any, response: Any) -> bool:
    return _get(response, "object") == "chat.completion" or _truthy(
        _get(response, "system_fingerprint")
    )


def _is_openai_compatible(request: Any, response: Any) -> bool:
    choices = _get(response, "choices")
    if not isinstance(choices, list):
        return False
    tool_calls = _get(_get(_first(choices), "message"), "tool_calls")
    if not _truthy(tool_calls):
        return False
    arguments = _get(_get(_first(tool_calls), "function"), "arguments")
    return isinstance(arguments, str)


def _is_bedrock(request: Any, response: Any) -> bool:
    return _truthy(_get(response, "modelId")) or _truthy(_get(request, "modelId"))


def _is_vertex(request: Any, response: Any) -> bool:
    return isinstance(_get(response, "candidates"), list)


def _is_anthropic(request: Any, response: Any) -> bool:
    content = _get(response, "content")
    if not isinstance(content, list):
        return False
    return any(_get(part, "type") == "tool_use" for part in content)


def _is_cohere(request: Any, response: Any) -> bool:
    return isinstance(_get(response, "text"), str) and _truthy(
        _get(_get(response, "meta"), "billed_units")
    )


def _is_ollama(request: Any, response: Any) -> bool:
    if not _truthy(_get(_get(response, "message"), "role")):
        return False
    return any(
        _truthy(_get(response, key))
        for key in ("eval_duration", "load_duration", "prompt_eval_count")
    )


DETECTION_ORDER: List[Tuple[ProviderTag, Callable[[Any, Any], bool]]] = [
    (ProviderTag.OPENAI_CHAT, _is_openai_chat),
    (ProviderTag.OPENAI_COMPATIBLE, _is_openai_compatible),
    (ProviderTag.BEDROCK, _is_bedrock),
    (ProviderTag.VERTEX, _is_vertex),
    (ProviderTag.ANTHROPIC, _is_anthropic),
    (ProviderTag.COHERE, _is_cohere),
    (ProviderTag.OLLAMA, _is_ollama),
]


def detect_provider(request: Optional[Any], response: Optional[Any]) -> ProviderTag:
    """Classify a payload pair by shape.

    Pure and total: malformed or partial input is treated as "not matching"
    and yields `ProviderTag.UNKNOWN` rather than an exception.

    Args:
        request: Raw provider request payload (dict, or anything else)
        response: Raw provider response payload (dict, or anything else)

    Returns:
        First matching ProviderTag in priority order, else UNKNOWN
    """
    for tag, matches in DETECTION_ORDER:
        try:
            if matches(request, response):
                return tag
        except Exception:  # pragma: no cover - _get guards every access
            logger.debug("detector check %s raised; treating as no match", tag.value, exc_info=True)
    return ProviderTag.UNKNOWN
