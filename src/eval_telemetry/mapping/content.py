"""Content field construction shared by the provider normalizers.

Turns provider message lists, choice messages and tool calls into the uniform
`ContentField` / `ToolInvocation` lists the privacy pipeline operates on.

Parsing Rules:
    - Plain string content stays text.
    - Lists of typed parts (OpenAI multimodal, Anthropic blocks, Vertex parts)
      collapse to their text parts joined by newline; non-text parts are
      dropped and reported through the `has_images` flag where relevant.
    - Dict content stays structured.
    - Tool arguments arriving as JSON strings are parsed; a parse failure keeps
      the raw string (text field) instead of aborting the record.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Iterable, List, Optional, Tuple

from ..models.canonical import (
    ContentField,
    ContentRole,
    ContentSource,
    ToolInvocation,
    coerce_role,
)

logger = logging.getLogger(__name__)

__all__ = [
    "parse_tool_arguments",
    "text_from_parts",
    "conversation_fields",
    "choice_field",
    "build_tool_invocation",
    "iter_dicts",
]


def parse_tool_arguments(raw: Any) -> Any:
    """Parse JSON-encoded tool arguments, degrading to the raw string on failure."""
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("tool arguments are not valid JSON; keeping opaque string (len=%d)", len(raw))
        return raw


def _is_text_part(part: Any) -> bool:
    if not isinstance(part, dict):
        return False
    part_type = part.get("type")
    return part_type in (None, "text") and isinstance(part.get("text"), str)


def _is_image_part(part: Any) -> bool:
    return isinstance(part, dict) and part.get("type") in ("image_url", "image", "input_image")


def text_from_parts(content: Any) -> Tuple[Any, bool]:
    """Collapse provider content into a text or structured value.

    Returns:
        Tuple of (value, has_images). `value` is a string for text content, the
        original dict for structured content, or None when nothing usable exists.
    """
    if content is None:
        return None, False
    if isinstance(content, str):
        return content, False
    if isinstance(content, list):
        texts = [p["text"] for p in content if _is_text_part(p) and p["text"]]
        has_images = any(_is_image_part(p) for p in content)
        return "\n".join(texts), has_images
    if isinstance(content, dict):
        return content, False
    return str(content), False


def conversation_fields(messages: Any, *, content_key: str = "content") -> Tuple[List[ContentField], bool]:
    """Build conversation content fields from a provider message list.

    Args:
        messages: Provider message list (non-lists yield no fields)
        content_key: Key holding message content (`content`, `parts`, `message`)

    Returns:
        Tuple of (fields, has_images) with one field per dict message, indexed
        by position in the original list.
    """
    fields: List[ContentField] = []
    has_images = False
    if not isinstance(messages, list):
        return fields, has_images
    for idx, msg in enumerate(messages):
        if not isinstance(msg, dict):
            continue
        value, images = text_from_parts(msg.get(content_key))
        has_images = has_images or images
        call_id = msg.get("tool_call_id") or msg.get("toolCallId")
        fields.append(
            ContentField(
                role=coerce_role(msg.get("role")),
                index=idx,
                kind=ContentField.kind_for(value),
                raw_value=value,
                source=ContentSource.CONVERSATION,
                tool_call_id=call_id if isinstance(call_id, str) else None,
            )
        )
    return fields, has_images


def choice_field(
    index: int,
    content: Any,
    *,
    role: Any = ContentRole.ASSISTANT,
    finish_reason: Optional[str] = None,
) -> ContentField:
    value, _images = text_from_parts(content)
    return ContentField(
        role=coerce_role(role) if role is not None else ContentRole.ASSISTANT,
        index=index,
        kind=ContentField.kind_for(value),
        raw_value=value,
        source=ContentSource.CHOICE,
        finish_reason=finish_reason if isinstance(finish_reason, str) else None,
    )


def build_tool_invocation(
    name: Any,
    arguments: Any,
    *,
    call_id: Any = None,
    choice_index: Optional[int] = None,
    index: int = 0,
) -> ToolInvocation:
    return ToolInvocation(
        name=name if isinstance(name, str) and name else "unknown",
        call_id=call_id if isinstance(call_id, str) else None,
        raw_arguments=parse_tool_arguments(arguments),
        choice_index=choice_index,
        index=index,
    )


def iter_dicts(items: Any) -> Iterable[Tuple[int, dict]]:
    """Enumerate the dict entries of a list, skipping anything else."""
    if not isinstance(items, list):
        return []
    return [(i, item) for i, item in enumerate(items) if isinstance(item, dict)]
