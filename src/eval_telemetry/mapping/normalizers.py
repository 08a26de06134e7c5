"""Per-provider conversion of raw payloads into a `CanonicalRecord`.

One pure function per `ProviderTag`, selected through an explicit table over
the closed enum (no structural inference happens here; that is the
detector's job). Every function is a best-effort, total mapping:

    - Absent optional fields stay absent (token counts are never coerced to 0,
      finish reasons and response ids are never invented).
    - Wrongly typed values are dropped rather than raising.
    - Tool-call arguments sent as JSON strings are parsed; malformed strings
      become opaque text content fields.

Public Functions:
    normalize: Convert (tag, request, response, start, end) to CanonicalRecord
    normalize_payload: Detect the provider (unless forced) then normalize
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from ..models.canonical import (
    CanonicalRecord,
    ContentField,
    ContentRole,
    ContentSource,
    Operation,
    ProviderTag,
    RequestInfo,
    ResponseInfo,
    TokenUsage,
    ToolExecution,
    ToolInvocation,
)
from .content import (
    build_tool_invocation,
    choice_field,
    conversation_fields,
    iter_dicts,
    text_from_parts,
)
from .detector import detect_provider
from .id_utils import conversation_id_for, record_uuid
from .safety import (
    anthropic_safety_attributes,
    cohere_safety_attributes,
    compact_json,
    vertex_safety_attributes,
)
from .time_utils import elapsed_seconds, nanos_to_seconds

logger = logging.getLogger(__name__)

__all__ = ["normalize", "normalize_payload", "coerce_provider_tag"]

Fields = Dict[str, Any]


# ---------------------------------------------------------------- coercion helpers


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _num(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _str_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        items = [v for v in value if isinstance(v, str)]
        return items or None
    return None


def _first_present(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def _finish_reasons(choices: List[ContentField]) -> Optional[List[str]]:
    reasons = [c.finish_reason for c in choices if c.finish_reason]
    return reasons or None


def _operation(tool_invocations: List[ToolInvocation]) -> Operation:
    return Operation.EXECUTE_TOOL if tool_invocations else Operation.CHAT


# ---------------------------------------------------------------- providers


def _openai_choices(resp: Dict[str, Any]) -> tuple[List[ContentField], List[ToolInvocation]]:
    choices: List[ContentField] = []
    tools: List[ToolInvocation] = []
    for pos, choice in iter_dicts(resp.get("choices")):
        index = _int(choice.get("index"))
        index = pos if index is None else index
        message = _dict(choice.get("message"))
        choices.append(
            choice_field(
                index,
                message.get("content"),
                role=message.get("role") or ContentRole.ASSISTANT,
                finish_reason=choice.get("finish_reason"),
            )
        )
        for j, call in iter_dicts(message.get("tool_calls")):
            fn = _dict(call.get("function"))
            tools.append(
                build_tool_invocation(
                    fn.get("name"),
                    fn.get("arguments"),
                    call_id=call.get("id"),
                    choice_index=index,
                    index=j,
                )
            )
    return choices, tools


def _openai_common(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    conversation, has_images = conversation_fields(req.get("messages"))
    choices, tools = _openai_choices(resp)
    usage = _dict(resp.get("usage"))
    fields: Fields = {
        "system": "openai",
        "operation": _operation(tools),
        "request": RequestInfo(
            model=_str(req.get("model")),
            temperature=_num(req.get("temperature")),
            max_tokens=_int(_first_present(req.get("max_tokens"), req.get("max_completion_tokens"))),
            top_p=_num(req.get("top_p")),
            frequency_penalty=_num(req.get("frequency_penalty")),
            presence_penalty=_num(req.get("presence_penalty")),
            stop_sequences=_str_list(req.get("stop")),
            seed=_int(req.get("seed")),
            choice_count=_int(req.get("n")),
        ),
        "response": ResponseInfo(
            id=_str(resp.get("id")),
            model=_str(resp.get("model")),
            finish_reasons=_finish_reasons(choices),
        ),
        "usage": TokenUsage.from_counts(
            usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")
        ),
        "content_fields": conversation + choices,
        "tool_invocations": tools,
        "provider_attributes": {},
    }
    if has_images:
        fields["provider_attributes"]["openai.request.has_images"] = True
    return fields


def _normalize_openai_chat(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    fields = _openai_common(req, resp)
    attrs = fields["provider_attributes"]
    fingerprint = _str(resp.get("system_fingerprint"))
    if fingerprint:
        attrs["openai.system_fingerprint"] = fingerprint
    first_choice = next((c for _i, c in iter_dicts(resp.get("choices"))), {})
    if first_choice.get("logprobs"):
        attrs["openai.choice0.logprobs"] = compact_json(first_choice["logprobs"])
    return fields


def _normalize_openai_compatible(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    return _openai_common(req, resp)


def _normalize_anthropic(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    conversation, _images = conversation_fields(req.get("messages"))
    parts = resp.get("content")
    texts: List[str] = []
    tools: List[ToolInvocation] = []
    for _pos, part in iter_dicts(parts):
        if part.get("type") == "text" and isinstance(part.get("text"), str):
            texts.append(part["text"])
        elif part.get("type") == "tool_use":
            tools.append(
                build_tool_invocation(
                    part.get("name"),
                    part.get("input"),
                    call_id=part.get("id"),
                    choice_index=0,
                    index=len(tools),
                )
            )
    stop_reason = _str(resp.get("stop_reason"))
    choice = choice_field(0, "\n".join(texts), finish_reason=stop_reason)
    usage = _dict(resp.get("usage"))
    attrs: Dict[str, Any] = {}
    if stop_reason:
        attrs["anthropic.stop_reason"] = stop_reason
    if resp.get("safety") is not None:
        attrs["anthropic.safety"] = compact_json(resp["safety"])
    attrs.update(anthropic_safety_attributes(stop_reason, resp.get("safety")))
    return {
        "system": "anthropic",
        "operation": _operation(tools),
        "request": RequestInfo(
            model=_str(req.get("model")),
            temperature=_num(req.get("temperature")),
            max_tokens=_int(req.get("max_tokens")),
            top_p=_num(req.get("top_p")),
            top_k=_num(req.get("top_k")),
            stop_sequences=_str_list(req.get("stop_sequences")),
            seed=_int(req.get("seed")),
        ),
        "response": ResponseInfo(
            id=_str(resp.get("id")),
            model=_str(resp.get("model")),
            finish_reasons=[stop_reason] if stop_reason else None,
        ),
        "usage": TokenUsage.from_counts(
            usage.get("input_tokens"), usage.get("output_tokens"), usage.get("total_tokens")
        ),
        "content_fields": conversation + [choice],
        "tool_invocations": tools,
        "provider_attributes": attrs,
    }


def _normalize_cohere(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    if isinstance(req.get("messages"), list):
        conversation, _images = conversation_fields(req.get("messages"))
    else:
        # v1 chat: history entries carry `message`, the new turn is `req.message`
        history = [m for _i, m in iter_dicts(req.get("chat_history"))]
        if isinstance(req.get("message"), str):
            history.append({"role": "user", "message": req["message"]})
        conversation, _images = conversation_fields(history, content_key="message")
    finish = _str(resp.get("finish_reason"))
    tools: List[ToolInvocation] = []
    for j, call in iter_dicts(resp.get("tool_calls")):
        tools.append(
            build_tool_invocation(
                call.get("name"),
                _first_present(call.get("parameters"), call.get("arguments")),
                call_id=call.get("id"),
                choice_index=0,
                index=j,
            )
        )
    billed = _dict(_dict(resp.get("meta")).get("billed_units"))
    attrs: Dict[str, Any] = {}
    if finish:
        attrs["cohere.finish_reason"] = finish
    if resp.get("safety") is not None:
        attrs["cohere.safety"] = compact_json(resp["safety"])
    attrs.update(cohere_safety_attributes(resp.get("safety")))
    return {
        "system": "cohere",
        "operation": _operation(tools),
        "request": RequestInfo(
            model=_str(req.get("model")),
            temperature=_num(req.get("temperature")),
            max_tokens=_int(req.get("max_tokens")),
            top_p=_num(req.get("p")),
            top_k=_num(req.get("k")),
            stop_sequences=_str_list(req.get("stop_sequences")),
            seed=_int(req.get("seed")),
        ),
        "response": ResponseInfo(
            id=_str(_first_present(resp.get("id"), resp.get("response_id"), resp.get("generation_id"))),
            model=_str(resp.get("model")),
            finish_reasons=[finish] if finish else None,
        ),
        "usage": TokenUsage.from_counts(
            billed.get("input_tokens"), billed.get("output_tokens"), billed.get("total_tokens")
        ),
        "content_fields": conversation + [choice_field(0, resp.get("text"), finish_reason=finish)],
        "tool_invocations": tools,
        "provider_attributes": attrs,
    }


def _normalize_bedrock(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    if isinstance(req.get("messages"), list):
        conversation, _images = conversation_fields(req.get("messages"))
    elif isinstance(req.get("inputText"), str):
        conversation, _images = conversation_fields([{"role": "user", "content": req["inputText"]}])
    else:
        conversation = []
    output_text = resp.get("outputText")
    if output_text is None:
        # Converse API: output.message.content is a list of {text} blocks
        output_text, _images = text_from_parts(
            _dict(_dict(resp.get("output")).get("message")).get("content")
        )
    stop_reason = _str(resp.get("stopReason"))
    usage = _dict(resp.get("usage"))
    attrs: Dict[str, Any] = {}
    if stop_reason:
        attrs["aws.bedrock.stop_reason"] = stop_reason
    if resp.get("guardrailTrace") is not None:
        attrs["aws.bedrock.guardrail.trace"] = compact_json(resp["guardrailTrace"])
    model_id = _str(_first_present(resp.get("modelId"), req.get("modelId")))
    inference = _dict(req.get("inferenceConfig"))
    return {
        "system": "aws.bedrock",
        "operation": Operation.CHAT,
        "request": RequestInfo(
            model=_str(req.get("modelId")) or model_id,
            temperature=_num(_first_present(req.get("temperature"), inference.get("temperature"))),
            top_p=_num(_first_present(req.get("top_p"), req.get("topP"), inference.get("topP"))),
            top_k=_num(req.get("top_k")),
            max_tokens=_int(_first_present(req.get("maxTokens"), inference.get("maxTokens"))),
            stop_sequences=_str_list(
                _first_present(req.get("stopSequences"), inference.get("stopSequences"))
            ),
            seed=_int(req.get("seed")),
        ),
        "response": ResponseInfo(
            model=model_id,
            finish_reasons=[stop_reason] if stop_reason else None,
        ),
        "usage": TokenUsage.from_counts(
            usage.get("inputTokens"), usage.get("outputTokens"), usage.get("totalTokens")
        ),
        "content_fields": conversation + [choice_field(0, output_text, finish_reason=stop_reason)],
        "tool_invocations": [],
        "provider_attributes": attrs,
    }


def _normalize_vertex(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    conversation, _images = conversation_fields(req.get("contents"), content_key="parts")
    gen_cfg = _dict(req.get("generationConfig"))
    choices: List[ContentField] = []
    tools: List[ToolInvocation] = []
    candidates = resp.get("candidates") if isinstance(resp.get("candidates"), list) else []
    for pos, cand in enumerate(candidates):
        cand = _dict(cand)
        content = _dict(cand.get("content"))
        choices.append(
            choice_field(
                pos,
                content.get("parts"),
                role=content.get("role"),
                finish_reason=cand.get("finishReason"),
            )
        )
        for _j, part in iter_dicts(content.get("parts")):
            call = part.get("functionCall")
            if isinstance(call, dict):
                tools.append(
                    build_tool_invocation(
                        call.get("name"), call.get("args"), choice_index=pos, index=len(tools)
                    )
                )
    usage = _dict(resp.get("usageMetadata"))
    first = _dict(candidates[0]) if candidates else {}
    return {
        "system": "google.vertex",
        "operation": _operation(tools),
        "request": RequestInfo(
            model=_str(req.get("model")),
            temperature=_num(_first_present(req.get("temperature"), gen_cfg.get("temperature"))),
            top_p=_num(_first_present(req.get("topP"), gen_cfg.get("topP"))),
            top_k=_num(_first_present(req.get("topK"), gen_cfg.get("topK"))),
            max_tokens=_int(_first_present(req.get("maxOutputTokens"), gen_cfg.get("maxOutputTokens"))),
            stop_sequences=_str_list(
                _first_present(req.get("stopSequences"), gen_cfg.get("stopSequences"))
            ),
            seed=_int(_first_present(req.get("seed"), gen_cfg.get("seed"))),
            choice_count=_int(gen_cfg.get("candidateCount")),
        ),
        "response": ResponseInfo(
            id=_str(resp.get("responseId")),
            model=_str(_first_present(resp.get("model"), resp.get("modelVersion"))),
            finish_reasons=_finish_reasons(choices),
        ),
        "usage": TokenUsage.from_counts(
            usage.get("promptTokenCount"),
            usage.get("candidatesTokenCount"),
            usage.get("totalTokenCount"),
        ),
        "content_fields": conversation + choices,
        "tool_invocations": tools,
        "provider_attributes": vertex_safety_attributes(first.get("safetyRatings")),
    }


def _normalize_ollama(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    if isinstance(req.get("messages"), list):
        conversation, _images = conversation_fields(req.get("messages"))
    elif isinstance(req.get("prompt"), str):
        conversation, _images = conversation_fields([{"role": "user", "content": req["prompt"]}])
    else:
        conversation = []
    options = _dict(req.get("options"))
    message = _dict(resp.get("message"))
    tools = [
        build_tool_invocation(
            _dict(call.get("function")).get("name"),
            _dict(call.get("function")).get("arguments"),
            call_id=call.get("id"),
            choice_index=0,
            index=j,
        )
        for j, call in iter_dicts(message.get("tool_calls"))
    ]
    finish = _str(resp.get("done_reason"))
    if finish is None and isinstance(resp.get("done"), bool):
        finish = "stop" if resp["done"] else "length"
    eval_count = _int(resp.get("eval_count"))
    eval_seconds = nanos_to_seconds(resp.get("eval_duration"))
    fields: Fields = {
        "system": "ollama",
        "operation": _operation(tools),
        "request": RequestInfo(
            model=_str(req.get("model")),
            temperature=_num(_first_present(req.get("temperature"), options.get("temperature"))),
            top_k=_num(_first_present(req.get("top_k"), options.get("top_k"))),
            top_p=_num(_first_present(req.get("top_p"), options.get("top_p"))),
            max_tokens=_int(_first_present(req.get("num_predict"), options.get("num_predict"))),
            stop_sequences=_str_list(_first_present(req.get("stop"), options.get("stop"))),
            seed=_int(_first_present(req.get("seed"), options.get("seed"))),
        ),
        "response": ResponseInfo(
            model=_str(resp.get("model")),
            finish_reasons=[finish] if finish else None,
        ),
        "usage": TokenUsage.from_counts(resp.get("prompt_eval_count"), eval_count),
        "time_to_first_token": nanos_to_seconds(resp.get("load_duration")),
        "time_per_output_token": (
            eval_seconds / eval_count if eval_seconds is not None and eval_count else None
        ),
        "content_fields": conversation
        + [
            choice_field(
                0,
                message.get("content"),
                role=message.get("role") or ContentRole.ASSISTANT,
                finish_reason=finish,
            )
        ],
        "tool_invocations": tools,
        "provider_attributes": {},
    }
    total_seconds = nanos_to_seconds(resp.get("total_duration"))
    if total_seconds is not None:
        fields["duration_seconds"] = total_seconds
    return fields


def _normalize_unknown(req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    return {
        "request": RequestInfo(model=_str(_first_present(req.get("model"), resp.get("model")))),
        "response": ResponseInfo(id=_str(resp.get("id")), model=_str(resp.get("model"))),
    }


def _dispatch(tag: ProviderTag, req: Dict[str, Any], resp: Dict[str, Any]) -> Fields:
    match tag:
        case ProviderTag.OPENAI_CHAT:
            return _normalize_openai_chat(req, resp)
        case ProviderTag.OPENAI_COMPATIBLE:
            return _normalize_openai_compatible(req, resp)
        case ProviderTag.ANTHROPIC:
            return _normalize_anthropic(req, resp)
        case ProviderTag.COHERE:
            return _normalize_cohere(req, resp)
        case ProviderTag.BEDROCK:
            return _normalize_bedrock(req, resp)
        case ProviderTag.VERTEX:
            return _normalize_vertex(req, resp)
        case ProviderTag.OLLAMA:
            return _normalize_ollama(req, resp)
        case _:
            return _normalize_unknown(req, resp)


# ---------------------------------------------------------------- public API


def coerce_provider_tag(value: Union[ProviderTag, str]) -> ProviderTag:
    """Resolve a tag or tag string; unsupported strings raise ValueError."""
    if isinstance(value, ProviderTag):
        return value
    try:
        return ProviderTag(str(value).strip().lower())
    except ValueError:
        supported = ", ".join(t.value for t in ProviderTag.known())
        raise ValueError(f"Unsupported provider {value!r}; expected one of: {supported}") from None


def normalize(
    provider_tag: Union[ProviderTag, str],
    request: Any,
    response: Any,
    start_time: float,
    end_time: float,
    *,
    eval_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
    tool_execution: Optional[Union[ToolExecution, Dict[str, Any]]] = None,
) -> CanonicalRecord:
    """Convert a provider payload into a CanonicalRecord.

    Args:
        provider_tag: Tag chosen by the detector (or forced by the caller)
        request: Raw provider request payload
        response: Raw provider response payload
        start_time: Invocation start (epoch milliseconds)
        end_time: Invocation end (epoch milliseconds)
        eval_id: Stable evaluation id; derived deterministically when omitted
        conversation_id: Conversation grouping id (defaults to `conv-<id>`)
        tool_execution: Details of a tool the host executed for this call

    Returns:
        Fresh CanonicalRecord with `provider_tag` fixed to the given tag
    """
    tag = coerce_provider_tag(provider_tag)
    req = _dict(request)
    resp = _dict(response)
    record_id = eval_id or record_uuid(tag.value, start_time, request, response)
    fields: Fields = {"duration_seconds": elapsed_seconds(start_time, end_time)}
    fields.update(_dispatch(tag, req, resp))
    if any(cf.source is ContentSource.CONVERSATION for cf in fields.get("content_fields", [])):
        fields["conversation_id"] = conversation_id or conversation_id_for(record_id)
    elif conversation_id:
        fields["conversation_id"] = conversation_id
    if tool_execution is not None:
        fields["tool"] = ToolExecution.model_validate(tool_execution)
    logger.debug(
        "normalized record id=%s provider=%s fields=%d tools=%d",
        record_id,
        tag.value,
        len(fields.get("content_fields", [])),
        len(fields.get("tool_invocations", [])),
    )
    return CanonicalRecord(id=record_id, timestamp=float(start_time), provider_tag=tag, **fields)


def normalize_payload(
    request: Any,
    response: Any,
    start_time: float,
    end_time: float,
    *,
    provider: Optional[Union[ProviderTag, str]] = None,
    eval_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
    tool_execution: Optional[Union[ToolExecution, Dict[str, Any]]] = None,
) -> CanonicalRecord:
    """Detect the provider shape (unless a known provider is forced), then normalize."""
    tag = coerce_provider_tag(provider) if provider is not None else ProviderTag.UNKNOWN
    if tag is ProviderTag.UNKNOWN:
        tag = detect_provider(request, response)
    return normalize(
        tag,
        request,
        response,
        start_time,
        end_time,
        eval_id=eval_id,
        conversation_id=conversation_id,
        tool_execution=tool_execution,
    )
