from __future__ import annotations

import pytest

from eval_telemetry.mapping.normalizers import normalize, normalize_payload
from eval_telemetry.models.canonical import (
    ContentKind,
    ContentRole,
    ContentSource,
    Operation,
    ProviderTag,
)

START_MS = 1_700_000_000_000
END_MS = START_MS + 1500


def _openai_request(**extra):
    req = {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "be nice"},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "hi"},
                    {"type": "image_url", "image_url": {"url": "https://example.com/a.png"}},
                ],
            },
        ],
        "temperature": 0.2,
        "max_tokens": 100,
        "stop": "END",
        "n": 1,
    }
    req.update(extra)
    return req


def _openai_response(**extra):
    resp = {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "model": "gpt-4o-2024-08-06",
        "system_fingerprint": "fp_1",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": "hello"}, "finish_reason": "stop"}
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }
    resp.update(extra)
    return resp


def test_openai_chat_full_mapping():
    rec = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), _openai_response(), START_MS, END_MS)
    assert rec.provider_tag is ProviderTag.OPENAI_CHAT
    assert rec.system == "openai"
    assert rec.operation is Operation.CHAT
    assert rec.duration_seconds == pytest.approx(1.5)
    assert rec.timestamp == START_MS
    assert rec.request.model == "gpt-4o"
    assert rec.request.temperature == 0.2
    assert rec.request.max_tokens == 100
    assert rec.request.stop_sequences == ["END"]
    assert rec.request.choice_count == 1
    assert rec.response.id == "chatcmpl-1"
    assert rec.response.model == "gpt-4o-2024-08-06"
    assert rec.response.finish_reasons == ["stop"]
    assert (rec.usage.input, rec.usage.output, rec.usage.total) == (12, 3, 15)
    assert [f.raw_value for f in rec.content_fields] == ["be nice", "hi", "hello"]
    assert [f.role for f in rec.content_fields] == [
        ContentRole.SYSTEM,
        ContentRole.USER,
        ContentRole.ASSISTANT,
    ]
    assert rec.content_fields[-1].source is ContentSource.CHOICE
    assert rec.provider_attributes["openai.system_fingerprint"] == "fp_1"
    assert rec.provider_attributes["openai.request.has_images"] is True
    assert rec.conversation_id == f"conv-{rec.id}"


def test_absent_usage_stays_absent_and_zero_is_kept():
    resp = _openai_response()
    del resp["usage"]
    rec = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), resp, START_MS, END_MS)
    assert rec.usage.input is None
    assert rec.usage.output is None
    assert rec.usage.total is None

    resp = _openai_response(usage={"prompt_tokens": 0, "completion_tokens": 5})
    rec = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), resp, START_MS, END_MS)
    assert rec.usage.input == 0
    assert rec.usage.output == 5
    assert rec.usage.total == 5


def test_wrongly_typed_request_fields_are_dropped():
    req = _openai_request(temperature="hot", max_tokens=True, stop=[1, "X"])
    rec = normalize(ProviderTag.OPENAI_CHAT, req, _openai_response(), START_MS, END_MS)
    assert rec.request.temperature is None
    assert rec.request.max_tokens is None
    assert rec.request.stop_sequences == ["X"]


def test_openai_compatible_parses_and_degrades_tool_arguments():
    resp = {
        "choices": [
            {
                "index": 0,
                "finish_reason": "tool_calls",
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {"id": "call_1", "function": {"name": "lookup", "arguments": '{"q": "x"}'}},
                        {"id": "call_2", "function": {"name": "broken", "arguments": "{not json"}},
                    ],
                },
            }
        ]
    }
    rec = normalize(ProviderTag.OPENAI_COMPATIBLE, {"model": "local"}, resp, START_MS, END_MS)
    assert rec.operation is Operation.EXECUTE_TOOL
    good, bad = rec.tool_invocations
    assert good.raw_arguments == {"q": "x"}
    assert good.call_id == "call_1"
    assert good.choice_index == 0
    assert good.as_content_field().kind is ContentKind.STRUCTURED
    assert bad.raw_arguments == "{not json"
    assert bad.as_content_field().kind is ContentKind.TEXT
    # the rest of the record is still normalized
    assert rec.response.finish_reasons == ["tool_calls"]
    assert rec.content_fields[0].source is ContentSource.CHOICE


def test_anthropic_text_and_tool_use():
    resp = {
        "id": "msg_1",
        "model": "claude-3-5-sonnet",
        "content": [
            {"type": "text", "text": "Let me check"},
            {"type": "tool_use", "id": "toolu_1", "name": "weather", "input": {"city": "Paris"}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }
    req = {
        "model": "claude-3-5-sonnet",
        "max_tokens": 256,
        "top_k": 40,
        "messages": [{"role": "user", "content": [{"type": "text", "text": "Weather?"}]}],
    }
    rec = normalize(ProviderTag.ANTHROPIC, req, resp, START_MS, END_MS)
    assert rec.system == "anthropic"
    assert rec.operation is Operation.EXECUTE_TOOL
    assert rec.content_fields[0].raw_value == "Weather?"
    assert rec.content_fields[1].raw_value == "Let me check"
    (tool,) = rec.tool_invocations
    assert (tool.name, tool.call_id, tool.raw_arguments) == ("weather", "toolu_1", {"city": "Paris"})
    assert rec.usage.total == 15
    assert rec.request.top_k == 40
    assert rec.response.finish_reasons == ["tool_use"]
    assert rec.provider_attributes["anthropic.stop_reason"] == "tool_use"
    assert "gen_ai.safety.flagged" not in rec.provider_attributes


def test_anthropic_safety_stop_reason_flags():
    resp = {"content": [{"type": "text", "text": ""}], "stop_reason": "safety", "safety": {"violence": True}}
    rec = normalize(ProviderTag.ANTHROPIC, {"model": "claude"}, resp, START_MS, END_MS)
    assert rec.provider_attributes["gen_ai.safety.flagged"] is True
    assert rec.provider_attributes["gen_ai.safety.categories"] == ["violence"]
    assert rec.provider_attributes["anthropic.safety"] == '{"violence":true}'


def test_cohere_v1_chat_history():
    req = {
        "model": "command-r",
        "message": "Hi",
        "chat_history": [{"role": "CHATBOT", "message": "Hello"}],
        "p": 0.9,
        "k": 5,
    }
    resp = {
        "text": "Bonjour",
        "generation_id": "g1",
        "finish_reason": "COMPLETE",
        "meta": {"billed_units": {"input_tokens": 4, "output_tokens": 2}},
    }
    rec = normalize(ProviderTag.COHERE, req, resp, START_MS, END_MS)
    assert rec.system == "cohere"
    conv = [f for f in rec.content_fields if f.source is ContentSource.CONVERSATION]
    assert [(f.role, f.raw_value) for f in conv] == [
        (ContentRole.ASSISTANT, "Hello"),
        (ContentRole.USER, "Hi"),
    ]
    assert rec.content_fields[-1].raw_value == "Bonjour"
    assert (rec.request.top_p, rec.request.top_k) == (0.9, 5)
    assert (rec.usage.input, rec.usage.output, rec.usage.total) == (4, 2, 6)
    assert rec.response.id == "g1"
    assert rec.provider_attributes["cohere.finish_reason"] == "COMPLETE"


def test_bedrock_invoke_model():
    req = {"modelId": "amazon.titan-text", "inputText": "Tell me", "maxTokens": 50}
    resp = {"outputText": "Sure", "stopReason": "FINISH", "usage": {"inputTokens": 3, "outputTokens": 1}}
    rec = normalize(ProviderTag.BEDROCK, req, resp, START_MS, END_MS)
    assert rec.system == "aws.bedrock"
    assert rec.request.model == "amazon.titan-text"
    assert rec.response.model == "amazon.titan-text"
    assert rec.request.max_tokens == 50
    assert [f.raw_value for f in rec.content_fields] == ["Tell me", "Sure"]
    assert (rec.usage.input, rec.usage.output, rec.usage.total) == (3, 1, 4)
    assert rec.provider_attributes["aws.bedrock.stop_reason"] == "FINISH"


def test_bedrock_converse_shape():
    req = {
        "modelId": "anthropic.claude-3-haiku",
        "messages": [{"role": "user", "content": [{"text": "Hello"}]}],
        "inferenceConfig": {"maxTokens": 20, "temperature": 0.3},
    }
    resp = {
        "output": {"message": {"role": "assistant", "content": [{"text": "Hi there"}]}},
        "stopReason": "end_turn",
        "usage": {"inputTokens": 2, "outputTokens": 3, "totalTokens": 5},
        "guardrailTrace": {"action": "NONE"},
    }
    rec = normalize(ProviderTag.BEDROCK, req, resp, START_MS, END_MS)
    assert [f.raw_value for f in rec.content_fields] == ["Hello", "Hi there"]
    assert rec.request.max_tokens == 20
    assert rec.request.temperature == 0.3
    assert rec.provider_attributes["aws.bedrock.guardrail.trace"] == '{"action":"NONE"}'


def test_vertex_candidates_function_calls_and_safety():
    req = {
        "model": "gemini-1.5-pro",
        "contents": [{"role": "user", "parts": [{"text": "Q"}]}],
        "generationConfig": {"temperature": 0.1, "maxOutputTokens": 64},
    }
    resp = {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [{"text": "A"}, {"functionCall": {"name": "search", "args": {"q": "x"}}}],
                },
                "finishReason": "STOP",
                "safetyRatings": [
                    {"category": "HARM_CATEGORY_HARASSMENT", "probability": "NEGLIGIBLE"}
                ],
            }
        ],
        "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 7, "totalTokenCount": 12},
    }
    rec = normalize(ProviderTag.VERTEX, req, resp, START_MS, END_MS)
    assert rec.system == "google.vertex"
    assert rec.operation is Operation.EXECUTE_TOOL
    conv, choice = rec.content_fields
    assert (conv.role, conv.raw_value) == (ContentRole.USER, "Q")
    assert (choice.role, choice.raw_value, choice.index) == (ContentRole.ASSISTANT, "A", 0)
    (tool,) = rec.tool_invocations
    assert (tool.name, tool.raw_arguments, tool.choice_index) == ("search", {"q": "x"}, 0)
    assert (rec.usage.input, rec.usage.output, rec.usage.total) == (5, 7, 12)
    assert (rec.request.temperature, rec.request.max_tokens) == (0.1, 64)
    attrs = rec.provider_attributes
    assert attrs["gen_ai.safety.flagged"] is False
    assert attrs["gen_ai.safety.categories"] == ["HARM_CATEGORY_HARASSMENT"]
    assert attrs["gen_ai.safety.severity.HARM_CATEGORY_HARASSMENT"] == "NEGLIGIBLE"


def test_ollama_durations_and_counts():
    req = {
        "model": "llama3",
        "messages": [{"role": "user", "content": "hi"}],
        "options": {"temperature": 0.7},
    }
    resp = {
        "model": "llama3",
        "message": {"role": "assistant", "content": "hello"},
        "done": True,
        "total_duration": 2_000_000_000,
        "load_duration": 500_000_000,
        "prompt_eval_count": 8,
        "eval_count": 4,
        "eval_duration": 1_000_000_000,
    }
    rec = normalize(ProviderTag.OLLAMA, req, resp, 0, 5000)
    assert rec.duration_seconds == pytest.approx(2.0)
    assert rec.time_to_first_token == pytest.approx(0.5)
    assert rec.time_per_output_token == pytest.approx(0.25)
    assert (rec.usage.input, rec.usage.output, rec.usage.total) == (8, 4, 12)
    assert rec.response.finish_reasons == ["stop"]
    assert rec.request.temperature == 0.7


def test_ollama_missing_prompt_count_is_not_summed():
    resp = {"message": {"role": "assistant", "content": "x"}, "eval_count": 4, "eval_duration": 10}
    rec = normalize(ProviderTag.OLLAMA, {"model": "llama3"}, resp, 0, 100)
    assert rec.usage.input is None
    assert rec.usage.output == 4
    assert rec.usage.total is None
    assert rec.duration_seconds == pytest.approx(0.1)
    assert rec.response.finish_reasons is None


def test_unknown_is_minimal_and_total():
    rec = normalize(ProviderTag.UNKNOWN, {"model": "m"}, {"foo": 1}, 0, 10)
    assert rec.request.model == "m"
    assert rec.content_fields == []
    assert rec.conversation_id is None
    rec = normalize("unknown", None, "garbage", 0, 10)
    assert rec.request.model is None
    assert rec.provider_tag is ProviderTag.UNKNOWN


def test_unsupported_tag_string_is_rejected():
    with pytest.raises(ValueError):
        normalize("azure", {}, {}, 0, 1)


def test_record_ids_are_deterministic():
    a = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), _openai_response(), START_MS, END_MS)
    b = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), _openai_response(), START_MS, END_MS)
    c = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), _openai_response(), START_MS + 1, END_MS)
    assert a.id == b.id
    assert a.id != c.id
    d = normalize(
        ProviderTag.OPENAI_CHAT,
        _openai_request(),
        _openai_response(),
        START_MS,
        END_MS,
        eval_id="eval-42",
        conversation_id="thread-7",
    )
    assert d.id == "eval-42"
    assert d.conversation_id == "thread-7"


def test_negative_elapsed_time_is_clamped():
    rec = normalize(ProviderTag.OPENAI_CHAT, _openai_request(), _openai_response(), END_MS, START_MS)
    assert rec.duration_seconds == 0.0


def test_normalize_payload_detects_or_forces():
    rec = normalize_payload(_openai_request(), _openai_response(), START_MS, END_MS)
    assert rec.provider_tag is ProviderTag.OPENAI_CHAT
    # text-only anthropic content is not detectable, but can be forced
    resp = {"content": [{"type": "text", "text": "hey"}], "stop_reason": "end_turn"}
    assert normalize_payload({"model": "c"}, resp, 0, 1).provider_tag is ProviderTag.UNKNOWN
    forced = normalize_payload({"model": "c"}, resp, 0, 1, provider="anthropic")
    assert forced.provider_tag is ProviderTag.ANTHROPIC
    assert forced.content_fields[-1].raw_value == "hey"


def test_tool_execution_is_attached():
    rec = normalize(
        ProviderTag.OPENAI_CHAT,
        _openai_request(),
        _openai_response(),
        START_MS,
        END_MS,
        tool_execution={"name": "search", "callId": "c1", "result": {"hits": 3}},
    )
    assert rec.tool is not None
    assert (rec.tool.name, rec.tool.call_id) == ("search", "c1")
