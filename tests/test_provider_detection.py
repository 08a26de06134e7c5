from __future__ import annotations

import pytest

from eval_telemetry.mapping.detector import DETECTION_ORDER, detect_provider
from eval_telemetry.models.canonical import ProviderTag

STRING_TOOL_ARGS_CHOICES = [
    {"message": {"tool_calls": [{"function": {"name": "f", "arguments": "{}"}}]}}
]
TOOL_USE_CONTENT = [{"type": "text", "text": "x"}, {"type": "tool_use", "name": "f", "input": {}}]
COHERE_BITS = {"text": "hi", "meta": {"billed_units": {"input_tokens": 1}}}
OLLAMA_BITS = {"message": {"role": "assistant", "content": "x"}, "eval_duration": 10}


def test_detection_order_is_pinned():
    assert [tag for tag, _fn in DETECTION_ORDER] == [
        ProviderTag.OPENAI_CHAT,
        ProviderTag.OPENAI_COMPATIBLE,
        ProviderTag.BEDROCK,
        ProviderTag.VERTEX,
        ProviderTag.ANTHROPIC,
        ProviderTag.COHERE,
        ProviderTag.OLLAMA,
    ]


@pytest.mark.parametrize(
    "request_payload,response_payload,expected",
    [
        # 1 beats 2: chat discriminator wins over string tool arguments
        (
            {},
            {"object": "chat.completion", "choices": STRING_TOOL_ARGS_CHOICES},
            ProviderTag.OPENAI_CHAT,
        ),
        # 2 beats 3: string tool arguments win over modelId
        (
            {"modelId": "m"},
            {"choices": STRING_TOOL_ARGS_CHOICES},
            ProviderTag.OPENAI_COMPATIBLE,
        ),
        # 3 beats 4: modelId wins over candidates
        ({}, {"modelId": "m", "candidates": []}, ProviderTag.BEDROCK),
        # 4 beats 5: candidates win over tool_use content
        ({}, {"candidates": [], "content": TOOL_USE_CONTENT}, ProviderTag.VERTEX),
        # 5 beats 6: tool_use content wins over text + billed units
        ({}, {"content": TOOL_USE_CONTENT, **COHERE_BITS}, ProviderTag.ANTHROPIC),
        # 6 beats 7: cohere wins over ollama markers
        ({}, {**COHERE_BITS, **OLLAMA_BITS}, ProviderTag.COHERE),
    ],
)
def test_priority_pairs(request_payload, response_payload, expected):
    assert detect_provider(request_payload, response_payload) is expected


def test_single_signals():
    assert detect_provider({}, {"system_fingerprint": "fp_1"}) is ProviderTag.OPENAI_CHAT
    assert detect_provider({"modelId": "amazon.titan"}, {}) is ProviderTag.BEDROCK
    assert detect_provider({}, {"candidates": []}) is ProviderTag.VERTEX
    assert detect_provider({}, dict(OLLAMA_BITS)) is ProviderTag.OLLAMA
    assert (
        detect_provider({}, {"message": {"role": "assistant"}, "prompt_eval_count": 3})
        is ProviderTag.OLLAMA
    )


def test_near_misses_are_unknown():
    # structured (non-string) tool arguments are not the compatible shape
    choices = [{"message": {"tool_calls": [{"function": {"arguments": {"a": 1}}}]}}]
    assert detect_provider({}, {"choices": choices}) is ProviderTag.UNKNOWN
    # anthropic-looking content without a tool_use part
    assert detect_provider({}, {"content": [{"type": "text", "text": "hi"}]}) is ProviderTag.UNKNOWN
    # cohere text without billing units
    assert detect_provider({}, {"text": "hi"}) is ProviderTag.UNKNOWN
    # ollama message without duration / eval counters
    assert detect_provider({}, {"message": {"role": "assistant"}}) is ProviderTag.UNKNOWN
    # zero durations are falsy markers
    assert (
        detect_provider({}, {"message": {"role": "assistant"}, "eval_duration": 0})
        is ProviderTag.UNKNOWN
    )


@pytest.mark.parametrize(
    "request_payload,response_payload,expected",
    [
        # empty containers still count as present
        ({}, {"text": "hi", "meta": {"billed_units": {}}}, ProviderTag.COHERE),
        ({}, {"system_fingerprint": {}}, ProviderTag.OPENAI_CHAT),
        ({"modelId": []}, {}, ProviderTag.BEDROCK),
        ({}, {"message": {"role": {}}, "prompt_eval_count": []}, ProviderTag.OLLAMA),
        # zero, NaN and empty strings do not
        ({}, {"system_fingerprint": ""}, ProviderTag.UNKNOWN),
        ({"modelId": 0}, {}, ProviderTag.UNKNOWN),
        ({}, {"text": "hi", "meta": {"billed_units": float("nan")}}, ProviderTag.UNKNOWN),
        ({}, {"message": {"role": "assistant"}, "eval_duration": float("nan")}, ProviderTag.UNKNOWN),
        ({}, {"message": {"role": ""}, "eval_duration": 10}, ProviderTag.UNKNOWN),
    ],
)
def test_presence_checks_follow_javascript_truthiness(request_payload, response_payload, expected):
    assert detect_provider(request_payload, response_payload) is expected


@pytest.mark.parametrize(
    "request_payload,response_payload",
    [
        (None, None),
        ("text", 42),
        ([], []),
        ({}, {"choices": "not-a-list"}),
        ({}, {"choices": [None]}),
        ({}, {"choices": [{"message": {"tool_calls": [None]}}]}),
        ({}, {"meta": "flat", "text": "x"}),
        ({}, {"message": "flat", "eval_duration": 5}),
        ({}, {"content": "plain string"}),
    ],
)
def test_malformed_inputs_never_raise(request_payload, response_payload):
    assert detect_provider(request_payload, response_payload) is ProviderTag.UNKNOWN


def test_detection_is_deterministic():
    payload = {"object": "chat.completion", "candidates": [], "modelId": "x"}
    results = {detect_provider({}, payload) for _ in range(50)}
    assert results == {ProviderTag.OPENAI_CHAT}
