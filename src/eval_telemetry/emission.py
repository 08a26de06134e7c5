"""Emission builder: formats a record plus its decisions into span/metric payloads.

No policy lives here. Whether content may be emitted was settled by the
privacy pipeline; how many events survive is settled by the `EventBudget`
passed in. This module only names things:

Span:
    Name from operation (`gen_ai.chat`, `gen_ai.embeddings`,
    `gen_ai.execute_tool`, `gen_ai.agent`, `gen_ai.workflow`), kind CLIENT,
    GenAI semantic-convention attributes, then provider attributes, then
    caller attributes (caller wins). Absent values are never emitted.

Events (exception first, then `iter_content_fields()` order, then informational):
    exception               the record error, regardless of content capture
    gen_ai.<role>.message   conversation messages and response choices
    gen_ai.tool.message     model-requested tool calls
    gen_ai.agent.step       one per agent step (informational)
    gen_ai.rag.chunk        one per retrieved chunk (informational)

Metrics:
    gen_ai.client.token.usage, gen_ai.client.operation.duration,
    gen_ai.server.request.duration, gen_ai.server.time_to_first_token,
    gen_ai.server.time_per_output_token, eval.<name> per custom metric.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from opentelemetry import trace
from opentelemetry.context import Context

from .guard import EventBudget, filter_metric_attributes
from .mapping.time_utils import ms_to_ns
from .models.canonical import CanonicalRecord, ContentField, ContentSource, Operation
from .models.emission import (
    AttributeValue,
    ContentType,
    EmissionDecision,
    MetricPoint,
    RecordDecisions,
    SpanEvent,
    SpanPayload,
)
from .privacy.policy import ContentPolicy

logger = logging.getLogger(__name__)

__all__ = [
    "EmissionOptions",
    "span_name",
    "provider_name",
    "parent_context",
    "link_contexts",
    "metric_type",
    "build_span",
    "build_span_attributes",
    "build_events",
    "build_metric_points",
]

_SPAN_NAMES = {
    Operation.CHAT: "gen_ai.chat",
    Operation.TEXT_COMPLETION: "gen_ai.chat",
    Operation.EMBEDDINGS: "gen_ai.embeddings",
    Operation.EXECUTE_TOOL: "gen_ai.execute_tool",
    Operation.AGENT_EXECUTION: "gen_ai.agent",
    Operation.WORKFLOW_STEP: "gen_ai.workflow",
}

_METRIC_TYPE_KEYWORDS = (
    ("quality", ("accuracy", "precision", "recall", "f1")),
    ("similarity", ("bleu", "rouge", "meteor")),
    ("safety", ("toxicity", "bias", "safety")),
    ("performance", ("latency", "duration", "time")),
)


@dataclass(frozen=True)
class EmissionOptions:
    """Per-call extras supplied by the host.

    Attributes:
        attributes: Extra span and metric attributes (override built-in keys)
        metrics: Custom evaluation metrics recorded as `eval.<name>` histograms
        parent: Parent for the record's span (a Context, Span or SpanContext)
        links: Spans to link to (Span, SpanContext, Link or `{"context": SpanContext}`);
            None and invalid entries are dropped
    """

    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)
    metrics: Mapping[str, float] = field(default_factory=dict)
    parent: Optional[Union[Context, trace.Span, trace.SpanContext]] = None
    links: Sequence[Any] = ()


def span_name(operation: Operation) -> str:
    return _SPAN_NAMES.get(operation, "gen_ai.operation")


def provider_name(system: Optional[str]) -> str:
    """Semconv provider name from a system string (`"Azure OpenAI"` -> `azure.openai`)."""
    name = re.sub(r"\s+", ".", (system or "").strip().lower())
    return name or "unknown"


def parent_context(parent: Any) -> Optional[Context]:
    if parent is None:
        return None
    if isinstance(parent, Context):
        return parent
    if isinstance(parent, trace.Span):
        return trace.set_span_in_context(parent)
    if isinstance(parent, trace.SpanContext):
        return trace.set_span_in_context(trace.NonRecordingSpan(parent))
    logger.debug("ignoring unsupported parent %r", type(parent).__name__)
    return None


def _link_context(link: Any) -> Optional[trace.SpanContext]:
    if isinstance(link, trace.Link):
        return link.context
    if isinstance(link, trace.Span):
        return link.get_span_context()
    if isinstance(link, trace.SpanContext):
        return link
    if isinstance(link, dict) and isinstance(link.get("context"), trace.SpanContext):
        return link["context"]
    return None


def link_contexts(links: Optional[Sequence[Any]]) -> List[trace.SpanContext]:
    """Resolve link targets to valid SpanContexts, dropping anything else."""
    resolved: List[trace.SpanContext] = []
    for link in links or ():
        ctx = _link_context(link)
        if ctx is None or not ctx.is_valid:
            logger.debug("dropping invalid span link %r", link)
            continue
        resolved.append(ctx)
    return resolved


def metric_type(name: str) -> str:
    """Categorize a custom metric by keywords in its name."""
    lowered = name.lower()
    for kind, keywords in _METRIC_TYPE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return kind
    return "custom"


def _put(attrs: Dict[str, Any], key: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, list):
        if not value:
            return
        value = list(value)
    attrs[key] = value


def build_span_attributes(
    record: CanonicalRecord,
    policy: ContentPolicy,
    extra: Optional[Mapping[str, AttributeValue]] = None,
) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {
        "gen_ai.operation.name": record.operation.value,
        "gen_ai.system": record.system or "unknown",
        "gen_ai.provider.name": provider_name(record.system),
        "eval.provider.shape": record.provider_tag.value,
    }
    _put(attrs, "deployment.environment", policy.environment)

    req = record.request
    _put(attrs, "gen_ai.request.model", req.model)
    _put(attrs, "gen_ai.request.temperature", req.temperature)
    _put(attrs, "gen_ai.request.max_tokens", req.max_tokens)
    _put(attrs, "gen_ai.request.top_p", req.top_p)
    _put(attrs, "gen_ai.request.top_k", req.top_k)
    _put(attrs, "gen_ai.request.frequency_penalty", req.frequency_penalty)
    _put(attrs, "gen_ai.request.presence_penalty", req.presence_penalty)
    _put(attrs, "gen_ai.request.stop_sequences", req.stop_sequences)
    _put(attrs, "gen_ai.request.seed", req.seed)
    _put(attrs, "gen_ai.request.choice.count", req.choice_count)

    resp = record.response
    _put(attrs, "gen_ai.response.id", resp.id)
    _put(attrs, "gen_ai.response.model", resp.model)
    _put(attrs, "gen_ai.response.finish_reasons", resp.finish_reasons)

    _put(attrs, "gen_ai.usage.input_tokens", record.usage.input)
    _put(attrs, "gen_ai.usage.output_tokens", record.usage.output)
    _put(attrs, "gen_ai.conversation.id", record.conversation_id)
    if record.error is not None:
        attrs["error.type"] = record.error.type

    if record.tool is not None:
        attrs["gen_ai.tool.name"] = record.tool.name
        _put(attrs, "gen_ai.tool.description", record.tool.description)
        _put(attrs, "gen_ai.tool.call.id", record.tool.call_id)

    agent = record.agent
    if agent is not None:
        attrs["gen_ai.agent.name"] = agent.name
        _put(attrs, "gen_ai.agent.type", agent.type)
        _put(attrs, "gen_ai.agent.plan", agent.plan)
        _put(attrs, "gen_ai.agent.reasoning", agent.reasoning)
        if agent.steps is not None:
            running = next((s for s in agent.steps if s.status == "running"), None)
            if running is not None:
                attrs["gen_ai.agent.current_step"] = running.name
            attrs["gen_ai.agent.total_steps"] = len(agent.steps)

    wf = record.workflow
    if wf is not None:
        attrs["gen_ai.workflow.id"] = wf.id
        _put(attrs, "gen_ai.workflow.name", wf.name)
        _put(attrs, "gen_ai.workflow.step", wf.step)
        _put(attrs, "gen_ai.workflow.parent_id", wf.parent_workflow_id)

    rag = record.rag
    if rag is not None:
        _put(attrs, "gen_ai.rag.retrieval_method", rag.retrieval_method)
        _put(attrs, "gen_ai.rag.documents_retrieved", rag.documents_retrieved)
        _put(attrs, "gen_ai.rag.documents_used", rag.documents_used)
        if rag.metrics is not None:
            _put(attrs, "gen_ai.rag.context_precision", rag.metrics.context_precision)
            _put(attrs, "gen_ai.rag.context_recall", rag.metrics.context_recall)
            _put(attrs, "gen_ai.rag.answer_relevance", rag.metrics.answer_relevance)
            _put(attrs, "gen_ai.rag.faithfulness", rag.metrics.faithfulness)

    for key, value in record.provider_attributes.items():
        _put(attrs, key, value)
    for key, value in (extra or {}).items():
        _put(attrs, key, value)
    return attrs


def build_span(
    record: CanonicalRecord,
    policy: ContentPolicy,
    extra: Optional[Mapping[str, AttributeValue]] = None,
    *,
    parent: Any = None,
    links: Optional[Sequence[Any]] = None,
) -> SpanPayload:
    start_ns = ms_to_ns(record.timestamp)
    payload = SpanPayload(
        name=span_name(record.operation),
        start_time_ns=start_ns,
        end_time_ns=start_ns + int(round(record.duration_seconds * 1e9)),
        attributes=build_span_attributes(record, policy, extra),
        parent=parent_context(parent),
        links=link_contexts(links),
    )
    if record.error is not None:
        payload.status = "error"
        payload.status_message = record.error.message
        payload.error_type = record.error.type
    return payload


def _content_attributes(decision: EmissionDecision, content_key: str) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {"gen_ai.message.content_type": decision.content_type.value}
    if decision.value:
        attrs[content_key] = decision.value
    if decision.truncated:
        attrs["gen_ai.message.content_truncated"] = True
    if decision.fingerprint is not None:
        attrs["gen_ai.content.fingerprint"] = decision.fingerprint
    return attrs


def _content_event(record: CanonicalRecord, cf: ContentField, decision: EmissionDecision) -> SpanEvent:
    if cf.source is ContentSource.TOOL_CALL:
        attrs: Dict[str, Any] = {
            "gen_ai.system": record.system or "unknown",
            "gen_ai.tool.name": cf.tool_name or "unknown",
        }
        _put(attrs, "gen_ai.tool.call.id", cf.tool_call_id)
        attrs.update(_content_attributes(decision, "gen_ai.tool.arguments"))
        return SpanEvent(name="gen_ai.tool.message", attributes=attrs)

    content_key = (
        "gen_ai.message.content_json"
        if decision.content_type is ContentType.JSON
        else "gen_ai.message.content"
    )
    attrs = {
        "gen_ai.system": record.system or "unknown",
        "gen_ai.message.role": cf.role.value,
        "gen_ai.message.index": cf.index,
    }
    attrs.update(_content_attributes(decision, content_key))
    _put(attrs, "gen_ai.tool.call.id", cf.tool_call_id)
    if cf.source is ContentSource.CHOICE:
        attrs["gen_ai.response.choice.index"] = cf.index
        _put(attrs, "gen_ai.response.finish_reason", cf.finish_reason)
    return SpanEvent(name=f"gen_ai.{cf.role.value}.message", attributes=attrs)


def _informational_events(record: CanonicalRecord) -> List[SpanEvent]:
    events: List[SpanEvent] = []
    if record.agent is not None and record.agent.steps:
        for idx, step in enumerate(record.agent.steps):
            attrs: Dict[str, Any] = {
                "gen_ai.agent.step.index": idx,
                "gen_ai.agent.step.name": step.name,
                "gen_ai.agent.step.status": step.status,
            }
            _put(attrs, "gen_ai.agent.step.type", step.type)
            _put(attrs, "gen_ai.agent.step.duration", step.duration)
            _put(attrs, "gen_ai.agent.step.error", step.error)
            events.append(SpanEvent(name="gen_ai.agent.step", attributes=attrs))
    if record.rag is not None and record.rag.chunks:
        for idx, chunk in enumerate(record.rag.chunks):
            attrs = {
                "gen_ai.rag.chunk.index": idx,
                "gen_ai.rag.chunk.id": chunk.id,
                "gen_ai.rag.chunk.source": chunk.source,
                "gen_ai.rag.chunk.relevance_score": chunk.relevance_score,
                "gen_ai.rag.chunk.position": chunk.position,
            }
            _put(attrs, "gen_ai.rag.chunk.tokens", chunk.tokens)
            events.append(SpanEvent(name="gen_ai.rag.chunk", attributes=attrs))
    return events


def build_events(
    record: CanonicalRecord,
    decisions: RecordDecisions,
    policy: ContentPolicy,
    budget: EventBudget,
) -> List[SpanEvent]:
    """Materialize events for emitted decisions until the budget runs out.

    Decisions beyond the budget are still present in `decisions`; they are
    only not turned into events. An errored record's `exception` event comes
    first and takes a slot like any other event.
    """
    events: List[SpanEvent] = []
    if record.error is not None and budget.try_consume():
        events.append(
            SpanEvent(
                name="exception",
                attributes={
                    "exception.type": record.error.type,
                    "exception.message": record.error.message,
                },
            )
        )
    for cf, decision in zip(record.iter_content_fields(), decisions.decisions):
        if not decision.emit:
            continue
        if budget.try_consume():
            events.append(_content_event(record, cf, decision))
    if decisions.gate_open and not policy.suppress_informational_events:
        for event in _informational_events(record):
            if budget.try_consume():
                events.append(event)
    if budget.dropped:
        logger.debug(
            "record %s: event cap %s reached, %d events not materialized",
            record.id,
            budget.limit,
            budget.dropped,
        )
    return events


def _metric_base_attributes(
    record: CanonicalRecord,
    policy: ContentPolicy,
    extra: Optional[Mapping[str, AttributeValue]],
) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {
        "gen_ai.operation.name": record.operation.value,
        "gen_ai.system": record.system or "unknown",
    }
    _put(attrs, "gen_ai.request.model", record.request.model)
    _put(attrs, "gen_ai.response.model", record.response.model or record.request.model)
    if record.error is not None:
        attrs["error.type"] = record.error.type
    _put(attrs, "deployment.environment", policy.environment)
    for key, value in (extra or {}).items():
        _put(attrs, key, value)
    return attrs


def build_metric_points(
    record: CanonicalRecord,
    policy: ContentPolicy,
    options: Optional[EmissionOptions] = None,
) -> List[MetricPoint]:
    """Histogram observations for one record, attributes already capped."""
    options = options or EmissionOptions()
    base = _metric_base_attributes(record, policy, options.attributes)
    points: List[MetricPoint] = []

    def _add(name: str, value: float, unit: str, description: str, **more: Any) -> None:
        attrs = dict(base)
        attrs.update(more)
        points.append(
            MetricPoint(
                name=name,
                value=value,
                unit=unit,
                description=description,
                attributes=filter_metric_attributes(
                    attrs, policy.metric_attribute_allowlist, policy.max_metric_attributes
                ),
            )
        )

    token_desc = "Measures the number of input and output tokens used"
    if record.usage.input is not None:
        _add("gen_ai.client.token.usage", record.usage.input, "{token}", token_desc,
             **{"gen_ai.token.type": "input"})
    if record.usage.output is not None:
        _add("gen_ai.client.token.usage", record.usage.output, "{token}", token_desc,
             **{"gen_ai.token.type": "output"})
    _add(
        "gen_ai.client.operation.duration",
        record.duration_seconds,
        "s",
        "Measures the duration of GenAI client operations",
    )
    _add(
        "gen_ai.server.request.duration",
        record.duration_seconds,
        "s",
        "Measures the Generative AI server request duration",
    )
    if record.time_to_first_token is not None:
        _add(
            "gen_ai.server.time_to_first_token",
            record.time_to_first_token,
            "s",
            "Measures the time to generate the first token for successful responses",
        )
    if record.time_per_output_token is not None:
        _add(
            "gen_ai.server.time_per_output_token",
            record.time_per_output_token,
            "s",
            "Measures the time per output token generated after the first token",
        )
    for name, value in options.metrics.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            logger.debug("skipping non-numeric custom metric %s=%r", name, value)
            continue
        _add(
            f"eval.{name}",
            float(value),
            "{value}",
            f"Custom evaluation metric: {name}",
            **{"eval.metric.name": name, "eval.metric.type": metric_type(name)},
        )
    return points
