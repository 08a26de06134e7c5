"""Pydantic models for the canonical, provider-agnostic evaluation record.

Every provider payload (OpenAI, Anthropic, Cohere, Bedrock, Vertex, Ollama, ...)
is normalized into a `CanonicalRecord` by the `mapping` package. The privacy
pipeline, cardinality guard and emission builder only ever see this shape.

Attribute names are snake_case; JSON uses camelCase aliases
(`durationSeconds`, `providerTag`, `contentFields`, `rawValue`) so the
offline replay format can be read field-for-field by downstream tooling.
Both spellings are accepted on input.

Invariants:
    - `id` and `provider_tag` are frozen once the record is constructed.
    - `ContentField` / `ToolInvocation` are frozen; privacy decisions build
      new values instead of mutating `raw_value`.
    - Optional numeric fields stay None when absent. Zero is a measured value.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "ProviderTag",
    "Operation",
    "ContentRole",
    "ContentKind",
    "ContentSource",
    "ContentField",
    "ToolInvocation",
    "RequestInfo",
    "ResponseInfo",
    "TokenUsage",
    "ErrorInfo",
    "ToolExecution",
    "AgentStep",
    "AgentInfo",
    "WorkflowInfo",
    "RagChunk",
    "RagMetrics",
    "RagInfo",
    "CanonicalRecord",
    "RecordValidationError",
    "validate_record",
    "coerce_role",
]


class ProviderTag(str, Enum):
    """Closed set of payload shapes the detector can recognise."""

    OPENAI_CHAT = "openai-chat"
    OPENAI_COMPATIBLE = "openai-compatible"
    ANTHROPIC = "anthropic"
    COHERE = "cohere"
    BEDROCK = "bedrock"
    VERTEX = "vertex"
    OLLAMA = "ollama"
    UNKNOWN = "unknown"

    @classmethod
    def known(cls) -> List["ProviderTag"]:
        return [t for t in cls if t is not cls.UNKNOWN]


class Operation(str, Enum):
    CHAT = "chat"
    TEXT_COMPLETION = "text_completion"
    EMBEDDINGS = "embeddings"
    EXECUTE_TOOL = "execute_tool"
    AGENT_EXECUTION = "agent_execution"
    WORKFLOW_STEP = "workflow_step"


class ContentRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentKind(str, Enum):
    TEXT = "text"
    STRUCTURED = "structured"


class ContentSource(str, Enum):
    """Where a content field came from; drives event shape, not policy."""

    CONVERSATION = "conversation"
    CHOICE = "choice"
    TOOL_CALL = "tool_call"


_ROLE_ALIASES = {
    "model": ContentRole.ASSISTANT,  # vertex / gemini
    "chatbot": ContentRole.ASSISTANT,  # cohere v1
    "developer": ContentRole.SYSTEM,
    "function": ContentRole.TOOL,
}


def coerce_role(role: Any) -> ContentRole:
    """Map a provider role spelling onto the four canonical roles.

    Unrecognised or missing roles become `user`.
    """
    if isinstance(role, ContentRole):
        return role
    if isinstance(role, str):
        lowered = role.strip().lower()
        try:
            return ContentRole(lowered)
        except ValueError:
            return _ROLE_ALIASES.get(lowered, ContentRole.USER)
    return ContentRole.USER


class _CanonicalModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCanonicalModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ContentField(_FrozenCanonicalModel):
    """One atomic piece of potentially sensitive content.

    `raw_value` is a string for plain text or any JSON-compatible value for
    structured content. It is the pre-redaction original and is never mutated.
    """

    role: ContentRole
    index: int
    kind: ContentKind = ContentKind.TEXT
    raw_value: Any = None
    source: ContentSource = ContentSource.CONVERSATION
    finish_reason: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None

    @staticmethod
    def kind_for(value: Any) -> ContentKind:
        return ContentKind.STRUCTURED if isinstance(value, (dict, list)) else ContentKind.TEXT


class ToolInvocation(_FrozenCanonicalModel):
    """A tool call requested by the model.

    `raw_arguments` is the parsed argument object, or the original string when
    the provider sent arguments that were not valid JSON.
    """

    name: str
    call_id: Optional[str] = None
    raw_arguments: Any = None
    choice_index: Optional[int] = None
    index: int = 0

    def as_content_field(self) -> ContentField:
        return ContentField(
            role=ContentRole.TOOL,
            index=self.index,
            kind=ContentField.kind_for(self.raw_arguments),
            raw_value=self.raw_arguments,
            source=ContentSource.TOOL_CALL,
            tool_call_id=self.call_id,
            tool_name=self.name,
        )


class RequestInfo(_CanonicalModel):
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop_sequences: Optional[List[str]] = None
    seed: Optional[int] = None
    choice_count: Optional[int] = None


class ResponseInfo(_CanonicalModel):
    id: Optional[str] = None
    model: Optional[str] = None
    finish_reasons: Optional[List[str]] = None


class TokenUsage(_CanonicalModel):
    """Canonical token counts. Missing counts stay None (never 0)."""

    input: Optional[int] = None
    output: Optional[int] = None
    total: Optional[int] = None

    @classmethod
    def from_counts(
        cls, input: Any = None, output: Any = None, total: Any = None
    ) -> "TokenUsage":
        in_val = _as_int(input)
        out_val = _as_int(output)
        total_val = _as_int(total)
        if total_val is None and in_val is not None and out_val is not None:
            total_val = in_val + out_val
        return cls(input=in_val, output=out_val, total=total_val)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class ErrorInfo(_CanonicalModel):
    type: str
    message: str


class ToolExecution(_CanonicalModel):
    """A tool the host actually executed (as opposed to one the model requested)."""

    name: str
    description: Optional[str] = None
    call_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class AgentStep(_CanonicalModel):
    name: str
    status: str
    type: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None


class AgentInfo(_CanonicalModel):
    name: str
    type: Optional[str] = None
    plan: Optional[str] = None
    reasoning: Optional[str] = None
    steps: Optional[List[AgentStep]] = None


class WorkflowInfo(_CanonicalModel):
    id: str
    name: Optional[str] = None
    step: Optional[str] = None
    parent_workflow_id: Optional[str] = None


class RagChunk(_CanonicalModel):
    id: str
    source: str
    relevance_score: float
    position: int
    tokens: Optional[int] = None


class RagMetrics(_CanonicalModel):
    context_precision: Optional[float] = None
    context_recall: Optional[float] = None
    answer_relevance: Optional[float] = None
    faithfulness: Optional[float] = None


class RagInfo(_CanonicalModel):
    retrieval_method: Optional[str] = None
    documents_retrieved: Optional[int] = None
    documents_used: Optional[int] = None
    chunks: Optional[List[RagChunk]] = None
    metrics: Optional[RagMetrics] = None


class CanonicalRecord(_CanonicalModel):
    """The normalized representation of one evaluated LLM invocation.

    Constructed fresh per inbound payload and discarded after emission.
    `id` is the content sampling key and must be stable across retries of the
    same logical evaluation.
    """

    id: str = Field(frozen=True)
    timestamp: float
    duration_seconds: float = 0.0
    provider_tag: ProviderTag = Field(default=ProviderTag.UNKNOWN, frozen=True)
    system: Optional[str] = None
    operation: Operation = Operation.CHAT
    request: RequestInfo = Field(default_factory=RequestInfo)
    response: ResponseInfo = Field(default_factory=ResponseInfo)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    time_to_first_token: Optional[float] = None
    time_per_output_token: Optional[float] = None
    conversation_id: Optional[str] = None
    content_fields: List[ContentField] = Field(default_factory=list)
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)
    provider_attributes: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[ErrorInfo] = None
    tool: Optional[ToolExecution] = None
    agent: Optional[AgentInfo] = None
    workflow: Optional[WorkflowInfo] = None
    rag: Optional[RagInfo] = None

    def iter_content_fields(self) -> Iterator[ContentField]:
        """Yield every content field in emission order.

        Conversation messages first, then each response choice preceded by
        the tool calls it requested, then tool calls not tied to a choice.
        """
        by_choice: Dict[int, List[ToolInvocation]] = {}
        orphans: List[ToolInvocation] = []
        for inv in self.tool_invocations:
            if inv.choice_index is None:
                orphans.append(inv)
            else:
                by_choice.setdefault(inv.choice_index, []).append(inv)
        for cf in self.content_fields:
            if cf.source is not ContentSource.CHOICE:
                yield cf
        for cf in self.content_fields:
            if cf.source is ContentSource.CHOICE:
                for inv in by_choice.pop(cf.index, []):
                    yield inv.as_content_field()
                yield cf
        for invs in by_choice.values():
            orphans.extend(invs)
        for inv in orphans:
            yield inv.as_content_field()

    def to_json_line(self) -> str:
        """Serialize to the canonical camelCase JSON used for offline replay."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class RecordValidationError(ValueError):
    """Raised when a record violates the caller contract (e.g. no model name).

    `errors` mirrors pydantic's error list shape: dicts with `loc`, `msg` and
    `type` keys.
    """

    def __init__(self, record_id: Optional[str], errors: List[Dict[str, Any]]):
        self.record_id = record_id
        self.errors = errors
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors
        )
        super().__init__(f"Invalid canonical record {record_id!r}: {detail}")


def validate_record(record: CanonicalRecord) -> CanonicalRecord:
    """Check the fields emission cannot do without.

    Payload variation is tolerated everywhere else; a missing model name or a
    negative duration means the caller handed over a broken record.
    """
    errors: List[Dict[str, Any]] = []
    if not (record.request.model or "").strip():
        errors.append(
            {"loc": ("request", "model"), "msg": "model name is required", "type": "missing"}
        )
    if record.duration_seconds < 0:
        errors.append(
            {
                "loc": ("duration_seconds",),
                "msg": "duration must be non-negative",
                "type": "greater_than_equal",
            }
        )
    if errors:
        raise RecordValidationError(record.id, errors)
    return record
