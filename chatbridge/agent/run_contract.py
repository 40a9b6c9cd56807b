"""Wire contract for agent run snapshots, identities and approval checkpoints."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any, Mapping, Sequence

DEFAULT_ERROR_MESSAGE = "An error occurred while processing your request"

APPROVAL_SPAN = "TOOL_WAITING_FOR_APPROVAL"
LLM_END_SPAN = "LLM_END"


class RunStatus(str, Enum):
    """Statuses reported by the agent backend."""

    PENDING = "PENDING"
    PAUSED_WAITING_FOR_APPROVAL = "PAUSED_WAITING_FOR_APPROVAL"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: Any) -> "RunStatus | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class RunIdentity:
    """Pair naming one server-side run."""

    agent_id: str | None
    agent_run_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"agentId": self.agent_id, "agentRunId": self.agent_run_id}


@dataclass(frozen=True, slots=True)
class ApprovalDescriptor:
    """Tool call awaiting a human decision."""

    tool_execution_id: str
    tool_id: str | None = None
    tool_name: str | None = None
    tool_description: str | None = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    reasoning_summary: str = ""

    @classmethod
    def from_tool_data(cls, payload: Mapping[str, Any]) -> "ApprovalDescriptor":
        execution_id = payload.get("toolExecutionId")
        if not isinstance(execution_id, str) or not execution_id.strip():
            raise ValueError("tool data is missing toolExecutionId")
        parameters = payload.get("toolParameters")
        if not isinstance(parameters, Mapping):
            parameters = {}
        return cls(
            tool_execution_id=execution_id,
            tool_id=_optional_text(payload.get("toolId")),
            tool_name=_optional_text(payload.get("toolName")),
            tool_description=_optional_text(payload.get("toolDescription")),
            parameters=dict(parameters),
            reasoning=_optional_text(payload.get("toolUseReasoning")) or "",
            reasoning_summary=_optional_text(payload.get("toolUseReasoningSummary")) or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolExecutionId": self.tool_execution_id,
            "toolId": self.tool_id,
            "toolName": self.tool_name,
            "toolDescription": self.tool_description,
            "toolParameters": dict(self.parameters),
            "toolUseReasoning": self.reasoning,
            "toolUseReasoningSummary": self.reasoning_summary,
        }


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


@dataclass(slots=True)
class RunSnapshot:
    """Parsed backend status payload.

    Every field is optional on the wire. ``raw`` keeps the original mapping
    so simple replies can be handed to the renderer unchanged.
    """

    status: RunStatus | None = None
    status_text: str | None = None
    error: Any | None = None
    message: str | None = None
    approval_message: str | None = None
    agent_run_id: str | None = None
    agent_id: str | None = None
    effective_agent_id: str | None = None
    success: bool | None = None
    content: Any | None = None
    result_text: Any | None = None
    has_pagination: bool = False
    last_log_uuid: str | None = None
    trace: list[Mapping[str, Any]] = field(default_factory=list)
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RunSnapshot":
        if not isinstance(payload, Mapping):
            raise TypeError("snapshot payload must be a mapping")
        status_raw = payload.get("status")
        pagination = payload.get("pagination")
        last_log_uuid: str | None = None
        if isinstance(pagination, Mapping):
            cursor = pagination.get("lastLogUUID")
            if isinstance(cursor, str):
                last_log_uuid = cursor
        trace_raw = payload.get("trace")
        trace: list[Mapping[str, Any]] = []
        if isinstance(trace_raw, Sequence) and not isinstance(trace_raw, (str, bytes)):
            trace = [span for span in trace_raw if isinstance(span, Mapping)]
        success = payload.get("success")
        return cls(
            status=RunStatus.parse(status_raw),
            status_text=status_raw if isinstance(status_raw, str) and status_raw else None,
            error=payload.get("error") or None,
            message=_optional_text(payload.get("message")) or None,
            approval_message=_optional_text(payload.get("approvalMessage")) or None,
            agent_run_id=_optional_text(payload.get("agentRunId")) or None,
            agent_id=_optional_text(payload.get("agentId")) or None,
            effective_agent_id=_optional_text(payload.get("effectiveAgentId")) or None,
            success=success if isinstance(success, bool) else None,
            content=payload.get("content"),
            result_text=payload.get("resultText"),
            has_pagination=bool(pagination),
            last_log_uuid=last_log_uuid,
            trace=trace,
            raw=dict(payload),
        )

    # ------------------------------------------------------------------
    @property
    def is_error(self) -> bool:
        return self.status is RunStatus.ERROR or bool(self.error)

    @property
    def is_simple_reply(self) -> bool:
        """Return ``True`` for a direct ``{type, ...}`` reply with no run metadata."""
        if self.status_text or self.agent_run_id or self.has_pagination:
            return False
        reply_type = self.raw.get("type")
        return isinstance(reply_type, str) and bool(reply_type)

    @property
    def completion_text(self) -> Any | None:
        return self.content or self.result_text or None


def extract_error_message(snapshot: RunSnapshot) -> str:
    """Return a human readable message for an error snapshot."""

    error = snapshot.error
    if error:
        if isinstance(error, str):
            return error
        if isinstance(error, Mapping):
            message = error.get("message")
            if message:
                return str(message)
            payload = error.get("payload")
            if isinstance(payload, Mapping) and payload:
                return "; ".join(f"{key}: {value}" for key, value in payload.items())
            try:
                return json.dumps(error, ensure_ascii=False, default=str)
            except (TypeError, ValueError):
                return str(error)
        return str(error)
    if snapshot.message:
        return snapshot.message
    return DEFAULT_ERROR_MESSAGE


def find_approval_descriptor(trace: Sequence[Mapping[str, Any]]) -> ApprovalDescriptor | None:
    """Locate the approval span in *trace* and parse its ``toolData``.

    The first span that is either a ``TOOL_WAITING_FOR_APPROVAL`` span or an
    ``LLM_END`` span carrying ``toolData`` wins. ``None`` is returned when no
    such span exists or its tool data lacks an execution id.
    """

    for span in trace:
        span_type = span.get("spanType")
        tool_data = span.get("toolData")
        if span_type == APPROVAL_SPAN or (span_type == LLM_END_SPAN and tool_data):
            if not isinstance(tool_data, Mapping):
                return None
            try:
                return ApprovalDescriptor.from_tool_data(tool_data)
            except ValueError:
                return None
    return None


def parse_completion(raw: Any) -> Any:
    """Decode a completion body into assistant content.

    JSON text decoding to a string or to a ``{type, ...}`` object becomes the
    decoded value; anything else becomes a ``text`` widget carrying the raw
    body.
    """

    if isinstance(raw, Mapping) and isinstance(raw.get("type"), str):
        return dict(raw)
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return {"type": "text", "source": raw}
        if isinstance(decoded, str):
            return decoded
        if isinstance(decoded, Mapping) and isinstance(decoded.get("type"), str):
            return dict(decoded)
        return {"type": "text", "source": raw}
    return {"type": "text", "source": raw}


__all__ = [
    "APPROVAL_SPAN",
    "ApprovalDescriptor",
    "DEFAULT_ERROR_MESSAGE",
    "LLM_END_SPAN",
    "RunIdentity",
    "RunSnapshot",
    "RunStatus",
    "extract_error_message",
    "find_approval_descriptor",
    "parse_completion",
]
