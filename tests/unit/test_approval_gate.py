import pytest

from chatbridge.agent.run_contract import ApprovalDescriptor, RunIdentity
from chatbridge.chat.approval import (
    DEFAULT_APPROVAL_MESSAGE,
    ApprovalDecision,
    ApprovalError,
    ApprovalGate,
    format_approval_message,
)

pytestmark = pytest.mark.unit

RUN = RunIdentity(agent_id="agent-1", agent_run_id="run-1")


def _descriptor(execution_id: str = "e1", **kwargs) -> ApprovalDescriptor:
    return ApprovalDescriptor(tool_execution_id=execution_id, tool_id="t1", tool_name="search", **kwargs)


def test_format_approval_message() -> None:
    descriptor = _descriptor(
        tool_description="Search the web",
        parameters={"query": "weather", "limit": 3, "filters": {"lang": "en"}},
        reasoning="Long reasoning",
        reasoning_summary="Needs fresh data",
    )
    assert format_approval_message(descriptor) == (
        'The AI wants to use the "search" tool:\n\n'
        "• Tool: Search the web\n\n"
        "Why: Needs fresh data\n\n"
        "Parameters:\n"
        "• query: weather\n"
        "• limit: 3\n"
        '• filters: {"lang": "en"}'
    )


def test_format_approval_message_falls_back_to_reasoning() -> None:
    assert "Why: Long reasoning" in format_approval_message(_descriptor(reasoning="Long reasoning"))
    assert "Why: No specific reasoning provided" in format_approval_message(_descriptor())


def test_format_approval_message_without_descriptor() -> None:
    assert format_approval_message(None) == DEFAULT_APPROVAL_MESSAGE
    assert format_approval_message(None, "Backend text") == "Backend text"


def test_request_holds_one_pending_and_marks_seen() -> None:
    gate = ApprovalGate()
    assert gate.request(_descriptor("e1"))
    assert gate.pending.tool_execution_id == "e1"
    assert gate.has_seen("e1")
    assert not gate.request(_descriptor("e2"))
    assert gate.pending.tool_execution_id == "e1"
    assert not gate.has_seen("e2")


def test_request_rejects_seen_execution_ids() -> None:
    gate = ApprovalGate()
    gate.request(_descriptor("e1"))
    gate.clear()
    assert not gate.request(_descriptor("e1"))
    assert gate.pending is None
    gate.reset_seen()
    assert gate.request(_descriptor("e1"))


def test_decide_builds_payload_and_clears() -> None:
    gate = ApprovalGate()
    gate.request(_descriptor("e1"))
    payload = gate.decide(ApprovalDecision.APPROVE, RUN)
    assert payload == {
        "action": "submitToolApproval",
        "agentRunId": "run-1",
        "effectiveAgentRunId": "run-1",
        "effectiveAgentId": "agent-1",
        "decisions": [{"toolExecutionId": "e1", "toolId": "t1", "decision": "approve"}],
    }
    assert gate.pending is None
    assert gate.has_seen("e1")


def test_decide_accepts_string_decision() -> None:
    gate = ApprovalGate()
    gate.request(_descriptor("e1"))
    assert gate.decide("reject", RUN)["decisions"][0]["decision"] == "reject"


def test_decide_without_pending_raises() -> None:
    with pytest.raises(ApprovalError):
        ApprovalGate().decide(ApprovalDecision.APPROVE, RUN)
