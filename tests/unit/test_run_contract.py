import pytest

from chatbridge.agent.run_contract import (
    DEFAULT_ERROR_MESSAGE,
    ApprovalDescriptor,
    RunIdentity,
    RunSnapshot,
    RunStatus,
    extract_error_message,
    find_approval_descriptor,
    parse_completion,
)

pytestmark = pytest.mark.unit

TOOL_DATA = {
    "toolExecutionId": "exec-1",
    "toolId": "tool-9",
    "toolName": "send_email",
    "toolDescription": "Send an email",
    "toolParameters": {"to": "ops@example.com"},
    "toolUseReasoning": "The user asked to notify ops",
    "toolUseReasoningSummary": "Notify ops",
}


def test_run_status_parse() -> None:
    assert RunStatus.parse("pending") is RunStatus.PENDING
    assert RunStatus.parse(RunStatus.COMPLETED) is RunStatus.COMPLETED
    assert RunStatus.parse("UNKNOWN") is None
    assert RunStatus.parse(None) is None


def test_snapshot_from_dict_reads_fields() -> None:
    snapshot = RunSnapshot.from_dict(
        {
            "status": "PENDING",
            "agentRunId": "run-1",
            "agentId": "agent-1",
            "effectiveAgentId": "agent-2",
            "success": True,
            "pagination": {"lastLogUUID": "log-5"},
            "trace": [{"spanType": "LLM_START"}, "garbage"],
        }
    )
    assert snapshot.status is RunStatus.PENDING
    assert snapshot.agent_run_id == "run-1"
    assert snapshot.effective_agent_id == "agent-2"
    assert snapshot.success is True
    assert snapshot.has_pagination
    assert snapshot.last_log_uuid == "log-5"
    assert snapshot.trace == [{"spanType": "LLM_START"}]


def test_snapshot_from_dict_requires_mapping() -> None:
    with pytest.raises(TypeError):
        RunSnapshot.from_dict(["status"])  # type: ignore[arg-type]


def test_simple_reply_detection() -> None:
    assert RunSnapshot.from_dict({"type": "text", "source": "hi"}).is_simple_reply
    assert not RunSnapshot.from_dict({"type": "text", "status": "COMPLETED"}).is_simple_reply
    assert not RunSnapshot.from_dict({"type": "text", "agentRunId": "r"}).is_simple_reply
    assert not RunSnapshot.from_dict({"type": "text", "pagination": {"lastLogUUID": "x"}}).is_simple_reply
    assert not RunSnapshot.from_dict({"type": 5}).is_simple_reply


def test_is_error() -> None:
    assert RunSnapshot.from_dict({"status": "ERROR"}).is_error
    assert RunSnapshot.from_dict({"status": "PENDING", "error": "boom"}).is_error
    assert not RunSnapshot.from_dict({"status": "PENDING", "error": ""}).is_error


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"status": "ERROR", "error": "plain failure"}, "plain failure"),
        ({"status": "ERROR", "error": {"message": "Quota exceeded"}}, "Quota exceeded"),
        ({"status": "ERROR", "error": {"payload": {"code": 42, "tool": "x"}}}, "code: 42; tool: x"),
        ({"status": "ERROR", "error": {"detail": 1}}, '{"detail": 1}'),
        ({"status": "ERROR", "message": "From message"}, "From message"),
        ({"status": "ERROR"}, DEFAULT_ERROR_MESSAGE),
    ],
)
def test_extract_error_message(payload, expected) -> None:
    assert extract_error_message(RunSnapshot.from_dict(payload)) == expected


def test_approval_descriptor_from_tool_data() -> None:
    descriptor = ApprovalDescriptor.from_tool_data(TOOL_DATA)
    assert descriptor.tool_execution_id == "exec-1"
    assert descriptor.tool_id == "tool-9"
    assert descriptor.parameters == {"to": "ops@example.com"}
    assert descriptor.reasoning_summary == "Notify ops"
    assert descriptor.to_dict() == TOOL_DATA


def test_approval_descriptor_requires_execution_id() -> None:
    with pytest.raises(ValueError):
        ApprovalDescriptor.from_tool_data({"toolName": "x"})


def test_find_approval_descriptor_spans() -> None:
    trace = [
        {"spanType": "LLM_START"},
        {"spanType": "LLM_END"},
        {"spanType": "LLM_END", "toolData": TOOL_DATA},
    ]
    assert find_approval_descriptor(trace).tool_execution_id == "exec-1"

    waiting = [{"spanType": "TOOL_WAITING_FOR_APPROVAL", "toolData": {**TOOL_DATA, "toolExecutionId": "exec-2"}}]
    assert find_approval_descriptor(waiting).tool_execution_id == "exec-2"

    assert find_approval_descriptor([{"spanType": "TOOL_WAITING_FOR_APPROVAL"}]) is None
    assert find_approval_descriptor([{"spanType": "TOOL_WAITING_FOR_APPROVAL", "toolData": {"toolName": "x"}}]) is None
    assert find_approval_descriptor([]) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"type": "google_map", "source": {"lat": 1, "lon": 2}}', {"type": "google_map", "source": {"lat": 1, "lon": 2}}),
        ('"quoted text"', "quoted text"),
        ("plain words", {"type": "text", "source": "plain words"}),
        ("[1, 2]", {"type": "text", "source": "[1, 2]"}),
        ({"type": "text", "source": "already"}, {"type": "text", "source": "already"}),
        (42, {"type": "text", "source": 42}),
    ],
)
def test_parse_completion(raw, expected) -> None:
    assert parse_completion(raw) == expected


def test_completion_text_prefers_content() -> None:
    snapshot = RunSnapshot.from_dict({"status": "COMPLETED", "content": "a", "resultText": "b"})
    assert snapshot.completion_text == "a"
    snapshot = RunSnapshot.from_dict({"status": "COMPLETED", "resultText": "b"})
    assert snapshot.completion_text == "b"


def test_run_identity_to_dict() -> None:
    assert RunIdentity("agent", "run").to_dict() == {"agentId": "agent", "agentRunId": "run"}
