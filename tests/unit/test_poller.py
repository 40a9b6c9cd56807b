import pytest

from chatbridge.agent.run_contract import ApprovalDescriptor, RunIdentity
from chatbridge.chat.approval import ApprovalGate
from chatbridge.chat.poller import AgentRunPoller, PollerState
from tests.chat_utils import ManualPollTimer, RecordingBackend

pytestmark = pytest.mark.unit

RUN_A = RunIdentity(agent_id="agent", agent_run_id="run-a")
RUN_B = RunIdentity(agent_id="agent", agent_run_id="run-b")


def _mark_seen(approvals: ApprovalGate, execution_id: str) -> None:
    approvals.request(ApprovalDescriptor(tool_execution_id=execution_id))
    approvals.clear()


def _poller(**kwargs):
    timer = ManualPollTimer()
    backend = RecordingBackend()
    approvals = ApprovalGate()
    poller = AgentRunPoller(timer=timer, send=backend.send, approvals=approvals, interval_ms=250, **kwargs)
    return poller, timer, backend, approvals


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        AgentRunPoller(timer=ManualPollTimer(), send=lambda payload: None, approvals=ApprovalGate(), interval_ms=0)


def test_start_schedules_get_logs() -> None:
    poller, timer, backend, _ = _poller()
    poller.start(RUN_A)
    assert poller.state is PollerState.POLLING
    assert poller.is_polling
    assert timer.interval_ms == 250
    timer.fire()
    assert backend.sent == [{"action": "getLogs", "agentRunId": "run-a"}]


def test_cursor_is_sent_once_recorded() -> None:
    poller, timer, backend, _ = _poller()
    poller.start(RUN_A)
    poller.record_cursor("log-1")
    poller.record_cursor("")
    poller.record_cursor(None)
    timer.fire()
    assert backend.last == {"action": "getLogs", "agentRunId": "run-a", "lastLogUUID": "log-1"}


def test_start_clears_cursor_and_seen_set() -> None:
    poller, _, _, approvals = _poller()
    _mark_seen(approvals, "e1")
    poller.start(RUN_A)
    poller.record_cursor("log-1")
    poller.start(RUN_B)
    assert poller.cursor is None
    assert not approvals.has_seen("e1")


def test_resume_keeps_cursor_and_seen_set() -> None:
    poller, timer, backend, approvals = _poller()
    poller.start(RUN_A)
    poller.record_cursor("log-1")
    _mark_seen(approvals, "e1")
    poller.stop(PollerState.PAUSED)
    assert poller.state is PollerState.PAUSED
    assert not poller.is_polling
    assert poller.identity == RUN_A

    poller.resume(RUN_A)
    timer.fire()
    assert backend.last["lastLogUUID"] == "log-1"
    assert approvals.has_seen("e1")


def test_stale_tick_from_previous_run_is_dropped() -> None:
    poller, timer, backend, _ = _poller()
    poller.start(RUN_A)
    stale_callback = timer.callback
    poller.start(RUN_B)
    stale_callback()
    assert backend.sent == []
    assert timer.is_running
    timer.fire()
    assert backend.sent == [{"action": "getLogs", "agentRunId": "run-b"}]


def test_tick_after_stop_stops_timer() -> None:
    poller, timer, backend, _ = _poller()
    poller.start(RUN_A)
    callback = timer.callback
    poller.stop()
    stops = timer.stops
    callback()
    assert backend.sent == []
    assert timer.stops == stops + 1


def test_transport_error_stops_polling() -> None:
    errors: list[str] = []
    poller, timer, backend, _ = _poller(on_transport_error=errors.append)
    backend.fail_with = ConnectionError("network down")
    poller.start(RUN_A)
    timer.fire()
    assert poller.state is PollerState.ERRORED
    assert not timer.is_running
    assert poller.identity == RUN_A
    assert errors == ["network down"]


def test_stop_when_idle_keeps_state() -> None:
    poller, _, _, _ = _poller()
    poller.stop()
    assert poller.state is PollerState.IDLE
    poller.stop(PollerState.COMPLETED)
    assert poller.state is PollerState.COMPLETED


def test_forget_drops_identity_and_cursor() -> None:
    poller, timer, _, _ = _poller()
    poller.start(RUN_A)
    poller.record_cursor("log-1")
    assert poller.forget() == RUN_A
    assert poller.identity is None
    assert poller.cursor is None
    assert poller.state is PollerState.IDLE
    assert not timer.is_running
    assert poller.forget() is None
