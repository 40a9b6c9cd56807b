"""Map backend snapshots to orchestrator actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from ..agent.run_contract import (
    ApprovalDescriptor,
    RunIdentity,
    RunSnapshot,
    RunStatus,
    extract_error_message,
    find_approval_descriptor,
    parse_completion,
)
from .approval import format_approval_message

MISSING_TOOL_DETAILS = "The agent requested approval without tool details"


@dataclass(frozen=True, slots=True)
class StartPolling:
    identity: RunIdentity


@dataclass(frozen=True, slots=True)
class ResumePolling:
    identity: RunIdentity


@dataclass(frozen=True, slots=True)
class ApprovalRequested:
    descriptor: ApprovalDescriptor
    message: str


@dataclass(frozen=True, slots=True)
class Completed:
    content: Any | None


@dataclass(frozen=True, slots=True)
class Fatal:
    message: str


@dataclass(frozen=True, slots=True)
class DirectReply:
    content: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Ignore:
    reason: str


Action = Union[StartPolling, ResumePolling, ApprovalRequested, Completed, Fatal, DirectReply, Ignore]


@dataclass(frozen=True, slots=True)
class InterpreterState:
    """What the interpreter needs to know about the orchestrator.

    ``invoke_outstanding`` is true while at least one invoke has not been
    answered; only such an answer may start polling. ``awaiting_resume`` is
    true between an approval decision and the backend's resume reply.
    """

    is_polling: bool = False
    identity: RunIdentity | None = None
    invoke_outstanding: bool = False
    awaiting_resume: bool = False
    seen_approvals: frozenset[str] = field(default_factory=frozenset)
    retired_run_ids: frozenset[str] = field(default_factory=frozenset)


def _is_stale(snapshot: RunSnapshot, state: InterpreterState) -> bool:
    run_id = snapshot.agent_run_id
    if not run_id:
        return False
    if run_id in state.retired_run_ids:
        return True
    if state.is_polling and state.identity is not None:
        return run_id != state.identity.agent_run_id
    return False


def interpret(snapshot: RunSnapshot, state: InterpreterState) -> Action:
    """Return the single action *snapshot* calls for.

    The checks run in a fixed order: stale guard, simple reply, error,
    approval pause, resume, start, completion. The function never mutates
    *state*.
    """

    if not snapshot.raw:
        return Ignore("empty")

    if _is_stale(snapshot, state):
        return Ignore("stale")

    if snapshot.is_simple_reply:
        return DirectReply(dict(snapshot.raw))

    if snapshot.is_error:
        return Fatal(extract_error_message(snapshot))

    status = snapshot.status

    if status is RunStatus.PAUSED_WAITING_FOR_APPROVAL and state.is_polling:
        descriptor = find_approval_descriptor(snapshot.trace)
        if descriptor is None:
            prompt = format_approval_message(None, snapshot.approval_message or snapshot.message)
            return Fatal(f"{MISSING_TOOL_DETAILS}: {prompt}")
        if descriptor.tool_execution_id in state.seen_approvals:
            return Ignore("duplicate")
        return ApprovalRequested(descriptor, format_approval_message(descriptor))

    if (
        snapshot.success is True
        and status is RunStatus.PENDING
        and not state.is_polling
        and state.awaiting_resume
        and state.identity is not None
    ):
        return ResumePolling(
            RunIdentity(
                agent_id=snapshot.effective_agent_id or state.identity.agent_id,
                agent_run_id=snapshot.agent_run_id or state.identity.agent_run_id,
            )
        )

    if status is RunStatus.PENDING and snapshot.agent_run_id and not state.is_polling:
        # a poll reply that was in flight when the run paused or stopped
        if not state.invoke_outstanding:
            return Ignore("late")
        return StartPolling(RunIdentity(agent_id=snapshot.agent_id, agent_run_id=snapshot.agent_run_id))

    if status is RunStatus.COMPLETED and state.is_polling:
        raw = snapshot.completion_text
        return Completed(parse_completion(raw) if raw is not None else None)

    return Ignore("unhandled")


__all__ = [
    "Action",
    "ApprovalRequested",
    "Completed",
    "DirectReply",
    "Fatal",
    "Ignore",
    "InterpreterState",
    "MISSING_TOOL_DETAILS",
    "ResumePolling",
    "StartPolling",
    "interpret",
]
