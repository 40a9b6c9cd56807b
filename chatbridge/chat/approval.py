"""Human approval checkpoint bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
from typing import Any

from ..agent.run_contract import ApprovalDescriptor, RunIdentity

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_MESSAGE = "This action requires approval before proceeding."
_NO_REASONING = "No specific reasoning provided"


class ApprovalError(RuntimeError):
    """Raised when a decision is made without a pending approval request."""


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True, slots=True)
class PendingApproval:
    """Approval request currently shown to the user."""

    descriptor: ApprovalDescriptor
    message: str

    @property
    def tool_execution_id(self) -> str:
        return self.descriptor.tool_execution_id


def _parameter_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def format_approval_message(descriptor: ApprovalDescriptor | None, fallback: str | None = None) -> str:
    """Return the prompt shown to the user for *descriptor*.

    Without a descriptor the backend supplied *fallback* (or a generic
    sentence) is used as is.
    """
    if descriptor is None:
        return fallback or DEFAULT_APPROVAL_MESSAGE
    why = descriptor.reasoning_summary or descriptor.reasoning or _NO_REASONING
    parameters = "\n".join(
        f"• {key}: {_parameter_text(value)}" for key, value in descriptor.parameters.items()
    )
    return (
        f'The AI wants to use the "{descriptor.tool_name}" tool:\n\n'
        f"• Tool: {descriptor.tool_description}\n\n"
        f"Why: {why}\n\n"
        f"Parameters:\n{parameters}"
    )


class ApprovalGate:
    """Hold at most one pending approval and remember which ones were shown.

    The seen-set belongs to one run identity: the poller clears it on a
    fresh start and keeps it across resumes.
    """

    def __init__(self) -> None:
        self._pending: PendingApproval | None = None
        self._seen: set[str] = set()

    # ------------------------------------------------------------------
    @property
    def pending(self) -> PendingApproval | None:
        return self._pending

    @property
    def seen(self) -> frozenset[str]:
        return frozenset(self._seen)

    def has_seen(self, tool_execution_id: str) -> bool:
        return tool_execution_id in self._seen

    def reset_seen(self) -> None:
        self._seen.clear()

    # ------------------------------------------------------------------
    def request(self, descriptor: ApprovalDescriptor, message: str | None = None) -> bool:
        """Register *descriptor* as the pending approval.

        Returns ``False`` without changes when another approval is already
        pending or the execution id was shown before.
        """
        if self._pending is not None:
            logger.debug(
                "approval %s ignored: %s still pending",
                descriptor.tool_execution_id,
                self._pending.tool_execution_id,
            )
            return False
        if descriptor.tool_execution_id in self._seen:
            return False
        self._seen.add(descriptor.tool_execution_id)
        self._pending = PendingApproval(
            descriptor=descriptor,
            message=message or format_approval_message(descriptor),
        )
        return True

    def clear(self) -> PendingApproval | None:
        pending, self._pending = self._pending, None
        return pending

    # ------------------------------------------------------------------
    def decide(self, decision: ApprovalDecision | str, identity: RunIdentity) -> dict[str, Any]:
        """Build the decision payload and clear the pending request.

        Polling is not resumed here; the backend answers with a ``PENDING``
        snapshot that triggers the resume.
        """
        if self._pending is None:
            raise ApprovalError("no approval is pending")
        choice = ApprovalDecision(decision)
        descriptor = self._pending.descriptor
        self._pending = None
        return {
            "action": "submitToolApproval",
            "agentRunId": identity.agent_run_id,
            "effectiveAgentRunId": identity.agent_run_id,
            "effectiveAgentId": identity.agent_id,
            "decisions": [
                {
                    "toolExecutionId": descriptor.tool_execution_id,
                    "toolId": descriptor.tool_id,
                    "decision": choice.value,
                }
            ],
        }


__all__ = [
    "ApprovalDecision",
    "ApprovalError",
    "ApprovalGate",
    "DEFAULT_APPROVAL_MESSAGE",
    "PendingApproval",
    "format_approval_message",
]
