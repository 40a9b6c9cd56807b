"""Agent run contract shared by the chat orchestrator and its transports."""

from .run_contract import (
    ApprovalDescriptor,
    RunIdentity,
    RunSnapshot,
    RunStatus,
)

__all__ = ["ApprovalDescriptor", "RunIdentity", "RunSnapshot", "RunStatus"]
