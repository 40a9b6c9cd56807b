"""Backend transports for the agent chat."""

from .client import (
    AgentBackend,
    HostQueryBridge,
    HttpAgentBackend,
    StateStoreBackend,
    error_snapshot,
)

__all__ = [
    "AgentBackend",
    "HostQueryBridge",
    "HttpAgentBackend",
    "StateStoreBackend",
    "error_snapshot",
]
