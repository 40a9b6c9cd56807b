"""ChatBridge: client-side orchestrator for chats with asynchronous agent runs."""

__version__ = "0.1.0"

__all__ = ["__version__"]
