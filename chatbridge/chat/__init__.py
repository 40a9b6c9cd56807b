"""Chat orchestration: history, run polling, approvals and host commands."""

from .history import ConversationHistory
from .turns import Turn

__all__ = ["ConversationHistory", "Turn"]
