"""Conversation turn data type."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Literal
from collections.abc import Mapping

Role = Literal["user", "assistant"]
_ROLES = ("user", "assistant")


@dataclass(frozen=True, slots=True)
class Turn:
    """One message in the conversation.

    ``content`` is either plain text or a structured widget payload of the
    form ``{"type": str, "source": ..., ...}``. ``hidden`` turns are part of
    the context sent to the backend but never rendered. ``pinned`` only means
    something for structured assistant content.
    """

    role: Role
    content: str | Mapping[str, Any]
    hidden: bool = False
    pinned: bool = False

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"invalid turn role: {self.role!r}")
        if isinstance(self.content, Mapping):
            if not isinstance(self.content.get("type"), str):
                raise ValueError("structured content requires a string 'type'")
        elif not isinstance(self.content, str):
            raise TypeError("turn content must be a string or a mapping")

    # ------------------------------------------------------------------
    @property
    def is_structured(self) -> bool:
        return isinstance(self.content, Mapping)

    @property
    def content_type(self) -> str:
        """Return the widget type, ``"text"`` for plain strings."""
        if isinstance(self.content, Mapping):
            return str(self.content["type"])
        return "text"

    @property
    def text(self) -> str | None:
        """Return the plain text of the turn when it has one."""
        if isinstance(self.content, str):
            return self.content
        source = self.content.get("source")
        return source if isinstance(source, str) else None

    def with_pinned(self, pinned: bool) -> "Turn":
        return replace(self, pinned=bool(pinned))

    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        content: Any = self.content
        if isinstance(content, Mapping):
            content = dict(content)
        payload: dict[str, Any] = {"role": self.role, "content": content}
        if self.hidden:
            payload["hidden"] = True
        if self.pinned:
            payload["pinned"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Turn":
        if not isinstance(payload, Mapping):
            raise ValueError("turn payload must be a mapping")
        role = payload.get("role")
        if role not in _ROLES:
            raise ValueError(f"invalid turn role: {role!r}")
        content = payload.get("content")
        if isinstance(content, Mapping):
            content = dict(content)
        elif content is None:
            content = ""
        return cls(
            role=role,
            content=content,
            hidden=bool(payload.get("hidden", False)),
            pinned=bool(payload.get("pinned", False)),
        )

    @classmethod
    def user(cls, text: str, *, hidden: bool = False) -> "Turn":
        return cls(role="user", content=text, hidden=hidden)

    @classmethod
    def assistant(cls, content: str | Mapping[str, Any], *, hidden: bool = False) -> "Turn":
        return cls(role="assistant", content=content, hidden=hidden)


__all__ = ["Role", "Turn"]
