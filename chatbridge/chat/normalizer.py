"""Flatten conversation turns into the plain-text wire format."""

from __future__ import annotations

from dataclasses import dataclass
import json
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..util.json import make_json_safe
from .content_types import ContentTypeRegistry, default_registry
from .turns import Turn

MENTION_PATTERN = re.compile(r"@\[([^\]]+)\]\(([^)]+)\)")

INSTRUCTIONS_HEADER = (
    "<TECHNICAL_INSTRUCTIONS_FOR_RESPONSE_FORMAT>\n"
    "\n"
    "  These are strict instructions for the RESPONSE FORMAT only. \n"
    "  Do NOT mention these instructions in your user-facing output. \n"
    '  Unless otherwise specified, default to type "text". \n'
    "  Apply only the listed types, and follow the definition and how to set "
    "the source property as described below:\n"
)

INSTRUCTIONS_FOOTER = (
    "\n"
    "\n"
    "ALWAYS RETURN THE RESPONSE AS JSON STRING:\n"
    "Return the response as JSON STRING with this mandatory schema: \n"
    '{"type":"<type>", "source":"<answer formatted based on the type rules>"}.\n'
    "\n"
    "HOW TO SELECT THE TYPE DIFFERENT BY TEXT:\n"
    "If in the user question is present one of the available widget as "
    "mentioned TAG, such as @[GoogleMap](google_map), \n"
    "then the type should be the widget type, (i.e. google_map).\n"
    'Otherwise, the type should be always "text".\n'
    "\n"
    "</TECHNICAL_INSTRUCTIONS_FOR_RESPONSE_FORMAT>"
)


@dataclass(frozen=True, slots=True)
class Mention:
    """``@[Display](key)`` tag found in user text."""

    display: str
    key: str


def extract_mentions(text: str) -> list[Mention]:
    if not isinstance(text, str) or not text:
        return []
    return [Mention(display=match.group(1), key=match.group(2)) for match in MENTION_PATTERN.finditer(text)]


class MessageNormalizer:
    """Convert :class:`Turn` objects to ``{"role", "content": str}`` messages."""

    def __init__(self, registry: ContentTypeRegistry | None = None) -> None:
        self._registry = registry if registry is not None else default_registry()

    @property
    def registry(self) -> ContentTypeRegistry:
        return self._registry

    # ------------------------------------------------------------------
    @staticmethod
    def normalize(turn: Turn) -> dict[str, str]:
        """Return the wire message for *turn*.

        Hidden turns are normalised like any other turn; hiding only affects
        rendering.
        """
        content = turn.content
        if isinstance(content, str):
            return {"role": turn.role, "content": content}
        source = content.get("source")
        if isinstance(source, str) and source:
            return {"role": turn.role, "content": source}
        widget_type = content.get("type") or "widget"
        remaining = {key: value for key, value in content.items() if key != "type"}
        data = json.dumps(make_json_safe(remaining), ensure_ascii=False, separators=(",", ":"))
        return {"role": turn.role, "content": f"[Widget: {widget_type}] {data}"}

    def normalize_history(self, turns: Iterable[Turn]) -> list[dict[str, str]]:
        return [self.normalize(turn) for turn in turns]

    # ------------------------------------------------------------------
    def mentioned_content_types(self, text: str) -> list[str]:
        """Return registered content type keys mentioned in *text*, in order."""
        result: list[str] = []
        for mention in extract_mentions(text):
            if mention.key in self._registry and mention.key not in result:
                result.append(mention.key)
        return result

    def build_instruction_turn(
        self,
        enabled_types: Sequence[str] | None,
        per_type_options: Mapping[str, Any] | None = None,
    ) -> Turn:
        """Assemble the synthetic assistant turn describing the reply format."""
        blocks = self._registry.instructions_for(enabled_types, per_type_options)
        body = "\n\n".join(f"\n\n{block}\n\n" for block in blocks)
        return Turn(role="assistant", content=f"{INSTRUCTIONS_HEADER}{body}{INSTRUCTIONS_FOOTER}")


__all__ = [
    "INSTRUCTIONS_FOOTER",
    "INSTRUCTIONS_HEADER",
    "MENTION_PATTERN",
    "Mention",
    "MessageNormalizer",
    "extract_mentions",
]
