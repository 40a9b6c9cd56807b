"""Append-only conversation history."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
import logging

from .signals import Signal
from .turns import Turn


logger = logging.getLogger(__name__)


class ConversationHistory:
    """Ordered list of turns owned by the orchestrator.

    The list only grows, except for a full restore through
    :meth:`replace_all` and a ``pinned`` patch on one structured assistant
    turn through :meth:`patch_at`. Every mutation emits :attr:`changed` with
    the current turns.
    """

    def __init__(self, turns: Iterable[Turn] | None = None) -> None:
        self._turns: list[Turn] = []
        self.changed: Signal[tuple[Turn, ...]] = Signal()
        if turns is not None:
            self._turns.extend(self._checked(turns))

    # ------------------------------------------------------------------
    @staticmethod
    def _checked(turns: Iterable[Turn]) -> list[Turn]:
        items = list(turns)
        for item in items:
            if not isinstance(item, Turn):
                raise TypeError(f"history accepts Turn instances, got {type(item).__name__}")
        return items

    def _notify(self) -> None:
        self.changed.emit(self.turns)

    # ------------------------------------------------------------------
    @property
    def turns(self) -> tuple[Turn, ...]:
        """Return an immutable view of the history."""
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]

    # ------------------------------------------------------------------
    def append(self, turns: Turn | Sequence[Turn]) -> None:
        """Append *turns* to the end of the history."""
        items = self._checked([turns] if isinstance(turns, Turn) else turns)
        if not items:
            return
        self._turns.extend(items)
        self._notify()

    # ------------------------------------------------------------------
    def replace_all(self, turns: Iterable[Turn]) -> None:
        """Replace the whole history, used when the host restores a session."""
        self._turns = self._checked(turns)
        self._notify()

    # ------------------------------------------------------------------
    def patch_at(self, index: int, mutator: Callable[[Turn], Turn]) -> bool:
        """Update the ``pinned`` flag of the assistant turn at *index*.

        Returns ``False`` without calling *mutator* when the index is out of
        range or the turn is not structured assistant content. Only the
        ``pinned`` value of the returned turn is kept.
        """
        if not isinstance(index, int) or isinstance(index, bool):
            return False
        if index < 0 or index >= len(self._turns):
            return False
        current = self._turns[index]
        if current.role != "assistant" or not current.is_structured:
            logger.debug("patch ignored for turn %s: not structured assistant content", index)
            return False
        updated = mutator(current)
        pinned = bool(getattr(updated, "pinned", current.pinned))
        if pinned == current.pinned:
            return True
        self._turns[index] = current.with_pinned(pinned)
        self._notify()
        return True

    # ------------------------------------------------------------------
    def visible_turns(self) -> list[tuple[int, Turn]]:
        return [(index, turn) for index, turn in enumerate(self._turns) if not turn.hidden]

    def pinned_turns(self) -> list[tuple[int, Turn]]:
        return [
            (index, turn)
            for index, turn in enumerate(self._turns)
            if turn.pinned and turn.is_structured and turn.role == "assistant"
        ]

    def last_user_text(self, before: int | None = None) -> str | None:
        """Return the newest visible user text, optionally before *before*."""
        end = len(self._turns) if before is None else max(0, min(before, len(self._turns)))
        for turn in reversed(self._turns[:end]):
            if turn.role == "user" and not turn.hidden:
                text = turn.text
                if text:
                    return text
        return None

    def to_list(self) -> list[dict]:
        return [turn.to_dict() for turn in self._turns]


__all__ = ["ConversationHistory"]
