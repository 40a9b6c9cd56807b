"""One-shot command channel written by the host application."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from jsonschema import validate as _validate
from jsonschema.exceptions import ValidationError

from ..state_store import StateStore
from ..telemetry import COMMAND, log_event
from ..util.json import structurally_equal
from .scheduling import Dispatcher
from .turns import Turn

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_VARIABLE = "submitWithPayload"


class CommandError(ValueError):
    """Raised when a command value does not match the command schema."""


class CommandAction(str, Enum):
    SUBMIT = "submit"
    STOP = "stop"
    INJECT = "inject"
    RESTORE = "restore"


COMMAND_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["action"],
    "properties": {
        "action": {"type": "string"},
        "messages": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["role", "content"],
                "properties": {
                    "role": {"enum": ["user", "assistant"]},
                    "content": {
                        "anyOf": [
                            {"type": "string"},
                            {
                                "type": "object",
                                "required": ["type"],
                                "properties": {"type": {"type": "string"}},
                            },
                        ]
                    },
                    "hidden": {"type": "boolean"},
                    "pinned": {"type": "boolean"},
                },
            },
        },
        "autoSubmit": {"type": "boolean"},
    },
}


@dataclass(frozen=True, slots=True)
class Command:
    action: str
    messages: tuple[Turn, ...] = ()
    auto_submit: bool = False

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Command":
        try:
            _validate(dict(payload), COMMAND_SCHEMA)
        except ValidationError as exc:
            raise CommandError(exc.message) from exc
        messages = tuple(Turn.from_dict(item) for item in payload.get("messages") or ())
        return cls(
            action=payload["action"],
            messages=messages,
            auto_submit=payload.get("autoSubmit") is True,
        )


class CommandTarget(Protocol):
    """Operations the command channel drives on the orchestrator."""

    @property
    def is_loading(self) -> bool:  # pragma: no cover - protocol
        ...

    def submit(self, text: str, *, append: bool = True) -> None:  # pragma: no cover - protocol
        ...

    def stop(self) -> None:  # pragma: no cover - protocol
        ...

    def append_turns(self, turns: Sequence[Turn]) -> None:  # pragma: no cover - protocol
        ...

    def replace_history(self, turns: Sequence[Turn]) -> None:  # pragma: no cover - protocol
        ...


def _last_user_text(turns: Sequence[Turn]) -> str | None:
    for turn in reversed(turns):
        if turn.role == "user":
            return turn.text
    return None


class CommandQueueListener:
    """Observe the command variable and apply each new command once.

    The last observed value is recorded before the command runs, so writes
    made by the command itself never re-trigger it. After a command runs the
    variable is cleared to ``{}`` on the next dispatcher turn.
    """

    def __init__(
        self,
        store: StateStore,
        target: CommandTarget,
        *,
        dispatcher: Dispatcher,
        variable: str = DEFAULT_COMMAND_VARIABLE,
    ) -> None:
        self._store = store
        self._target = target
        self._dispatcher = dispatcher
        self._variable = variable
        self._last: Any = {}
        self._unsubscribe: Callable[[], None] | None = None
        self._handlers: dict[str, Callable[[Command], None]] = {
            CommandAction.SUBMIT.value: self._handle_submit,
            CommandAction.STOP.value: self._handle_stop,
            CommandAction.INJECT.value: self._handle_inject,
            CommandAction.RESTORE.value: self._handle_restore,
        }

    # ------------------------------------------------------------------
    @property
    def variable(self) -> str:
        return self._variable

    @property
    def last_observed(self) -> Any:
        return copy.deepcopy(self._last)

    def attach(self) -> None:
        """Subscribe to the store and process the value already present."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._store.subscribe(self._variable, self.observe)
        self.observe(self._store.get(self._variable))

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    def observe(self, value: Any) -> bool:
        """Handle one observation; return ``True`` when a command ran."""
        current = value if value else {}
        if structurally_equal(current, self._last):
            return False
        self._last = copy.deepcopy(current)
        if not current:
            return False
        if not isinstance(current, Mapping):
            logger.warning("ignoring non-object command value: %r", current)
            self._schedule_clear()
            return False
        try:
            command = Command.from_dict(current)
        except (CommandError, TypeError, ValueError) as exc:
            logger.warning("ignoring malformed command: %s", exc)
            self._schedule_clear()
            return False
        handler = self._handlers.get(command.action)
        if handler is None:
            logger.warning("ignoring unknown command action %r", command.action)
            self._schedule_clear()
            return False
        log_event(
            COMMAND,
            {
                "action": command.action,
                "messages": len(command.messages),
                "auto_submit": command.auto_submit,
            },
        )
        handler(command)
        self._schedule_clear()
        return True

    def _schedule_clear(self) -> None:
        self._dispatcher.call_after(self._store.set, self._variable, {})

    # ------------------------------------------------------------------
    def _handle_submit(self, command: Command) -> None:
        if not command.messages:
            logger.warning("submit command without messages ignored")
            return
        self._target.append_turns(command.messages)
        text = _last_user_text(command.messages)
        if text:
            self._target.submit(text, append=False)

    def _handle_stop(self, command: Command) -> None:
        self._target.stop()

    def _handle_inject(self, command: Command) -> None:
        if not command.messages:
            logger.warning("inject command without messages ignored")
            return
        hidden = [
            Turn(role=turn.role, content=turn.content, hidden=True, pinned=turn.pinned)
            for turn in command.messages
        ]
        self._target.append_turns(hidden)

    def _handle_restore(self, command: Command) -> None:
        self._target.replace_history(command.messages)
        if not command.auto_submit:
            return
        text = _last_user_text(command.messages)
        if not text:
            return
        if self._target.is_loading:
            logger.info("restore auto-submit skipped: a run is already in flight")
            return
        self._target.submit(text, append=False)


__all__ = [
    "COMMAND_SCHEMA",
    "Command",
    "CommandAction",
    "CommandError",
    "CommandQueueListener",
    "CommandTarget",
    "DEFAULT_COMMAND_VARIABLE",
]
