"""Host state store: named variables plus a fire-event primitive."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]
EventHandler = Callable[[], None]


class StateStore(Protocol):
    """Binding surface the host application exposes to the chat."""

    def get(self, name: str, default: Any = None) -> Any:  # pragma: no cover - protocol
        ...

    def set(self, name: str, value: Any) -> None:  # pragma: no cover - protocol
        ...

    def fire(self, event: str) -> None:  # pragma: no cover - protocol
        ...

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:  # pragma: no cover - protocol
        ...

    def on_event(self, event: str, handler: EventHandler) -> Callable[[], None]:  # pragma: no cover - protocol
        ...


class InMemoryStateStore:
    """Dictionary backed :class:`StateStore`.

    Values are deep-copied on the way in and out so callers can never alias
    the stored object. Every :meth:`set` notifies subscribers of that name,
    even when the value did not change; deduplication is left to consumers.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._lock = threading.RLock()
        self._values: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._listeners: dict[str, list[Listener]] = {}
        self._handlers: dict[str, list[EventHandler]] = {}
        self._fired: list[str] = []

    # ------------------------------------------------------------------
    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            if name not in self._values:
                return default
            return copy.deepcopy(self._values[name])

    def set(self, name: str, value: Any) -> None:
        with self._lock:
            self._values[name] = copy.deepcopy(value)
            listeners = list(self._listeners.get(name, ()))
        for listener in listeners:
            listener(copy.deepcopy(value))

    def fire(self, event: str) -> None:
        with self._lock:
            self._fired.append(event)
            handlers = list(self._handlers.get(event, ()))
        if not handlers:
            logger.debug("event %s fired with no handlers", event)
        for handler in handlers:
            handler()

    # ------------------------------------------------------------------
    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(name, []).append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                items = self._listeners.get(name, [])
                if listener in items:
                    items.remove(listener)

        return _unsubscribe

    def on_event(self, event: str, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

        def _remove() -> None:
            with self._lock:
                items = self._handlers.get(event, [])
                if handler in items:
                    items.remove(handler)

        return _remove

    # ------------------------------------------------------------------
    @property
    def fired_events(self) -> list[str]:
        with self._lock:
            return list(self._fired)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._values)


__all__ = ["EventHandler", "InMemoryStateStore", "Listener", "StateStore"]
