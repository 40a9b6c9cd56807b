"""Minimal observable signal used across the chat components."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import suppress
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Signal(Generic[T]):
    """Simple signal implementation for orchestrator state changes."""

    __slots__ = ("_listeners",)

    def __init__(self) -> None:
        self._listeners: list[Callable[[T], Any]] = []

    def connect(self, callback: Callable[[T], Any]) -> None:
        self._listeners.append(callback)

    def disconnect(self, callback: Callable[[T], Any]) -> None:
        with suppress(ValueError):
            self._listeners.remove(callback)

    def emit(self, payload: T) -> None:
        for listener in list(self._listeners):
            listener(payload)

    def __len__(self) -> int:
        return len(self._listeners)


__all__ = ["Signal"]
