"""One-shot initialisation guard."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

__all__ = ["LazyInitializer"]


class LazyInitializer(Generic[T]):
    """Run *factory* once and cache its result.

    ``ensure_initialized`` may be called from any thread and any number of
    times; the factory runs at most once unless it raises, in which case the
    next call retries.
    """

    __slots__ = ("_factory", "_lock", "_value", "_done")

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._value: T | None = None
        self._done = False

    @property
    def initialized(self) -> bool:
        return self._done

    def ensure_initialized(self) -> T:
        if self._done:
            return self._value  # type: ignore[return-value]
        with self._lock:
            if not self._done:
                self._value = self._factory()
                self._done = True
        return self._value  # type: ignore[return-value]

    def reset(self) -> None:
        """Forget the cached value so the factory runs again."""
        with self._lock:
            self._value = None
            self._done = False
