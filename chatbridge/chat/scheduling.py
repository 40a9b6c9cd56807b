"""Timers, dispatchers and executors used by the orchestrator.

Orchestrator state is only touched on one thread. Background timers and
worker threads hand their results back through a :class:`Dispatcher`.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
import queue
import threading
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    """Run callables on the orchestrator thread."""

    def call_after(self, func: Callable[..., Any], *args: Any) -> None:  # pragma: no cover - protocol
        """Queue ``func(*args)`` for execution on the next turn."""


class PollTimer(Protocol):
    """Repeating timer owned by the poller."""

    @property
    def is_running(self) -> bool:  # pragma: no cover - protocol
        ...

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None:  # pragma: no cover - protocol
        """Invoke ``callback`` every ``interval_ms`` until stopped."""

    def stop(self) -> None:  # pragma: no cover - protocol
        """Cancel the timer; pending ticks must not fire afterwards."""


class CommandExecutor(Protocol):
    """Run blocking backend calls away from the orchestrator thread."""

    def submit(self, func: Callable[[], Any]) -> Future[Any]:  # pragma: no cover - protocol
        """Schedule ``func`` for execution and return a future with its result."""


# ----------------------------------------------------------------------
class ImmediateDispatcher:
    """Dispatcher that runs callables synchronously."""

    def call_after(self, func: Callable[..., Any], *args: Any) -> None:
        func(*args)


class QueueDispatcher:
    """Thread-safe queue drained by a console loop."""

    def __init__(self) -> None:
        self._queue: queue.Queue[tuple[Callable[..., Any], tuple[Any, ...]]] = queue.Queue()

    def call_after(self, func: Callable[..., Any], *args: Any) -> None:
        self._queue.put((func, args))

    def __len__(self) -> int:
        return self._queue.qsize()

    def run_pending(self) -> int:
        """Run every queued callable, including ones queued while draining."""
        count = 0
        while True:
            try:
                func, args = self._queue.get_nowait()
            except queue.Empty:
                return count
            func(*args)
            count += 1

    def wait(self, timeout: float | None = None) -> int:
        """Block until one callable is queued, then drain the queue."""
        try:
            func, args = self._queue.get(timeout=timeout)
        except queue.Empty:
            return 0
        func(*args)
        return 1 + self.run_pending()


class WxDispatcher:
    """Dispatcher posting callables to the wx main loop."""

    def call_after(self, func: Callable[..., Any], *args: Any) -> None:
        import wx  # type: ignore

        wx.CallAfter(func, *args)


# ----------------------------------------------------------------------
class ThreadingPollTimer:
    """Repeating timer running on a daemon thread.

    Ticks are posted through *dispatcher*. Each start bumps a generation
    counter so ticks queued by a stopped timer are dropped on arrival.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher
        self._lock = threading.Lock()
        self._generation = 0
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._callback: Callable[[], None] | None = None

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.stop()
        with self._lock:
            self._generation += 1
            generation = self._generation
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._callback = callback
        interval = interval_ms / 1000.0

        def _run() -> None:
            while not stop_event.wait(interval):
                self._dispatcher.call_after(self._fire, generation)

        thread = threading.Thread(target=_run, name="ChatBridgePollTimer", daemon=True)
        self._thread = thread
        thread.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self.is_running:
                return
            callback = self._callback
        if callback is not None:
            callback()

    def stop(self) -> None:
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
            self._stop_event = None
            self._callback = None
            self._generation += 1
        self._thread = None


class WxPollTimer:
    """Repeating timer backed by ``wx.Timer``; ticks run on the wx main loop."""

    def __init__(self) -> None:
        self._timer: Any | None = None

    @property
    def is_running(self) -> bool:
        return self._timer is not None and bool(self._timer.IsRunning())

    def start(self, interval_ms: int, callback: Callable[[], None]) -> None:
        import wx  # type: ignore

        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.stop()

        class _Timer(wx.Timer):
            def Notify(self) -> None:  # noqa: N802 - wx API
                callback()

        timer = _Timer()
        timer.Start(interval_ms)
        self._timer = timer

    def stop(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.Stop()


# ----------------------------------------------------------------------
class ThreadedCommandExecutor:
    """Executor backed by a shared :class:`ThreadPoolExecutor`."""

    def __init__(self, pool: ThreadPoolExecutor | None = None) -> None:
        if pool is None:
            pool = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="ChatBridgeBackend",
            )
        self._pool = pool

    @property
    def pool(self) -> ThreadPoolExecutor:
        return self._pool

    def submit(self, func: Callable[[], Any]) -> Future[Any]:
        return self._pool.submit(func)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


class InlineCommandExecutor:
    """Executor that runs work on the calling thread."""

    def submit(self, func: Callable[[], Any]) -> Future[Any]:
        future: Future[Any] = Future()
        try:
            future.set_result(func())
        except Exception as exc:
            future.set_exception(exc)
        return future


__all__ = [
    "CommandExecutor",
    "Dispatcher",
    "ImmediateDispatcher",
    "InlineCommandExecutor",
    "PollTimer",
    "QueueDispatcher",
    "ThreadedCommandExecutor",
    "ThreadingPollTimer",
    "WxDispatcher",
    "WxPollTimer",
]
