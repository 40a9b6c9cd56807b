import threading

import pytest

from chatbridge.chat.scheduling import (
    ImmediateDispatcher,
    InlineCommandExecutor,
    QueueDispatcher,
    ThreadedCommandExecutor,
    ThreadingPollTimer,
)

pytestmark = pytest.mark.unit


def test_immediate_dispatcher_runs_synchronously() -> None:
    calls: list[int] = []
    ImmediateDispatcher().call_after(calls.append, 1)
    assert calls == [1]


def test_queue_dispatcher_drains_nested_calls() -> None:
    dispatcher = QueueDispatcher()
    calls: list[str] = []

    def outer() -> None:
        calls.append("outer")
        dispatcher.call_after(calls.append, "inner")

    dispatcher.call_after(outer)
    assert len(dispatcher) == 1
    assert dispatcher.run_pending() == 2
    assert calls == ["outer", "inner"]
    assert dispatcher.run_pending() == 0


def test_queue_dispatcher_wait_times_out() -> None:
    assert QueueDispatcher().wait(timeout=0.01) == 0


def test_queue_dispatcher_wait_receives_cross_thread_work() -> None:
    dispatcher = QueueDispatcher()
    calls: list[str] = []
    worker = threading.Thread(target=dispatcher.call_after, args=(calls.append, "from worker"))
    worker.start()
    worker.join()
    assert dispatcher.wait(timeout=1.0) == 1
    assert calls == ["from worker"]


def test_threading_poll_timer_ticks_through_dispatcher() -> None:
    dispatcher = QueueDispatcher()
    timer = ThreadingPollTimer(dispatcher)
    ticks: list[int] = []
    timer.start(5, lambda: ticks.append(1))
    try:
        assert timer.is_running
        assert dispatcher.wait(timeout=2.0) >= 1
        assert ticks
    finally:
        timer.stop()
    assert not timer.is_running


def test_threading_poll_timer_drops_ticks_after_stop() -> None:
    dispatcher = QueueDispatcher()
    timer = ThreadingPollTimer(dispatcher)
    ticks: list[str] = []
    timer.start(5, lambda: ticks.append("old"))
    assert dispatcher.wait(timeout=2.0) >= 1
    ticks.clear()
    timer.stop()
    timer.start(10_000, lambda: ticks.append("new"))
    try:
        dispatcher.run_pending()
        assert ticks == []
    finally:
        timer.stop()


def test_threading_poll_timer_rejects_bad_interval() -> None:
    with pytest.raises(ValueError):
        ThreadingPollTimer(ImmediateDispatcher()).start(0, lambda: None)


def test_inline_executor_captures_exceptions() -> None:
    executor = InlineCommandExecutor()
    assert executor.submit(lambda: 42).result() == 42
    future = executor.submit(lambda: 1 / 0)
    assert isinstance(future.exception(), ZeroDivisionError)


def test_threaded_executor_runs_on_worker_thread() -> None:
    executor = ThreadedCommandExecutor()
    try:
        name = executor.submit(lambda: threading.current_thread().name).result(timeout=2.0)
    finally:
        executor.shutdown()
    assert name.startswith("ChatBridgeBackend")


def test_wx_dispatcher_posts_with_call_after(monkeypatch) -> None:
    wx = pytest.importorskip("wx")
    from chatbridge.chat.scheduling import WxDispatcher

    posted: list[tuple] = []
    monkeypatch.setattr(wx, "CallAfter", lambda func, *args: posted.append((func, args)))
    WxDispatcher().call_after(print, "hello")
    assert posted == [(print, ("hello",))]


def test_wx_poll_timer_drives_wx_timer(monkeypatch) -> None:
    wx = pytest.importorskip("wx")
    from chatbridge.chat.scheduling import WxPollTimer

    created: list = []

    class FakeTimer:
        def __init__(self) -> None:
            self.interval: int | None = None
            self.running = False
            created.append(self)

        def Start(self, interval: int) -> None:  # noqa: N802 - wx API
            self.interval = interval
            self.running = True

        def Stop(self) -> None:  # noqa: N802 - wx API
            self.running = False

        def IsRunning(self) -> bool:  # noqa: N802 - wx API
            return self.running

    monkeypatch.setattr(wx, "Timer", FakeTimer)
    ticks: list[str] = []
    timer = WxPollTimer()

    timer.start(250, lambda: ticks.append("first"))
    assert timer.is_running
    assert created[0].interval == 250
    created[0].Notify()
    assert ticks == ["first"]

    timer.start(500, lambda: ticks.append("second"))
    assert not created[0].running
    assert created[1].interval == 500

    timer.stop()
    assert not timer.is_running
    assert not created[1].running
    with pytest.raises(ValueError):
        timer.start(0, lambda: None)
