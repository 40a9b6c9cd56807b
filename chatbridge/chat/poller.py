"""Fixed-interval polling loop bound to one agent run."""

from __future__ import annotations

from enum import Enum
import logging
from collections.abc import Callable, Mapping
from typing import Any

from ..agent.run_contract import RunIdentity
from ..log import run_context
from ..settings import DEFAULT_POLL_INTERVAL_MS
from ..telemetry import RUN_POLL, log_event
from .approval import ApprovalGate
from .scheduling import PollTimer

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ERRORED = "errored"


class AgentRunPoller:
    """Own the poll timer, the active run identity and the log cursor.

    ``send`` is a fire-and-forget callable: poll results come back later as
    snapshots handed to the orchestrator, never as return values. An
    exception raised by ``send`` counts as a transport error, which stops the
    loop in :attr:`PollerState.ERRORED` and is reported through
    ``on_transport_error``.
    """

    def __init__(
        self,
        *,
        timer: PollTimer,
        send: Callable[[Mapping[str, Any]], Any],
        approvals: ApprovalGate,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        on_transport_error: Callable[[str], None] | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._timer = timer
        self._send = send
        self._approvals = approvals
        self._interval_ms = interval_ms
        self._on_transport_error = on_transport_error
        self._state = PollerState.IDLE
        self._identity: RunIdentity | None = None
        self._active: RunIdentity | None = None
        self._cursor: str | None = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def identity(self) -> RunIdentity | None:
        """Last run identity, kept after a stop so it can be resumed."""
        return self._identity

    @property
    def active_identity(self) -> RunIdentity | None:
        return self._active

    @property
    def is_polling(self) -> bool:
        return self._active is not None

    @property
    def cursor(self) -> str | None:
        return self._cursor

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    # ------------------------------------------------------------------
    def start(self, identity: RunIdentity) -> None:
        """Poll a fresh run: cursor and approval seen-set start empty."""
        self._cursor = None
        self._approvals.reset_seen()
        self._schedule(identity, "start")

    def resume(self, identity: RunIdentity) -> None:
        """Poll *identity* again keeping the cursor and seen-set."""
        self._schedule(identity, "resume")

    def _schedule(self, identity: RunIdentity, reason: str) -> None:
        self._timer.stop()
        self._identity = identity
        self._active = identity
        self._state = PollerState.POLLING
        log_event(
            RUN_POLL,
            {
                "reason": reason,
                "agent_run_id": identity.agent_run_id,
                "agent_id": identity.agent_id,
                "cursor": self._cursor,
            },
        )
        captured = identity
        self._timer.start(self._interval_ms, lambda: self._tick(captured))

    # ------------------------------------------------------------------
    def _tick(self, captured: RunIdentity) -> None:
        if self._active is None:
            logger.debug("poll tick for %s dropped: polling stopped", captured.agent_run_id)
            self._timer.stop()
            return
        if self._active != captured:
            # a newer run owns the timer now
            logger.debug("poll tick for %s dropped: superseded", captured.agent_run_id)
            return
        payload: dict[str, Any] = {"action": "getLogs", "agentRunId": captured.agent_run_id}
        if self._cursor:
            payload["lastLogUUID"] = self._cursor
        with run_context(captured.agent_run_id):
            try:
                self._send(payload)
            except Exception as exc:
                logger.warning("poll request failed: %s", exc)
                self.stop(PollerState.ERRORED)
                if self._on_transport_error is not None:
                    self._on_transport_error(str(exc) or type(exc).__name__)

    # ------------------------------------------------------------------
    def stop(self, state: PollerState = PollerState.STOPPED) -> None:
        """Cancel the timer; the identity is retained for :meth:`resume`."""
        self._timer.stop()
        was_polling = self._active is not None
        self._active = None
        if was_polling or state is not PollerState.STOPPED:
            self._state = state

    def forget(self) -> RunIdentity | None:
        """Stop and drop the retained identity and cursor, returning the identity."""
        self.stop()
        identity, self._identity = self._identity, None
        self._cursor = None
        self._state = PollerState.IDLE
        return identity

    def record_cursor(self, value: Any) -> None:
        if isinstance(value, str) and value:
            self._cursor = value


__all__ = ["AgentRunPoller", "PollerState"]
