"""Compose history, polling, approvals and the command channel into one chat."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from ..agent.run_contract import RunIdentity, RunSnapshot
from ..log import run_context
from ..settings import AppSettings
from ..state_store import StateStore
from ..telemetry import RUN_APPROVAL, RUN_INVOKE, RUN_SNAPSHOT, RUN_STATE, log_event
from ..util.json import structurally_equal
from .approval import ApprovalDecision, ApprovalError, ApprovalGate, PendingApproval
from .commands import CommandQueueListener
from .content_types import ContentTypeRegistry
from .history import ConversationHistory
from .interpreter import (
    Action,
    ApprovalRequested,
    Completed,
    DirectReply,
    Fatal,
    Ignore,
    InterpreterState,
    ResumePolling,
    StartPolling,
    interpret,
)
from .normalizer import MessageNormalizer
from .poller import AgentRunPoller, PollerState
from .scheduling import Dispatcher, PollTimer
from .signals import Signal
from .turns import Turn
from .widget_callbacks import WidgetCallbackRouter

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..backend.client import AgentBackend

logger = logging.getLogger(__name__)


class AgentRunOrchestrator:
    """Own one chat conversation and the agent run behind it.

    All methods must be called on the orchestrator thread; timers and
    transports post their work through the *dispatcher*.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        backend: AgentBackend,
        timer: PollTimer,
        dispatcher: Dispatcher,
        registry: ContentTypeRegistry | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._store = store
        self._backend = backend
        self._dispatcher = dispatcher
        chat = self._settings.chat

        self.history = ConversationHistory()
        self.normalizer = MessageNormalizer(registry)
        self.approvals = ApprovalGate()
        self.poller = AgentRunPoller(
            timer=timer,
            send=backend.send,
            approvals=self.approvals,
            interval_ms=self._settings.polling.interval_ms,
            on_transport_error=self._on_transport_error,
        )
        self.commands = CommandQueueListener(
            store, self, dispatcher=dispatcher, variable=chat.command_variable
        )
        self.widgets = WidgetCallbackRouter(
            history=self.history,
            store=store,
            target=self,
            dispatcher=dispatcher,
            settings=chat,
        )

        self.loading_changed: Signal[bool] = Signal()
        self.error_changed: Signal[str | None] = Signal()
        self.approval_requested: Signal[PendingApproval] = Signal()
        self.approval_cleared: Signal[PendingApproval] = Signal()

        self._error: str | None = None
        self._invokes_in_flight = 0
        self._stale_invokes = 0
        self._awaiting_resume = False
        self._retired_run_ids: set[str] = set()
        self._last_invoke: dict[str, Any] | None = None
        self._last_direct_reply: Any = None
        self._loading = False
        self._detachers: list[Callable[[], None]] = []

        self.history.changed.connect(self._mirror_history)

    # ------------------------------------------------------------------
    def attach(self) -> None:
        """Start listening to snapshots and commands in the state store."""
        if self._detachers:
            return
        chat = self._settings.chat
        self._detachers.append(self._store.subscribe(chat.response_variable, self.handle_snapshot))
        self.commands.attach()
        self._detachers.append(self.commands.detach)

    def detach(self) -> None:
        """Stop listening and cancel polling."""
        for detach in reversed(self._detachers):
            detach()
        self._detachers.clear()
        self.poller.stop()
        self._update_loading()

    # ------------------------------------------------------------------
    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def pending_approval(self) -> PendingApproval | None:
        return self.approvals.pending

    @property
    def approval_message(self) -> str | None:
        pending = self.approvals.pending
        return pending.message if pending is not None else None

    @property
    def awaiting_invoke(self) -> bool:
        return self._invokes_in_flight > self._stale_invokes

    @property
    def is_loading(self) -> bool:
        return (
            self.poller.is_polling
            or self.awaiting_invoke
            or self.approvals.pending is not None
            or self._awaiting_resume
        )

    @property
    def retired_run_ids(self) -> frozenset[str]:
        return frozenset(self._retired_run_ids)

    # ------------------------------------------------------------------
    def _set_error(self, message: str | None) -> None:
        if message == self._error:
            return
        self._error = message
        self.error_changed.emit(message)

    def _update_loading(self) -> None:
        loading = self.is_loading
        if loading == self._loading:
            return
        self._loading = loading
        log_event(RUN_STATE, {"loading": loading, "poller": self.poller.state.value})
        self.loading_changed.emit(loading)

    def _mirror_history(self, turns: tuple[Turn, ...]) -> None:
        self._store.set(
            self._settings.chat.history_variable,
            [turn.to_dict() for turn in turns],
        )

    def _clear_pending_approval(self) -> None:
        pending = self.approvals.clear()
        if pending is not None:
            self.approval_cleared.emit(pending)

    def _content_type_options(self) -> dict[str, Any]:
        options: dict[str, Any] = copy.deepcopy(self._settings.chat.content_type_options)
        host_options = self._store.get(self._settings.chat.widget_options_variable)
        if isinstance(host_options, Mapping):
            for key, value in host_options.items():
                if isinstance(value, Mapping):
                    options[key] = {**options.get(key, {}), **value}
        return options

    def _send(self, payload: Mapping[str, Any]) -> bool:
        try:
            self._backend.send(payload)
        except Exception as exc:
            logger.warning("backend request %s failed: %s", payload.get("action"), exc)
            self._on_transport_error(str(exc) or type(exc).__name__)
            return False
        return True

    def _on_transport_error(self, message: str) -> None:
        if self.poller.is_polling:
            self.poller.stop(PollerState.ERRORED)
        self._awaiting_resume = False
        self._set_error(message)
        self._update_loading()

    # ------------------------------------------------------------------
    def submit(
        self,
        text: str,
        *,
        append: bool = True,
        context_until: int | None = None,
    ) -> bool:
        """Send *text* to the agent as a new run.

        Any run in progress is superseded: its run id is retired so late
        snapshots for it are ignored. With ``append=False`` the user turn is
        assumed to be in the history already. ``context_until`` limits the
        history sent as context to the turns before that index.
        """
        if not isinstance(text, str) or not text.strip():
            return False
        chat = self._settings.chat
        self._store.set(chat.last_message_variable, text)

        previous = self.poller.forget()
        if previous is not None:
            self._retired_run_ids.add(previous.agent_run_id)
        self._stale_invokes = self._invokes_in_flight
        self._clear_pending_approval()
        self.approvals.reset_seen()
        self._awaiting_resume = False
        self._last_direct_reply = None
        self._set_error(None)

        if append:
            self.history.append(Turn.user(text))

        turns = self.history.turns
        context = turns if context_until is None else turns[: max(0, context_until)]
        messages = self.normalizer.normalize_history(context)
        last = context[-1] if context else None
        if last is None or last.role != "user" or last.content != text:
            messages.append({"role": "user", "content": text})

        enabled = list(chat.default_content_types)
        for tag in self.normalizer.mentioned_content_types(text):
            if tag not in enabled:
                enabled.append(tag)
        instruction = self.normalizer.build_instruction_turn(enabled, self._content_type_options())
        messages.append(self.normalizer.normalize(instruction))

        payload = {"action": "invoke", "messages": messages}
        self._last_invoke = payload
        self._invokes_in_flight += 1
        log_event(
            RUN_INVOKE,
            {
                "messages": len(messages),
                "content_types": enabled,
                "superseded": previous.agent_run_id if previous else None,
            },
        )
        self._update_loading()
        if not self._send(payload):
            self._invokes_in_flight -= 1
            self._update_loading()
            return False
        return True

    def stop(self) -> None:
        """Stop the current run; the identity is kept for :meth:`retry`."""
        self.poller.stop()
        self._stale_invokes = self._invokes_in_flight
        self._awaiting_resume = False
        self._clear_pending_approval()
        self._update_loading()

    def retry(self) -> bool:
        """Recover from an error by resuming the last run or re-sending the invoke."""
        identity = self.poller.identity
        if identity is not None:
            self._set_error(None)
            self._awaiting_resume = False
            self.poller.resume(identity)
            self._update_loading()
            return True
        if self._last_invoke is not None and not self.is_loading:
            self._set_error(None)
            self._invokes_in_flight += 1
            self._update_loading()
            if not self._send(self._last_invoke):
                self._invokes_in_flight -= 1
                self._update_loading()
                return False
            return True
        logger.info("nothing to retry")
        return False

    def dismiss_error(self) -> None:
        self._set_error(None)

    def approve(self) -> dict[str, Any]:
        return self._decide(ApprovalDecision.APPROVE)

    def reject(self) -> dict[str, Any]:
        return self._decide(ApprovalDecision.REJECT)

    def _decide(self, decision: ApprovalDecision) -> dict[str, Any]:
        pending = self.approvals.pending
        if pending is None:
            raise ApprovalError("no approval is pending")
        identity = self.poller.identity
        if identity is None:
            raise ApprovalError("no agent run to send the decision to")
        payload = self.approvals.decide(decision, identity)
        self.approval_cleared.emit(pending)
        self._awaiting_resume = True
        log_event(
            RUN_APPROVAL,
            {
                "decision": decision.value,
                "tool_execution_id": pending.tool_execution_id,
                "agent_run_id": identity.agent_run_id,
            },
        )
        self._send(payload)
        self._update_loading()
        return payload

    # ------------------------------------------------------------------
    def append_turns(self, turns: Sequence[Turn]) -> None:
        self.history.append(list(turns))

    def replace_history(self, turns: Sequence[Turn]) -> None:
        self.history.replace_all(turns)

    def handle_widget_callback(self, payload: Any) -> bool:
        return self.widgets.handle(payload)

    # ------------------------------------------------------------------
    def _interpreter_state(self) -> InterpreterState:
        return InterpreterState(
            is_polling=self.poller.is_polling,
            identity=self.poller.identity,
            invoke_outstanding=self._invokes_in_flight > 0,
            awaiting_resume=self._awaiting_resume,
            seen_approvals=self.approvals.seen,
            retired_run_ids=frozenset(self._retired_run_ids),
        )

    def _consume_invoke_reply(self) -> bool:
        """Account for one invoke reply; ``False`` when it answers a superseded invoke."""
        if self._invokes_in_flight <= 0:
            return True
        self._invokes_in_flight -= 1
        if self._stale_invokes > 0:
            self._stale_invokes -= 1
            return False
        return True

    def handle_snapshot(self, raw: Any) -> Action:
        """Interpret one backend snapshot and apply the resulting action."""
        if not isinstance(raw, Mapping) or not raw:
            return Ignore("empty")
        snapshot = RunSnapshot.from_dict(raw)
        identity = self.poller.identity
        run_id = snapshot.agent_run_id or (identity.agent_run_id if identity else None)
        with run_context(run_id):
            return self._handle_snapshot(snapshot)

    def _handle_snapshot(self, snapshot: RunSnapshot) -> Action:
        action = interpret(snapshot, self._interpreter_state())
        log_event(
            RUN_SNAPSHOT,
            {
                "status": snapshot.status_text,
                "agent_run_id": snapshot.agent_run_id,
                "action": type(action).__name__,
            },
        )
        if isinstance(action, Ignore) and action.reason == "stale":
            logger.debug("stale snapshot for run %s ignored", snapshot.agent_run_id)
            return action
        action = self._apply(action)
        # snapshots ignored outside polling are late and must not move the cursor back
        if not isinstance(action, Ignore) or self.poller.is_polling:
            self.poller.record_cursor(snapshot.last_log_uuid)
        self._update_loading()
        return action

    def _apply(self, action: Action) -> Action:
        if isinstance(action, StartPolling):
            if not self._consume_invoke_reply():
                self._retired_run_ids.add(action.identity.agent_run_id)
                return Ignore("superseded")
            self._clear_pending_approval()
            self.poller.start(action.identity)
        elif isinstance(action, ResumePolling):
            self._awaiting_resume = False
            self.poller.resume(action.identity)
        elif isinstance(action, ApprovalRequested):
            if self.approvals.request(action.descriptor, action.message):
                self.poller.stop(PollerState.PAUSED)
                pending = self.approvals.pending
                assert pending is not None
                log_event(
                    RUN_APPROVAL,
                    {
                        "requested": action.descriptor.tool_execution_id,
                        "tool": action.descriptor.tool_name,
                    },
                )
                self.approval_requested.emit(pending)
            else:
                return Ignore("approval pending")
        elif isinstance(action, Completed):
            self.poller.stop(PollerState.COMPLETED)
            self._set_error(None)
            if action.content is not None:
                self.history.append(Turn.assistant(action.content))
        elif isinstance(action, DirectReply):
            if not self._consume_invoke_reply():
                return Ignore("superseded")
            if structurally_equal(action.content, self._last_direct_reply):
                return Ignore("duplicate")
            self._last_direct_reply = copy.deepcopy(action.content)
            if self.poller.is_polling:
                self.poller.stop(PollerState.COMPLETED)
            self._set_error(None)
            self.history.append(Turn.assistant(action.content))
        elif isinstance(action, Fatal):
            if not self._consume_invoke_reply():
                return Ignore("superseded")
            self.poller.stop(PollerState.ERRORED)
            self._awaiting_resume = False
            self._set_error(action.message)
        return action


__all__ = ["AgentRunOrchestrator"]
