"""Route renderer callbacks to history patches, resubmits or the host."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from ..settings import ChatSettings
from ..state_store import StateStore
from ..telemetry import WIDGET_CALLBACK, log_event
from .history import ConversationHistory
from .scheduling import Dispatcher

logger = logging.getLogger(__name__)

PIN = "widget:pin"
UNPIN = "widget:unpin"
TRY_AGAIN = "widget:try_again"


class ResubmitTarget(Protocol):
    def submit(
        self, text: str, *, append: bool = True, context_until: int | None = None
    ) -> None:  # pragma: no cover - protocol
        ...


class WidgetCallbackRouter:
    """Handle ``widgetCallback`` payloads coming back from renderers.

    Pin and unpin requests patch the history and are never forwarded. A
    ``widget:try_again`` request resubmits the nearest visible user text
    before the widget. Everything else is stored in the widget payload
    variable and announced to the host with the widget event.
    """

    def __init__(
        self,
        *,
        history: ConversationHistory,
        store: StateStore,
        target: ResubmitTarget,
        dispatcher: Dispatcher,
        settings: ChatSettings | None = None,
    ) -> None:
        self._history = history
        self._store = store
        self._target = target
        self._dispatcher = dispatcher
        self._settings = settings or ChatSettings()

    # ------------------------------------------------------------------
    def handle(self, payload: Any) -> bool:
        """Process *payload*; return ``True`` when it was forwarded to the host."""
        safe: dict[str, Any] = dict(payload) if isinstance(payload, Mapping) else {}
        kind = safe.get("type")
        index = safe.get("messageIndex")
        if isinstance(index, bool) or not isinstance(index, int):
            index = None

        if kind in (PIN, UNPIN):
            self._toggle_pin(index, kind == PIN)
            return False

        if kind == TRY_AGAIN and index is not None:
            if self._try_again(index):
                return False

        self._store.set(self._settings.widget_payload_variable, safe)
        if safe.get("updateHistory"):
            logger.debug("widget history update stored without forwarding")
            return False

        log_event(WIDGET_CALLBACK, {"type": kind, "keys": sorted(safe)})
        self._dispatcher.call_after(self._store.fire, self._settings.widget_event)

        prompt = safe.get("prompt")
        if safe.get("selfSubmit") and isinstance(prompt, str) and prompt:
            self._store.set(
                self._settings.command_variable,
                {"action": "submit", "messages": [{"role": "user", "content": prompt}]},
            )
        return True

    # ------------------------------------------------------------------
    def _toggle_pin(self, index: int | None, pinned: bool) -> None:
        if index is None:
            logger.warning("pin request without a message index")
            return
        if not self._history.patch_at(index, lambda turn: turn.with_pinned(pinned)):
            logger.warning("cannot %s message %s", "pin" if pinned else "unpin", index)

    def _try_again(self, index: int) -> bool:
        if index < 0 or index >= len(self._history):
            logger.warning("cannot try again: invalid message index %s", index)
            return False
        text = self._history.last_user_text(before=index)
        if not text:
            logger.warning("cannot try again: no user message before %s", index)
            return False
        self._target.submit(text, append=False, context_until=index)
        return True


__all__ = ["PIN", "TRY_AGAIN", "UNPIN", "WidgetCallbackRouter"]
