"""Transports carrying orchestrator requests to the agent backend."""
from __future__ import annotations

from concurrent.futures import Future
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import httpx

from ..settings import BackendSettings, ChatSettings
from ..state_store import StateStore
from ..telemetry import BACKEND_REQUEST, BACKEND_RESPONSE, log_debug_payload, log_event
from ..chat.scheduling import CommandExecutor, Dispatcher, ThreadedCommandExecutor

logger = logging.getLogger(__name__)

SnapshotSink = Callable[[Mapping[str, Any]], None]


class AgentBackend(Protocol):
    """Fire-and-forget request channel; replies arrive later as snapshots."""

    def send(self, payload: Mapping[str, Any]) -> None:  # pragma: no cover - protocol
        ...


def error_snapshot(message: str, **details: Any) -> dict[str, Any]:
    """Return an ``ERROR`` snapshot describing a transport failure."""
    error: dict[str, Any] = {"message": message}
    if details:
        error["payload"] = details
    return {"status": "ERROR", "error": error}


class StateStoreBackend:
    """Hand requests to the host by writing ``agentInputs`` and firing ``submitQuery``."""

    def __init__(self, store: StateStore, settings: ChatSettings | None = None) -> None:
        self._store = store
        self._settings = settings or ChatSettings()

    def send(self, payload: Mapping[str, Any]) -> None:
        log_event(BACKEND_REQUEST, {"transport": "state_store", "action": payload.get("action")})
        self._store.set(self._settings.inputs_variable, dict(payload))
        self._store.fire(self._settings.submit_event)


class HttpAgentBackend:
    """Post requests to the agent backend with :mod:`httpx`.

    The blocking call runs on *executor*; the decoded reply, or an ``ERROR``
    snapshot for transport failures and non-2xx replies, is handed to
    *deliver* through *dispatcher*.
    """

    def __init__(
        self,
        settings: BackendSettings,
        *,
        deliver: SnapshotSink,
        dispatcher: Dispatcher,
        executor: CommandExecutor | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._deliver = deliver
        self._dispatcher = dispatcher
        self._executor = executor or ThreadedCommandExecutor()
        self._transport = transport

    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.settings.api_token:
            headers["Authorization"] = f"Bearer {self.settings.api_token}"
        return headers

    def _request_sync(self, json_body: Mapping[str, Any]) -> httpx.Response:
        """POST *json_body* to the invoke endpoint and return the response."""
        with httpx.Client(
            base_url=self.settings.base_url,
            timeout=httpx.Timeout(self.settings.timeout_seconds),
            transport=self._transport,
        ) as client:
            return client.post(
                self.settings.invoke_path,
                json=dict(json_body),
                headers=self._headers(),
            )

    # ------------------------------------------------------------------
    def request(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Perform one blocking request and return the snapshot it produced."""
        action = payload.get("action")
        start = time.monotonic()
        log_event(BACKEND_REQUEST, {"transport": "http", "action": action})
        log_debug_payload("BACKEND_REQUEST_BODY", {"headers": self._headers(), "body": payload})
        try:
            response = self._request_sync(payload)
        except httpx.HTTPError as exc:
            message = str(exc) or type(exc).__name__
            log_event(
                BACKEND_RESPONSE,
                {"action": action, "error": message},
                start_time=start,
                level=logging.WARNING,
            )
            return error_snapshot(message)
        body = response.text
        log_debug_payload(
            "BACKEND_RESPONSE_BODY",
            {"status": response.status_code, "body": body},
        )
        if not response.is_success:
            log_event(
                BACKEND_RESPONSE,
                {"action": action, "status": response.status_code},
                start_time=start,
                level=logging.WARNING,
            )
            return error_snapshot(
                f"Backend returned HTTP {response.status_code}",
                status=response.status_code,
            )
        try:
            data = json.loads(body or "{}")
        except ValueError:
            log_event(
                BACKEND_RESPONSE,
                {"action": action, "status": response.status_code, "error": "invalid JSON"},
                start_time=start,
                level=logging.WARNING,
            )
            return error_snapshot("Backend returned invalid JSON")
        if not isinstance(data, Mapping):
            return error_snapshot("Backend returned a non-object reply")
        log_event(
            BACKEND_RESPONSE,
            {"action": action, "status": response.status_code, "run_status": data.get("status")},
            start_time=start,
        )
        return dict(data)

    def send(self, payload: Mapping[str, Any]) -> None:
        body = dict(payload)
        future = self._executor.submit(lambda: self.request(body))
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future[Any]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("backend request crashed", exc_info=exc)
            snapshot = error_snapshot(str(exc) or type(exc).__name__)
        else:
            snapshot = future.result()
        self._dispatcher.call_after(self._deliver, snapshot)


class HostQueryBridge:
    """Run the host query for ``submitQuery`` events with an HTTP backend.

    Used when no host application sits behind the state store: the bridge
    reads ``agentInputs``, posts it and writes the reply to ``queryResponse``.
    """

    def __init__(
        self,
        store: StateStore,
        backend_settings: BackendSettings,
        *,
        dispatcher: Dispatcher,
        chat_settings: ChatSettings | None = None,
        executor: CommandExecutor | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._store = store
        self._chat = chat_settings or ChatSettings()
        self._http = HttpAgentBackend(
            backend_settings,
            deliver=self._write_response,
            dispatcher=dispatcher,
            executor=executor,
            transport=transport,
        )
        self._remove: Callable[[], None] | None = None

    @property
    def http(self) -> HttpAgentBackend:
        return self._http

    def attach(self) -> None:
        if self._remove is None:
            self._remove = self._store.on_event(self._chat.submit_event, self._on_submit)

    def detach(self) -> None:
        if self._remove is not None:
            self._remove()
            self._remove = None

    def _on_submit(self) -> None:
        payload = self._store.get(self._chat.inputs_variable)
        if not isinstance(payload, Mapping) or not payload:
            logger.warning("submit event without agent inputs ignored")
            return
        self._http.send(payload)

    def _write_response(self, snapshot: Mapping[str, Any]) -> None:
        self._store.set(self._chat.response_variable, dict(snapshot))


__all__ = [
    "AgentBackend",
    "HostQueryBridge",
    "HttpAgentBackend",
    "SnapshotSink",
    "StateStoreBackend",
    "error_snapshot",
]
