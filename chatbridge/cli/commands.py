"""Command implementations for the CLI interface."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Mapping, TextIO

from chatbridge.backend.client import HostQueryBridge, StateStoreBackend
from chatbridge.chat.approval import PendingApproval
from chatbridge.chat.content_types import default_registry
from chatbridge.chat.normalizer import MessageNormalizer
from chatbridge.chat.orchestrator import AgentRunOrchestrator
from chatbridge.chat.scheduling import QueueDispatcher, ThreadedCommandExecutor, ThreadingPollTimer
from chatbridge.chat.turns import Turn
from chatbridge.log import get_log_directory
from chatbridge.settings import AppSettings
from chatbridge.state_store import InMemoryStateStore

logger = logging.getLogger(__name__)

_IDLE_WAIT_SECONDS = 0.1


@dataclass
class Command:
    """Describe a CLI command and its argument handler."""

    func: Callable[[argparse.Namespace], None]
    help: str
    add_arguments: Callable[[argparse.ArgumentParser], None]


def render_turn(turn: Turn) -> str:
    """Return console text for an assistant turn."""
    content = turn.content
    if isinstance(content, str):
        return content
    source = content.get("source")
    if content.get("type") == "text" and isinstance(source, str):
        return source
    return f"[{content.get('type')}] {json.dumps(dict(content), ensure_ascii=False)}"


class ChatConsole:
    """Line-oriented chat session driving an :class:`AgentRunOrchestrator`.

    Orchestrator callbacks run on the console thread: the loop drains the
    dispatcher while a run is in flight.
    """

    def __init__(
        self,
        orchestrator: AgentRunOrchestrator,
        dispatcher: QueueDispatcher,
        *,
        read: Callable[[str], str] = input,
        out: TextIO | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher
        self._read = read
        self._out = out or sys.stdout
        self._printed = len(orchestrator.history)
        orchestrator.history.changed.connect(self._on_history)
        orchestrator.error_changed.connect(self._on_error)

    # ------------------------------------------------------------------
    def _write(self, text: str) -> None:
        self._out.write(text + "\n")
        self._out.flush()

    def _on_history(self, turns: tuple[Turn, ...]) -> None:
        if len(turns) < self._printed:
            self._printed = 0
        for turn in turns[self._printed:]:
            if turn.role == "assistant" and not turn.hidden:
                self._write(render_turn(turn))
        self._printed = len(turns)

    def _on_error(self, message: str | None) -> None:
        if message:
            self._write(f"error: {message} (type /retry to resume)")

    def _ask_approval(self, pending: PendingApproval) -> None:
        self._write(pending.message)
        answer = self._read("Approve? [y/N] ").strip().lower()
        if answer in {"y", "yes"}:
            self._orchestrator.approve()
        else:
            self._orchestrator.reject()

    # ------------------------------------------------------------------
    def wait_until_idle(self) -> None:
        orchestrator = self._orchestrator
        while orchestrator.is_loading:
            pending = orchestrator.pending_approval
            if pending is not None:
                self._ask_approval(pending)
                continue
            self._dispatcher.wait(timeout=_IDLE_WAIT_SECONDS)

    def handle_line(self, line: str) -> bool:
        """Process one input line; return ``False`` to end the session."""
        text = line.strip()
        if not text:
            return True
        if text in {"/quit", "/exit"}:
            return False
        if text == "/stop":
            self._orchestrator.stop()
            return True
        if text == "/retry":
            self._orchestrator.retry()
        else:
            self._orchestrator.submit(text)
        try:
            self.wait_until_idle()
        except KeyboardInterrupt:
            self._orchestrator.stop()
            self._write("stopped")
        return True

    def run(self) -> None:
        while True:
            try:
                line = self._read("> ")
            except EOFError:
                break
            if not self.handle_line(line):
                break


def build_console_session(
    settings: AppSettings,
    *,
    read: Callable[[str], str] = input,
    out: TextIO | None = None,
) -> tuple[ChatConsole, AgentRunOrchestrator, HostQueryBridge]:
    """Wire an orchestrator to an HTTP backend through an in-memory store."""
    store = InMemoryStateStore()
    dispatcher = QueueDispatcher()
    executor = ThreadedCommandExecutor()
    bridge = HostQueryBridge(
        store,
        settings.backend,
        dispatcher=dispatcher,
        chat_settings=settings.chat,
        executor=executor,
    )
    orchestrator = AgentRunOrchestrator(
        store=store,
        backend=StateStoreBackend(store, settings.chat),
        timer=ThreadingPollTimer(dispatcher),
        dispatcher=dispatcher,
        settings=settings,
    )
    bridge.attach()
    orchestrator.attach()
    console = ChatConsole(orchestrator, dispatcher, read=read, out=out)
    return console, orchestrator, bridge


def cmd_chat(args: argparse.Namespace) -> None:
    """Run an interactive chat session against the configured backend."""
    settings: AppSettings = args.app_settings
    if args.url:
        settings.backend.base_url = args.url
    if args.content_types:
        settings.chat.default_content_types = args.content_types
    logger.info("chatting with %s, logs in %s", settings.backend.base_url, get_log_directory())
    console, orchestrator, bridge = build_console_session(settings)
    try:
        console.run()
    finally:
        orchestrator.detach()
        bridge.detach()


def add_chat_arguments(p: argparse.ArgumentParser) -> None:
    """Configure parser for the ``chat`` command."""
    p.add_argument("--url", help="agent backend base URL")
    p.add_argument(
        "--content-type",
        dest="content_types",
        action="append",
        default=[],
        help="content type enabled for every turn (repeatable)",
    )


def cmd_instructions(args: argparse.Namespace) -> None:
    """Print the response-format instruction turn for the given content types."""
    settings: AppSettings = args.app_settings
    registry = default_registry()
    if args.list:
        for tag in registry.types():
            entry = registry.get(tag)
            state = "" if entry.enabled else " (disabled)"
            sys.stdout.write(f"{tag}: {entry.hint or tag}{state}\n")
        return
    options: Mapping[str, Any] = settings.chat.content_type_options
    if args.options:
        with open(args.options, "r", encoding="utf-8") as fh:
            options = json.load(fh)
    types = args.types or settings.chat.default_content_types
    turn = MessageNormalizer(registry).build_instruction_turn(types, options)
    sys.stdout.write(f"{turn.content}\n")


def add_instructions_arguments(p: argparse.ArgumentParser) -> None:
    """Configure parser for the ``instructions`` command."""
    p.add_argument("types", nargs="*", help="content types to include besides text")
    p.add_argument("--options", help="JSON file with per-type instruction overrides")
    p.add_argument("--list", action="store_true", help="list registered content types")


COMMANDS: dict[str, Command] = {
    "chat": Command(cmd_chat, "chat with the agent backend", add_chat_arguments),
    "instructions": Command(
        cmd_instructions, "print the response format instructions", add_instructions_arguments
    ),
}
