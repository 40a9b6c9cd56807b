"""Logging setup for ChatBridge.

Records emitted while an agent run is being handled carry the run id
(``agent_run_id``). The id is bound with :func:`run_context` and copied onto
records by :class:`RunContextFilter`, which every configured handler uses.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
import json
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import threading
from pathlib import Path
from typing import Any

from .util.time import utc_now_iso

LOG_DIR_ENV = "CHATBRIDGE_LOG_DIR"
_TEXT_LOG_NAME = "chatbridge.log"
_JSON_LOG_NAME = "chatbridge.jsonl"
_ROTATION_BACKUPS = 5
_TEXT_LOG_MAX_BYTES = 5 * 1024 * 1024
_JSON_LOG_MAX_BYTES = 5 * 1024 * 1024
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s%(run_tag)s: %(message)s"

logger = logging.getLogger("chatbridge")

_log_dir: Path | None = None
_current_run: ContextVar[str | None] = ContextVar("chatbridge_run", default=None)


@contextmanager
def run_context(agent_run_id: str | None) -> Iterator[None]:
    """Tag records logged inside the block with *agent_run_id*."""
    token = _current_run.set(agent_run_id or None)
    try:
        yield
    finally:
        _current_run.reset(token)


def current_run_id() -> str | None:
    return _current_run.get()


class RunContextFilter(logging.Filter):
    """Copy the bound run id onto each record; never drops records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "agent_run_id"):
            record.agent_run_id = _current_run.get()
        run_id = record.agent_run_id
        record.run_tag = f" [run {run_id}]" if run_id else ""
        return True


class ConsoleFormatter(logging.Formatter):
    """Short console lines; telemetry events get their payload appended."""

    def __init__(self) -> None:
        super().__init__("%(levelname)s%(run_tag)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "run_tag"):
            record.run_tag = ""
        base = super().format(record)
        payload = _event_payload(record)
        if payload is None:
            return base
        return f"{base} {json.dumps(payload, ensure_ascii=False, default=str)}"


def _event_payload(record: logging.LogRecord) -> Any | None:
    """Return the payload of a bare telemetry event record."""
    extra_json = getattr(record, "json", None)
    if not isinstance(extra_json, dict):
        return None
    event_name = extra_json.get("event")
    if not (isinstance(record.msg, str) and isinstance(event_name, str)):
        return None
    if record.msg.strip() != event_name.strip():
        return None
    return extra_json.get("payload")


class JsonFormatter(logging.Formatter):
    """One JSON object per record; telemetry ``json`` extras are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: Any = getattr(record, "json", None)
        if isinstance(payload, dict):
            data: dict[str, Any] = dict(payload)
        elif payload is None:
            data = {"logger": record.name}
        else:
            data = {"data": payload}
        data.setdefault("message", record.message)
        data.setdefault("level", record.levelname)
        data.setdefault("timestamp", utc_now_iso())
        run_id = getattr(record, "agent_run_id", None)
        if run_id:
            data.setdefault("agent_run_id", run_id)
        if record.exc_info and "exc_info" not in data:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


class JsonlHandler(RotatingFileHandler):
    """Rotating file handler writing :class:`JsonFormatter` lines."""

    def __init__(
        self,
        filename: Path | str,
        *,
        max_bytes: int | None = None,
        backup_count: int = _ROTATION_BACKUPS,
    ) -> None:
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            path,
            maxBytes=_JSON_LOG_MAX_BYTES if max_bytes is None else max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        self.setFormatter(JsonFormatter())


def _resolve_log_dir(log_dir: str | Path | None) -> Path:
    if log_dir is None:
        env_dir = os.environ.get(LOG_DIR_ENV)
        log_dir = env_dir if env_dir else Path.home() / ".chatbridge" / "logs"
    path = Path(log_dir).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path.resolve()


def _add_file_handler(handler: RotatingFileHandler, existing_size: int) -> None:
    """Attach *handler*, rolling over first when the old file is already full."""
    if 0 < handler.maxBytes <= existing_size:
        handler.doRollover()
    handler.setLevel(logging.DEBUG)
    handler.addFilter(RunContextFilter())
    logger.addHandler(handler)


def _file_size(path: Path) -> int:
    return path.stat().st_size if path.exists() else 0


def configure_logging(level: int = logging.INFO, *, log_dir: str | Path | None = None) -> None:
    """Install console, text and JSONL handlers on the ``chatbridge`` logger once.

    *log_dir* wins over ``CHATBRIDGE_LOG_DIR``, which wins over
    ``~/.chatbridge/logs``.
    """
    global _log_dir

    if logger.handlers:
        if _log_dir is None:
            _log_dir = _resolve_log_dir(log_dir)
        return

    directory = _log_dir = _resolve_log_dir(log_dir)

    if sys.stderr is not None:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(ConsoleFormatter())
        console.addFilter(RunContextFilter())
        logger.addHandler(console)

    text_path = directory / _TEXT_LOG_NAME
    text_size = _file_size(text_path)
    text_handler = RotatingFileHandler(
        text_path,
        encoding="utf-8",
        maxBytes=_TEXT_LOG_MAX_BYTES,
        backupCount=_ROTATION_BACKUPS,
    )
    text_handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    _add_file_handler(text_handler, text_size)

    json_path = directory / _JSON_LOG_NAME
    _add_file_handler(JsonlHandler(json_path), _file_size(json_path))

    logger.setLevel(logging.DEBUG)


def install_exception_hooks() -> None:
    """Route uncaught exceptions from the main and worker threads to the logger."""

    def _excepthook(exc_type, exc_value, exc_traceback):
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        logger.critical(
            "Uncaught exception in thread %s",
            getattr(args.thread, "name", None),
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook


def get_log_directory() -> Path:
    """Return the directory log files go to, configuring logging if needed."""
    if _log_dir is None:
        configure_logging()
    assert _log_dir is not None
    return _log_dir


__all__ = [
    "ConsoleFormatter",
    "JsonFormatter",
    "JsonlHandler",
    "LOG_DIR_ENV",
    "RunContextFilter",
    "configure_logging",
    "current_run_id",
    "get_log_directory",
    "install_exception_hooks",
    "logger",
    "run_context",
]
