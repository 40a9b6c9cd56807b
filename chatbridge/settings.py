"""Typed application settings with Pydantic validation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
DEFAULT_INVOKE_PATH = "/agent"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_MS = 1000


class BackendSettings(BaseModel):
    """Settings for reaching the agent backend over HTTP."""

    model_config = ConfigDict(validate_assignment=True)

    base_url: str = DEFAULT_BACKEND_URL
    invoke_path: str = DEFAULT_INVOKE_PATH
    timeout_seconds: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    api_token: str | None = None

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: str | None) -> str:
        """Strip whitespace and trailing slashes from the backend URL."""
        if value is None:
            return DEFAULT_BACKEND_URL
        text = str(value).strip().rstrip("/")
        return text or DEFAULT_BACKEND_URL

    @field_validator("invoke_path", mode="before")
    @classmethod
    def _normalize_invoke_path(cls, value: str | None) -> str:
        """Ensure the invoke path starts with a slash."""
        if value is None:
            return DEFAULT_INVOKE_PATH
        text = str(value).strip()
        if not text:
            return DEFAULT_INVOKE_PATH
        return text if text.startswith("/") else f"/{text}"

    @field_validator("api_token", mode="before")
    @classmethod
    def _normalize_api_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class PollingSettings(BaseModel):
    """Settings for the run polling loop."""

    model_config = ConfigDict(validate_assignment=True)

    interval_ms: int = DEFAULT_POLL_INTERVAL_MS

    @field_validator("interval_ms", mode="before")
    @classmethod
    def _validate_interval(cls, value: int | str | None) -> int:
        """Reject non-positive intervals so the loop can never spin."""
        if value is None:
            return DEFAULT_POLL_INTERVAL_MS
        if isinstance(value, bool):
            raise ValueError("Boolean is not a valid polling interval")
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return DEFAULT_POLL_INTERVAL_MS
            value = int(raw)
        parsed = int(value)
        if parsed <= 0:
            raise ValueError("polling interval must be positive")
        return parsed


class ChatSettings(BaseModel):
    """Names of state-store bindings and content-type defaults."""

    model_config = ConfigDict(validate_assignment=True)

    command_variable: str = "submitWithPayload"
    response_variable: str = "queryResponse"
    inputs_variable: str = "agentInputs"
    history_variable: str = "history"
    last_message_variable: str = "lastMessage"
    widget_payload_variable: str = "widgetPayload"
    widget_options_variable: str = "widgetsOptions"
    submit_event: str = "submitQuery"
    widget_event: str = "widgetCallback"
    default_content_types: list[str] = Field(default_factory=list)
    content_type_options: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("default_content_types", mode="before")
    @classmethod
    def _normalize_content_types(cls, value: Any) -> list[str]:
        """Accept a comma separated string or a list and drop blanks/duplicates."""
        if value is None:
            return []
        if isinstance(value, str):
            items = value.split(",")
        else:
            items = list(value)
        result: list[str] = []
        for item in items:
            text = str(item).strip()
            if text and text not in result:
                result.append(text)
        return result


class AppSettings(BaseModel):
    """Aggregate settings for ChatBridge."""

    model_config = ConfigDict(validate_assignment=True)

    backend: BackendSettings = Field(default_factory=BackendSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)

    def to_dict(self) -> dict:
        """Return settings as a plain dictionary."""
        return self.model_dump()


def load_app_settings(path: str | Path) -> AppSettings:
    """Load :class:`AppSettings` from *path* with validation.

    Format is detected by file extension: ``.toml`` uses :mod:`tomllib`,
    everything else is treated as JSON.  Any validation errors are wrapped into
    :class:`ValueError` with a human-friendly message.
    """
    p = Path(path)
    with p.open("rb") as fh:
        data = tomllib.load(fh) if p.suffix.lower() == ".toml" else json.load(fh)
    try:
        return AppSettings.model_validate(data)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


__all__ = [
    "AppSettings",
    "BackendSettings",
    "ChatSettings",
    "DEFAULT_POLL_INTERVAL_MS",
    "PollingSettings",
    "load_app_settings",
]
