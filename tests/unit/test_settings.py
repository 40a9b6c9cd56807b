import json

import pytest
from pydantic import ValidationError

from chatbridge.settings import (
    AppSettings,
    BackendSettings,
    ChatSettings,
    DEFAULT_POLL_INTERVAL_MS,
    PollingSettings,
    load_app_settings,
)

pytestmark = pytest.mark.unit


def test_defaults_match_state_store_bindings() -> None:
    settings = AppSettings()
    assert settings.polling.interval_ms == DEFAULT_POLL_INTERVAL_MS == 1000
    chat = settings.chat
    assert chat.command_variable == "submitWithPayload"
    assert chat.response_variable == "queryResponse"
    assert chat.inputs_variable == "agentInputs"
    assert chat.submit_event == "submitQuery"
    assert chat.widget_event == "widgetCallback"
    assert chat.default_content_types == []


def test_backend_settings_normalize_values() -> None:
    backend = BackendSettings(base_url=" http://agent.local:9000/ ", invoke_path="run", api_token="  ")
    assert backend.base_url == "http://agent.local:9000"
    assert backend.invoke_path == "/run"
    assert backend.api_token is None


def test_backend_settings_reject_non_positive_timeout() -> None:
    with pytest.raises(ValidationError):
        BackendSettings(timeout_seconds=0)


@pytest.mark.parametrize("value", [0, -5, True, "abc"])
def test_polling_interval_rejects_invalid_values(value) -> None:
    with pytest.raises(ValidationError):
        PollingSettings(interval_ms=value)


@pytest.mark.parametrize(("value", "expected"), [(None, 1000), ("", 1000), (" 250 ", 250), (40, 40)])
def test_polling_interval_accepts_values(value, expected) -> None:
    assert PollingSettings(interval_ms=value).interval_ms == expected


def test_polling_interval_validated_on_assignment() -> None:
    settings = PollingSettings()
    with pytest.raises(ValidationError):
        settings.interval_ms = 0


def test_default_content_types_accepts_comma_string() -> None:
    chat = ChatSettings(default_content_types="image, google_map,,image")
    assert chat.default_content_types == ["image", "google_map"]


def test_load_app_settings_from_json(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "backend": {"base_url": "http://example.test/"},
                "polling": {"interval_ms": 500},
                "chat": {"content_type_options": {"image": {"addInstruction": "Prefer PNG."}}},
            }
        ),
        encoding="utf-8",
    )
    settings = load_app_settings(path)
    assert settings.backend.base_url == "http://example.test"
    assert settings.polling.interval_ms == 500
    assert settings.chat.content_type_options["image"]["addInstruction"] == "Prefer PNG."


def test_load_app_settings_from_toml(tmp_path) -> None:
    path = tmp_path / "settings.toml"
    path.write_text(
        '[backend]\nbase_url = "http://toml.test"\n\n[chat]\ndefault_content_types = "image"\n',
        encoding="utf-8",
    )
    settings = load_app_settings(path)
    assert settings.backend.base_url == "http://toml.test"
    assert settings.chat.default_content_types == ["image"]


def test_load_app_settings_wraps_validation_errors(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"polling": {"interval_ms": -1}}), encoding="utf-8")
    with pytest.raises(ValueError, match="interval"):
        load_app_settings(path)


def test_to_dict_round_trips() -> None:
    settings = AppSettings(polling=PollingSettings(interval_ms=200))
    assert AppSettings.model_validate(settings.to_dict()) == settings
