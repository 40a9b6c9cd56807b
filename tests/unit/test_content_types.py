import pytest

from chatbridge.chat.content_types import (
    BUILTIN_CONTENT_TYPES,
    ContentType,
    ContentTypeError,
    ContentTypeRegistry,
    UnknownContentTypeError,
    default_registry,
)

pytestmark = pytest.mark.unit


def _manifest(**overrides):
    manifest = {
        "name": "weather-widget",
        "version": "1.0.0",
        "displayName": "Weather",
        "component": "WeatherCard",
        "instruction": {
            "type": "weather",
            "instructions": "Use this widget to show a forecast.",
            "sourceDataModel": {"city": "string", "days": "number"},
        },
    }
    manifest.update(overrides)
    return manifest


def test_builtin_registry_order(registry: ContentTypeRegistry) -> None:
    assert registry.types() == [
        "text",
        "sample",
        "image",
        "google_map",
        "confirm",
        "selector",
        "image_grid",
    ]
    assert len(registry) == len(BUILTIN_CONTENT_TYPES)
    assert "google_map" in registry


def test_text_instruction_mentions_escaped_newlines(registry: ContentTypeRegistry) -> None:
    assert registry.get("text").instructions.endswith("YOU MUST encode all the new lines as \\n.")


def test_default_registry_is_shared() -> None:
    assert default_registry() is default_registry()


def test_register_rejects_duplicates_unless_replacing(registry: ContentTypeRegistry) -> None:
    with pytest.raises(ContentTypeError):
        registry.register(ContentType(type="image", instructions="again"))
    registry.register(ContentType(type="image", instructions="again"), replace_existing=True)
    assert registry.get("image").instructions == "again"


@pytest.mark.parametrize(
    "entry",
    [
        ContentType(type="", instructions="x"),
        ContentType(type="bad", instructions=None),  # type: ignore[arg-type]
        ContentType(type="bad", instructions="x", renderer="not callable"),  # type: ignore[arg-type]
    ],
)
def test_register_rejects_invalid_entries(registry: ContentTypeRegistry, entry) -> None:
    with pytest.raises(ContentTypeError):
        registry.register(entry)


def test_register_manifest(registry: ContentTypeRegistry) -> None:
    rendered: list[object] = []
    entry = registry.register_manifest(_manifest(), renderer=rendered.append)
    assert entry.type == "weather"
    assert entry.hint == "Weather"
    assert entry.source_data_model == {"city": "string", "days": "number"}
    assert registry.renderer_for("weather") is entry


@pytest.mark.parametrize(
    "manifest",
    [
        _manifest(version=""),
        _manifest(instruction={"type": "bad type!", "instructions": "x"}),
        _manifest(instruction={"type": "ok"}),
        {"name": "missing-fields"},
    ],
)
def test_register_manifest_rejects_invalid(registry: ContentTypeRegistry, manifest) -> None:
    with pytest.raises(ContentTypeError):
        registry.register_manifest(manifest)


def test_get_unknown_raises(registry: ContentTypeRegistry) -> None:
    with pytest.raises(UnknownContentTypeError):
        registry.get("chart")


def test_renderer_for_falls_back_to_text(registry: ContentTypeRegistry, caplog) -> None:
    with caplog.at_level("WARNING", logger="chatbridge.chat.content_types"):
        assert registry.renderer_for("chart").type == "text"
    assert "chart" in caplog.text
    registry.set_enabled("image", False)
    assert registry.renderer_for("image").type == "text"


def test_instructions_for_always_includes_text(registry: ContentTypeRegistry) -> None:
    blocks = registry.instructions_for(["google_map", "unknown"])
    assert len(blocks) == 2
    assert blocks[0].startswith('- Format type: "text":')
    assert blocks[1].startswith('- Format type: "google_map":')
    assert '"lat": "the latitude of the location (number)"' in blocks[1]


def test_instructions_for_none_selects_enabled_types(registry: ContentTypeRegistry) -> None:
    registry.set_enabled("sample", False)
    blocks = registry.instructions_for(None)
    assert len(blocks) == len(BUILTIN_CONTENT_TYPES) - 1
    assert not any('"sample"' in block for block in blocks)


def test_instructions_for_applies_options(registry: ContentTypeRegistry) -> None:
    blocks = registry.instructions_for(
        ["image"],
        {
            "image": {"addInstruction": "Prefer PNG files.", "sourceDataModel": "string (PNG URL)"},
            "text": {"instructions": "Answer briefly."},
        },
    )
    text_block, image_block = blocks
    assert "Why use this format type: Answer briefly.\n" in text_block
    assert "jpg, jpeg, png, gif, webp, svg.\nPrefer PNG files." in image_block
    assert image_block.endswith("Source data type and model: string (PNG URL)")


def test_format_instruction_layout() -> None:
    entry = ContentType(type="confirm", instructions="Show a button.", source_data_model="string")
    assert entry.format_instruction() == (
        '- Format type: "confirm":\n'
        "Why use this format type: Show a button.\n"
        "Source data type and model: string"
    )
