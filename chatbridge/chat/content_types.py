"""Registry of assistant content types (widgets) and their format instructions."""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from jsonschema import validate as _validate
from jsonschema.exceptions import ValidationError

from ..util.lazy import LazyInitializer

logger = logging.getLogger(__name__)

TEXT_TYPE = "text"

Renderer = Callable[[Mapping[str, Any]], Any]


class ContentTypeError(ValueError):
    """Raised when a content type definition is invalid."""


class UnknownContentTypeError(ContentTypeError):
    """Raised when a content type tag is not registered."""


MANIFEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["name", "version", "displayName", "component", "instruction"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string", "minLength": 1},
        "displayName": {"type": "string", "minLength": 1},
        "component": {"type": "string", "minLength": 1},
        "instruction": {
            "type": "object",
            "required": ["type", "instructions"],
            "properties": {
                "type": {"type": "string", "minLength": 1, "pattern": r"^[A-Za-z0-9_\-]+$"},
                "instructions": {"type": "string"},
                "sourceDataModel": {"type": ["string", "object", "array"]},
            },
        },
        "enabled": {"type": "boolean"},
    },
}


@dataclass(frozen=True, slots=True)
class ContentType:
    """One renderable assistant content type."""

    type: str
    instructions: str
    source_data_model: Any = "string"
    hint: str | None = None
    renderer: Renderer | None = None
    enabled: bool = True

    def with_options(self, options: Mapping[str, Any] | None) -> "ContentType":
        """Return a copy with host supplied instruction overrides applied.

        ``instructions`` replaces the text, ``addInstruction`` is appended on
        a new line and ``sourceDataModel`` replaces the data shape.
        """
        if not options:
            return self
        instructions = self.instructions
        override = options.get("instructions")
        if isinstance(override, str) and override:
            instructions = override
        extra = options.get("addInstruction")
        if isinstance(extra, str) and extra:
            instructions = f"{instructions}\n{extra}"
        model = self.source_data_model
        if options.get("sourceDataModel") is not None:
            model = options["sourceDataModel"]
        return replace(self, instructions=instructions, source_data_model=model)

    def format_instruction(self) -> str:
        if isinstance(self.source_data_model, str):
            model_text = self.source_data_model
        else:
            model_text = json.dumps(self.source_data_model, indent=2, ensure_ascii=False)
        return (
            f'- Format type: "{self.type}":\n'
            f"Why use this format type: {self.instructions}\n"
            f"Source data type and model: {model_text}"
        )


class ContentTypeRegistry:
    """Map content type tags to their definitions."""

    def __init__(self, types: Iterable[ContentType] = ()) -> None:
        self._types: dict[str, ContentType] = {}
        for content_type in types:
            self.register(content_type)

    # ------------------------------------------------------------------
    def register(self, content_type: ContentType, *, replace_existing: bool = False) -> ContentType:
        if not isinstance(content_type, ContentType):
            raise ContentTypeError("content type must be a ContentType instance")
        tag = content_type.type
        if not isinstance(tag, str) or not tag.strip():
            raise ContentTypeError("content type tag must be a non-empty string")
        if not isinstance(content_type.instructions, str):
            raise ContentTypeError(f"instructions for {tag!r} must be a string")
        if content_type.renderer is not None and not callable(content_type.renderer):
            raise ContentTypeError(f"renderer for {tag!r} must be callable")
        if tag in self._types and not replace_existing:
            raise ContentTypeError(f"content type {tag!r} is already registered")
        self._types[tag] = content_type
        logger.debug("registered content type %s", tag)
        return content_type

    def register_manifest(
        self,
        manifest: Mapping[str, Any],
        *,
        renderer: Renderer | None = None,
    ) -> ContentType:
        """Validate a plugin manifest and register the content type it declares."""
        try:
            _validate(dict(manifest), MANIFEST_SCHEMA)
        except ValidationError as exc:
            raise ContentTypeError(f"invalid content type manifest: {exc.message}") from exc
        instruction = manifest["instruction"]
        content_type = ContentType(
            type=instruction["type"],
            instructions=instruction["instructions"],
            source_data_model=instruction.get("sourceDataModel", "string"),
            hint=manifest["displayName"],
            renderer=renderer,
            enabled=bool(manifest.get("enabled", True)),
        )
        return self.register(content_type)

    # ------------------------------------------------------------------
    def __contains__(self, tag: object) -> bool:
        return tag in self._types

    def __len__(self) -> int:
        return len(self._types)

    def types(self) -> list[str]:
        return list(self._types)

    def enabled_types(self) -> list[str]:
        return [tag for tag, entry in self._types.items() if entry.enabled]

    def get(self, tag: str) -> ContentType:
        try:
            return self._types[tag]
        except KeyError:
            raise UnknownContentTypeError(f"unknown content type: {tag!r}") from None

    def set_enabled(self, tag: str, enabled: bool) -> None:
        self._types[tag] = replace(self.get(tag), enabled=bool(enabled))

    def renderer_for(self, tag: str) -> ContentType:
        """Return the entry that should render *tag*.

        Unknown or disabled tags fall back to the ``text`` entry.
        """
        entry = self._types.get(tag)
        if entry is not None and entry.enabled:
            return entry
        logger.warning("content type %r unavailable, rendering as text", tag)
        return self.get(TEXT_TYPE)

    # ------------------------------------------------------------------
    def instructions_for(
        self,
        types: Iterable[str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Return formatted instruction blocks in registration order.

        ``None`` selects every enabled type. Otherwise ``text`` is always
        added to *types*; unknown tags are skipped.
        """
        if types is None:
            wanted = set(self.enabled_types())
        else:
            wanted = {TEXT_TYPE, *types}
        options = options or {}
        blocks: list[str] = []
        for tag, entry in self._types.items():
            if tag not in wanted or not entry.enabled:
                continue
            per_type = options.get(tag)
            if not isinstance(per_type, Mapping):
                per_type = None
            blocks.append(entry.with_options(per_type).format_instruction())
        return blocks


BUILTIN_CONTENT_TYPES: tuple[ContentType, ...] = (
    ContentType(
        type=TEXT_TYPE,
        instructions=(
            "Use this format when the answer is text or markdown that needs to be "
            "displayed as is. The source property value can be text or markdown "
            "syntax including headers (#), bold (**text**), italic (*text*), lists "
            "(- item), code blocks, and links ([text](url)). YOU MUST encode all "
            "the new lines as \\n."
        ),
        source_data_model="string",
        hint="Text",
    ),
    ContentType(
        type="sample",
        instructions=(
            "Use this format when the user says that they are a developer. The "
            "source value has to be expressed as css compatible color string."
        ),
        source_data_model="string",
        hint="Sample",
    ),
    ContentType(
        type="image",
        instructions=(
            "Use this format when the answer is a single image. The source value "
            "should be a valid URL pointing to an image file. Supported formats: "
            "jpg, jpeg, png, gif, webp, svg."
        ),
        source_data_model="string (image URL)",
        hint="Image",
    ),
    ContentType(
        type="google_map",
        instructions=(
            "Use this widget when the user asks to show a map of a specific "
            "location. Provide coordinates as an object with lat and lon properties."
        ),
        source_data_model={
            "lat": "the latitude of the location (number)",
            "lon": "the longitude of the location (number)",
            "zoom": "the optional zoom level of the map (number, default: 15)",
        },
        hint="GoogleMap",
    ),
    ContentType(
        type="confirm",
        instructions=(
            "Use this format to show a confirmation button. The source value should "
            'be the button text to display. Optional properties: variant ("primary" '
            '| "secondary" | "danger", default "primary"), size ("small" | "medium" '
            '| "large", default "medium"), disabled (boolean, default false).'
        ),
        source_data_model="string (button text)",
        hint="Confirm",
    ),
    ContentType(
        type="selector",
        instructions=(
            "Use this widget when the user is asked to select an option from a "
            "given predefined list. If prompt is provided, call the call."
        ),
        source_data_model={
            "placeholder": "string",
            "options": [{"value": "string", "label": "string", "prompt": "string"}],
        },
        hint="Selector",
    ),
    ContentType(
        type="image_grid",
        instructions="Use this format when the user ask to show a list of images.",
        source_data_model={
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "imageUrl": {
                        "type": "string",
                        "description": "URL of the image to display",
                    },
                    "caption": {
                        "type": "string",
                        "description": "Optional caption text to display over the image",
                    },
                },
                "required": ["imageUrl"],
            },
        },
        hint="ImageGrid",
    ),
)


def _build_default_registry() -> ContentTypeRegistry:
    return ContentTypeRegistry(BUILTIN_CONTENT_TYPES)


_DEFAULT_REGISTRY: LazyInitializer[ContentTypeRegistry] = LazyInitializer(
    _build_default_registry
)


def default_registry() -> ContentTypeRegistry:
    """Return the process-wide registry holding the built-in content types."""
    return _DEFAULT_REGISTRY.ensure_initialized()


__all__ = [
    "BUILTIN_CONTENT_TYPES",
    "ContentType",
    "ContentTypeError",
    "ContentTypeRegistry",
    "MANIFEST_SCHEMA",
    "TEXT_TYPE",
    "UnknownContentTypeError",
    "default_registry",
]
