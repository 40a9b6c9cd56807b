"""JSON serialisation and comparison helpers."""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .strings import coerce_text

__all__ = ["make_json_safe", "parse_json", "structurally_equal"]

_MISSING = object()


def make_json_safe(
    value: Any,
    *,
    sort_sets: bool = True,
    default: Callable[[Any], Any] | None = None,
) -> Any:
    """Return a structure compatible with :func:`json.dumps`.

    Mappings get string keys, tuples and sets become lists and anything
    else unknown is passed through *default* (``repr`` when omitted).
    """

    if default is None:
        default = repr

    def _convert(item: Any) -> Any:
        if isinstance(item, Mapping):
            return {
                key if isinstance(key, str) else coerce_text(key, fallback="?"): _convert(val)
                for key, val in item.items()
            }
        if isinstance(item, (list, tuple)):
            return [_convert(element) for element in item]
        if isinstance(item, (set, frozenset)):
            converted = [_convert(element) for element in item]
            if sort_sets:
                try:
                    converted.sort()
                except TypeError:
                    converted.sort(key=repr)
            return converted
        if isinstance(item, (str, int, float, bool)) or item is None:
            return item
        try:
            replacement = default(item)
        except Exception:
            replacement = _MISSING
        if replacement is _MISSING or replacement is item:
            return coerce_text(item, fallback=f"<unserialisable {type(item).__name__}>")
        if isinstance(replacement, (Mapping, list, tuple, set, frozenset)):
            return _convert(replacement)
        return replacement

    return _convert(value)


def parse_json(text: str) -> tuple[bool, Any]:
    """Decode *text* returning ``(ok, value)`` instead of raising."""

    try:
        return True, json.loads(text)
    except (TypeError, ValueError):
        return False, None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def structurally_equal(left: Any, right: Any) -> bool:
    """Compare two JSON-like values by structure rather than by serialisation.

    Mapping key order is irrelevant, sequences compare element by element,
    booleans never equal numbers and ``NaN`` equals ``NaN`` so a float map
    centre written twice is still recognised as unchanged.
    """

    if left is right:
        return True
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if left.keys() != right.keys():
            return False
        return all(structurally_equal(left[key], right[key]) for key in left)
    if isinstance(left, (str, bytes)) or isinstance(right, (str, bytes)):
        return type(left) is type(right) and left == right
    if isinstance(left, Sequence) and isinstance(right, Sequence):
        if len(left) != len(right):
            return False
        return all(structurally_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        if isinstance(left, float) and isinstance(right, float):
            if math.isnan(left) and math.isnan(right):
                return True
        return left == right
    return left == right
