"""String conversion helpers."""

from __future__ import annotations

from typing import Any, Iterable, Callable

__all__ = ["coerce_text"]


def coerce_text(
    value: Any,
    *,
    allow_empty: bool = False,
    fallback: str | None = None,
    converters: Iterable[Callable[[Any], str]] | None = None,
) -> str | None:
    """Return a textual representation of ``value`` resilient to bad ``__str__``.

    Each converter in ``converters`` (``str`` then ``repr`` by default) is
    tried until one yields a non-empty string, or any string at all when
    ``allow_empty`` is set. ``fallback`` is returned when every converter
    fails, otherwise ``None``.
    """

    if converters is None:
        converters = (str, repr)

    for converter in converters:
        try:
            text = converter(value)
        except Exception:
            continue
        if not isinstance(text, str):
            continue
        if text or allow_empty:
            return text

    return fallback
