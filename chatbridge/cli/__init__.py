"""Command-line interface package for ChatBridge.

:func:`main` is resolved lazily so importing ``chatbridge.cli.main`` directly
does not get shadowed by the function of the same name.
"""

from importlib import import_module
from typing import Any


def __getattr__(name: str) -> Any:
    if name == "main":
        return import_module(".main", __name__).main
    raise AttributeError(f"module {__name__!r} has no attribute {name}")


__all__ = ["main"]
