"""Helpers for working with Google Sheets (import side-effect free)."""

from __future__ import annotations

import importlib
from typing import Any

__all__ = [
    "afetch_range",
    "get_client",
    "get_range_values",
]

_LAZY_ATTRS = {
    "afetch_range": ("shared.sheets.async_core", "afetch_range"),
    "get_client": ("shared.sheets.core", "get_client"),
    "get_range_values": ("shared.sheets.core", "get_range_values"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_ATTRS:
        module_name, attr_name = _LAZY_ATTRS[name]
        module = importlib.import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'shared.sheets' has no attribute {name!r}")


def __dir__() -> list[str]:
    exported = {name for name in globals() if not name.startswith("_")}
    exported.update(__all__)
    return sorted(exported)
