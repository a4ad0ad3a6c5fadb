from __future__ import annotations

"""Async wrappers for Google Sheets access built on :mod:`shared.sheets.core`."""

from . import core as _core
from .async_adapter import arun


async def afetch_range(
    sheet_id: str, range_expr: str, *, timeout: float | None = None
) -> list[list[str]]:
    """Return ``range_expr`` as a grid of strings without blocking the loop."""

    return await arun(_core.get_range_values, sheet_id, range_expr, timeout=timeout)


__all__ = ["afetch_range"]
