"""Spreadsheet to forum-thread reconciliation for guild recruitment listings."""

from __future__ import annotations

__all__ = [
    "columns",
    "cycle",
    "freshness",
    "gateway",
    "images",
    "outcomes",
    "phases",
    "render",
    "settings",
    "similarity",
]
