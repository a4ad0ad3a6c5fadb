"""Google Sheets adapter core used by the recruitment sync."""

from __future__ import annotations

import json
import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import gspread
from gspread import Spreadsheet
from gspread.exceptions import APIError

try:  # pragma: no cover - requests is an optional runtime dependency of gspread
    from requests import exceptions as requests_exceptions
except ImportError:  # pragma: no cover
    requests_exceptions = None


log = logging.getLogger("c1c.sheets.core")

GSpreadClient = gspread.Client


@dataclass
class SpreadsheetCacheEntry:
    spreadsheet: Spreadsheet
    expires_at: float


_CLIENT_LOCK = threading.Lock()
_CLIENT: Optional[GSpreadClient] = None
_SPREADSHEET_CACHE: Dict[str, SpreadsheetCacheEntry] = {}

_RETRY_STATUS = {408, 425, 429, 500, 502, 503, 504}

T = TypeVar("T")


def clear_cached_client() -> None:
    """Drop the cached gspread client (mainly for tests)."""

    global _CLIENT
    with _CLIENT_LOCK:
        _CLIENT = None


def clear_cached_spreadsheets(spreadsheet_id: Optional[str] = None) -> None:
    """Forget cached spreadsheet handles.

    Only the handle is cached; cell values are always read fresh.
    """

    if spreadsheet_id is None:
        _SPREADSHEET_CACHE.clear()
        return
    _SPREADSHEET_CACHE.pop(spreadsheet_id, None)


def _load_credentials() -> Mapping[str, Any]:
    raw = os.getenv("GSPREAD_CREDENTIALS")
    if not raw:
        raise RuntimeError("GSPREAD_CREDENTIALS environment variable is required")
    try:
        creds = json.loads(raw)
    except json.JSONDecodeError as exc:  # pragma: no cover - configuration error path
        raise RuntimeError("GSPREAD_CREDENTIALS must be valid JSON") from exc
    if not isinstance(creds, Mapping):  # pragma: no cover - configuration error path
        raise RuntimeError("GSPREAD_CREDENTIALS JSON must represent an object")
    return creds


def get_client() -> GSpreadClient:
    """Return a cached gspread client authenticated via service-account JSON."""

    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    with _CLIENT_LOCK:
        if _CLIENT is None:
            credentials = _load_credentials()
            log.debug("Authorising gspread client with service-account credentials")
            _CLIENT = gspread.service_account_from_dict(credentials)
    return _CLIENT


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, APIError):
        resp = getattr(exc, "response", None)
        status = getattr(resp, "status_code", None)
        if status in _RETRY_STATUS:
            return True
        text = str(getattr(resp, "text", "") or "")
        detail = str(getattr(exc, "args", [""])[0] or "")
        blob = f"{text} {detail}".lower()
        if "rate limit" in blob or "quota" in blob or "timeout" in blob:
            return True
    if requests_exceptions is not None and isinstance(exc, requests_exceptions.RequestException):
        return True
    return False


def with_backoff(func: Callable[[], T], *, retries: int = 5, base_delay: float = 0.5, max_delay: float = 8.0) -> T:
    """Execute *func* with exponential backoff on transient failures."""

    attempt = 0
    delay = base_delay
    while True:
        try:
            return func()
        except Exception as exc:
            attempt += 1
            if attempt > retries or not _should_retry(exc):
                raise
            sleep_for = min(max_delay, delay) + random.uniform(0.0, base_delay)
            log.warning("Sheets call failed (attempt %s/%s): %s", attempt, retries, exc)
            time.sleep(sleep_for)
            delay *= 2


def open_spreadsheet(
    spreadsheet_id: str,
    *,
    ttl: float = 300.0,
    force: bool = False,
) -> Spreadsheet:
    """Return a cached spreadsheet handle, reopening after *ttl* seconds."""

    now = time.monotonic()
    if not force and ttl > 0:
        cached = _SPREADSHEET_CACHE.get(spreadsheet_id)
        if cached and cached.expires_at > now:
            return cached.spreadsheet

    spreadsheet = with_backoff(lambda: get_client().open_by_key(spreadsheet_id))
    if ttl > 0:
        _SPREADSHEET_CACHE[spreadsheet_id] = SpreadsheetCacheEntry(
            spreadsheet=spreadsheet, expires_at=now + ttl
        )
    return spreadsheet


def _stringify(cell: Any) -> str:
    if cell is None:
        return ""
    return str(cell)


def get_range_values(spreadsheet_id: str, range_expr: str) -> List[List[str]]:
    """Return the cells of ``range_expr`` as a ragged grid of strings.

    Row 0 is whatever the range starts with (the header row for recruitment
    forms). Trailing empty cells are omitted by the API, so rows may be
    shorter than the header.
    """

    if not spreadsheet_id:
        raise ValueError("spreadsheet_id must not be empty")
    if not range_expr:
        raise ValueError("range_expr must not be empty")

    spreadsheet = open_spreadsheet(spreadsheet_id)
    response = with_backoff(lambda: spreadsheet.values_get(range_expr))
    values = response.get("values") if isinstance(response, Mapping) else None
    grid = [[_stringify(cell) for cell in row] for row in (values or [])]
    log.debug(
        "sheet range fetched",
        extra={"range": range_expr, "rows": len(grid)},
    )
    return grid
