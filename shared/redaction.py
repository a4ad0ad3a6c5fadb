"""Secret redaction helpers for logs and operator-facing summaries."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Mapping

__all__ = [
    "mask_secret",
    "mask_service_account",
    "sheet_tail",
    "sanitize_text",
]


_DISCORD_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]{24}\.[A-Za-z0-9_-]{6}\.[A-Za-z0-9_-]{27,}")
_WEBHOOK_RE = re.compile(r"https://(?:ptb\.|canary\.)?discord(?:app)?\.com/api/webhooks/\d+/\S+", re.I)
_PRIVATE_KEY_BLOCK_RE = re.compile(r"-----BEGIN [^-]+-----.*?-----END [^-]+-----", re.DOTALL)
_GOOGLE_API_KEY_RE = re.compile(r"AIza[0-9A-Za-z\-_]{35}")
_OAUTH_TOKEN_RE = re.compile(r"ya29\.[0-9A-Za-z\-_]{20,}")
_SECRET_FIELD_RE = re.compile(
    r"(?P<prefix>(token|secret|credential|key)\s*[=:]\s*)(?P<secret>[^\s,;]+)",
    re.IGNORECASE,
)
_SERVICE_ACCOUNT_INLINE_RE = re.compile(
    r"\{[^{}]*\"type\"\s*:\s*\"service_account\".*?\}",
    re.DOTALL,
)


def _stable_suffix(text: str) -> str:
    digest = hashlib.sha1(text.encode("utf-8", "ignore")).hexdigest()
    return digest[:4]


def mask_secret(text: str) -> str:
    return f"***{_stable_suffix(text)}"


def mask_service_account(text: str) -> str:
    return f"***sa-json:len={len(text)}-{_stable_suffix(text)}"


def sheet_tail(sheet_id: str | None, *, keep: int = 6) -> str:
    """Return ``…abc123`` style display for spreadsheet identifiers."""

    text = (sheet_id or "").strip()
    if not text:
        return "—"
    if len(text) <= keep:
        return text
    return f"…{text[-keep:]}"


def _looks_like_service_account(text: str) -> bool:
    if "service_account" not in text or "private_key" not in text:
        return False
    try:
        data = json.loads(text)
    except ValueError:
        return False
    if not isinstance(data, Mapping):
        return False
    return str(data.get("type")) == "service_account" and "private_key" in data


def sanitize_text(value: Any) -> Any:
    """Mask credentials embedded in ``value`` while keeping surrounding text."""

    if value is None:
        return value
    text = str(value)
    if not text:
        return text

    stripped = text.strip()
    if _looks_like_service_account(stripped):
        return mask_service_account(stripped)

    sanitized = _SERVICE_ACCOUNT_INLINE_RE.sub(
        lambda match: mask_service_account(match.group(0)), text
    )
    for pattern in (
        _PRIVATE_KEY_BLOCK_RE,
        _WEBHOOK_RE,
        _DISCORD_TOKEN_RE,
        _GOOGLE_API_KEY_RE,
        _OAUTH_TOKEN_RE,
    ):
        sanitized = pattern.sub(lambda match: mask_secret(match.group(0)), sanitized)
    sanitized = _SECRET_FIELD_RE.sub(
        lambda match: f"{match.group('prefix')}{mask_secret(match.group('secret'))}",
        sanitized,
    )
    return sanitized
