"""Runtime configuration helpers for the sync bot."""

from __future__ import annotations

import logging
import os
import re
from typing import Dict, Optional

from config import runtime as _runtime
from shared.redaction import mask_secret, mask_service_account, sanitize_text

__all__ = [
    "cfg",
    "reload_config",
    "get_env_name",
    "get_bot_name",
    "get_command_prefix",
    "get_discord_token",
    "get_log_channel_id",
    "get_poll_interval_sec",
    "get_guild_settings_path",
    "get_timezone",
    "get_thread_create_timeout_sec",
    "get_repost_timeout_sec",
    "get_platform_call_timeout_sec",
    "get_rate_limit_default_sec",
    "get_image_fetch_timeout_sec",
    "get_image_max_bytes",
    "get_similarity_threshold",
    "get_alert_similarity_threshold",
    "redact_value",
]

log = logging.getLogger("c1c.config")

# ===== Config Schema (authoritative) =====
_REQUIRED_ENV = (
    "DISCORD_TOKEN",
    "GSPREAD_CREDENTIALS",
)


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


for _name in _REQUIRED_ENV:
    _require_env(_name)

_MISSING_VALUE = "—"
_INT_RE = re.compile(r"\d+")

_log_channel_warning_emitted = False

_CONFIG: Dict[str, object] = {}

_SECRET_KEYS = {
    "DISCORD_TOKEN",
    "GSPREAD_CREDENTIALS",
}


def _redact_value(key: str, value: object) -> str:
    """Best-effort redaction for import-time logging."""

    key_upper = str(key).upper()

    if (
        key_upper in _SECRET_KEYS
        or "TOKEN" in key_upper
        or "CREDENTIAL" in key_upper
        or key_upper.endswith("_SECRET")
    ):
        if value in (None, "", [], (), {}):
            return _MISSING_VALUE
        stripped = str(value).strip()
        if not stripped:
            return _MISSING_VALUE
        if "service_account" in stripped and "private_key" in stripped:
            return mask_service_account(stripped)
        return mask_secret(stripped)

    if value in (None, "", [], (), {}):
        return _MISSING_VALUE

    return str(sanitize_text(value))


def redact_value(key: str, value: object) -> str:
    """Redact a single configuration value for display."""

    return _redact_value(key, value)


def _first_int(raw: str | None) -> Optional[int]:
    if not raw:
        return None
    for match in _INT_RE.finditer(raw):
        try:
            return int(match.group(0))
        except (TypeError, ValueError):
            continue
    return None


def _refresh_log_channel() -> Optional[int]:
    """Resolve the log channel identifier and emit the disabled warning once."""

    global _log_channel_warning_emitted

    channel_id = _first_int(os.getenv("LOG_CHANNEL_ID"))
    if channel_id is None:
        if not _log_channel_warning_emitted:
            log.warning(
                "Log channel disabled; set LOG_CHANNEL_ID to enable Discord log posting."
            )
            _log_channel_warning_emitted = True
    else:
        _log_channel_warning_emitted = False
    return channel_id


def _int_env(
    key: str,
    default: int,
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an optional integer environment variable defensively."""

    raw = os.getenv(key)
    if raw is None:
        return default

    text = str(raw).strip()
    if not text:
        return default

    try:
        value = int(text)
    except ValueError:
        log.warning("config: %s='%s' invalid; using default %s", key, text, default)
        return default

    if min_value is not None and value < min_value:
        log.warning("config: %s=%s < min %s; clamping", key, value, min_value)
        value = min_value

    if max_value is not None and value > max_value:
        log.warning("config: %s=%s > max %s; clamping", key, value, max_value)
        value = max_value

    return value


def _float_env(
    key: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    """Parse an optional float environment variable defensively."""

    raw = os.getenv(key)
    if raw is None:
        return default

    text = str(raw).strip()
    if not text:
        return default

    try:
        value = float(text)
    except ValueError:
        log.warning("config: %s='%s' invalid; using default %s", key, text, default)
        return default

    if min_value is not None and value < min_value:
        log.warning("config: %s=%s < min %s; clamping", key, value, min_value)
        value = min_value

    if max_value is not None and value > max_value:
        log.warning("config: %s=%s > max %s; clamping", key, value, max_value)
        value = max_value

    return value


def _log_snapshot(snapshot: Dict[str, object]) -> None:
    redacted = {key: _redact_value(key, value) for key, value in snapshot.items()}
    log.info("config loaded", extra={"config": str(redacted)})


def _load_config() -> Dict[str, object]:
    return {
        "PORT": _runtime.get_port(),
        "BOT_NAME": _runtime.get_bot_name(),
        "ENV_NAME": _runtime.get_env_name(),
        "COMMAND_PREFIX": _runtime.get_command_prefix(),
        "DISCORD_TOKEN": os.getenv("DISCORD_TOKEN", ""),
        "GSPREAD_CREDENTIALS": os.getenv("GSPREAD_CREDENTIALS", ""),
        "LOG_CHANNEL_ID": _refresh_log_channel(),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "BOT_VERSION": os.getenv("BOT_VERSION", "dev"),
        "POLL_INTERVAL_SEC": _runtime.get_poll_interval_sec(),
        "GUILD_SETTINGS_PATH": _runtime.get_guild_settings_path(),
        "TIMEZONE": (_runtime.get_timezone() or "UTC").strip() or "UTC",
        "THREAD_CREATE_TIMEOUT_SEC": _float_env(
            "THREAD_CREATE_TIMEOUT_SEC", 15.0, min_value=1.0, max_value=120.0
        ),
        "REPOST_TIMEOUT_SEC": _float_env(
            "REPOST_TIMEOUT_SEC", 10.0, min_value=1.0, max_value=120.0
        ),
        "PLATFORM_CALL_TIMEOUT_SEC": _float_env(
            "PLATFORM_CALL_TIMEOUT_SEC", 10.0, min_value=1.0, max_value=120.0
        ),
        "RATE_LIMIT_DEFAULT_SEC": _float_env(
            "RATE_LIMIT_DEFAULT_SEC", 10.0, min_value=0.0, max_value=600.0
        ),
        "IMAGE_FETCH_TIMEOUT_SEC": _float_env(
            "IMAGE_FETCH_TIMEOUT_SEC", 8.0, min_value=1.0, max_value=60.0
        ),
        "IMAGE_MAX_BYTES": _int_env("IMAGE_MAX_BYTES", 8_000_000, min_value=1024),
        "SIMILARITY_THRESHOLD": _float_env(
            "SIMILARITY_THRESHOLD", 0.6, min_value=0.0, max_value=1.0
        ),
        "ALERT_SIMILARITY_THRESHOLD": _float_env(
            "ALERT_SIMILARITY_THRESHOLD", 0.8, min_value=0.0, max_value=1.0
        ),
    }


def reload_config() -> Dict[str, object]:
    """Reload configuration from environment and return a snapshot."""

    for _name in _REQUIRED_ENV:
        _require_env(_name)

    snapshot = _load_config()

    global _CONFIG
    _CONFIG = snapshot
    _log_snapshot(snapshot)
    return dict(_CONFIG)


reload_config()


def _normalise_key(name: object) -> Optional[str]:
    if name is None:
        return None

    text = str(name).strip()
    if not text:
        return None

    mapped = re.sub(r"[^A-Za-z0-9_.]", "_", text)
    mapped = mapped.replace(".", "_")
    mapped = re.sub(r"__+", "_", mapped)
    mapped = mapped.strip("_")
    if not mapped:
        return None
    return mapped.upper()


class _ConfigFacade:
    __slots__ = ()

    def get(self, key: object, default: object | None = None) -> object | None:
        normalised = _normalise_key(key)
        if not normalised:
            return default
        return _CONFIG.get(normalised, default)

    def __contains__(self, key: object) -> bool:  # pragma: no cover - convenience
        normalised = _normalise_key(key)
        if not normalised:
            return False
        return normalised in _CONFIG

    def items(self):  # pragma: no cover - convenience
        return _CONFIG.items()


cfg = _ConfigFacade()


def get_env_name(default: str = "dev") -> str:
    value = _CONFIG.get("ENV_NAME")
    return str(value) if isinstance(value, str) and value else default


def get_bot_name(default: str = "Guild-Recruitment-Sync") -> str:
    value = _CONFIG.get("BOT_NAME")
    return str(value) if isinstance(value, str) and value else default


def get_command_prefix(default: str = "!") -> str:
    value = _CONFIG.get("COMMAND_PREFIX")
    return str(value) if isinstance(value, str) and value else default


def get_discord_token() -> str:
    return str(_CONFIG.get("DISCORD_TOKEN") or "")


def get_log_channel_id() -> Optional[int]:
    value = _CONFIG.get("LOG_CHANNEL_ID")
    return value if isinstance(value, int) else None


def _int_value(key: str, fallback: int) -> int:
    try:
        return int(_CONFIG.get(key, fallback))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


def _float_value(key: str, fallback: float) -> float:
    try:
        return float(_CONFIG.get(key, fallback))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


def get_poll_interval_sec() -> int:
    return _int_value("POLL_INTERVAL_SEC", _runtime.get_poll_interval_sec())


def get_guild_settings_path() -> str:
    value = _CONFIG.get("GUILD_SETTINGS_PATH")
    return str(value) if isinstance(value, str) and value else _runtime.get_guild_settings_path()


def get_timezone() -> str:
    value = _CONFIG.get("TIMEZONE")
    return str(value) if isinstance(value, str) and value else "UTC"


def get_thread_create_timeout_sec() -> float:
    return _float_value("THREAD_CREATE_TIMEOUT_SEC", 15.0)


def get_repost_timeout_sec() -> float:
    return _float_value("REPOST_TIMEOUT_SEC", 10.0)


def get_platform_call_timeout_sec() -> float:
    return _float_value("PLATFORM_CALL_TIMEOUT_SEC", 10.0)


def get_rate_limit_default_sec() -> float:
    return _float_value("RATE_LIMIT_DEFAULT_SEC", 10.0)


def get_image_fetch_timeout_sec() -> float:
    return _float_value("IMAGE_FETCH_TIMEOUT_SEC", 8.0)


def get_image_max_bytes() -> int:
    return _int_value("IMAGE_MAX_BYTES", 8_000_000)


def get_similarity_threshold() -> float:
    return _float_value("SIMILARITY_THRESHOLD", 0.6)


def get_alert_similarity_threshold() -> float:
    return _float_value("ALERT_SIMILARITY_THRESHOLD", 0.8)
