from __future__ import annotations

# config/runtime.py
import os
from typing import Optional


def get_port(default: int = 10000) -> int:
    """
    Returns the port for the aiohttp health server.
    Render provides $PORT; locally we fall back to 10000.
    """
    try:
        return int(os.getenv("PORT", str(default)))
    except ValueError:
        return default


def get_env_name(default: str = "dev") -> str:
    return os.getenv("ENV_NAME", default)


def get_bot_name(default: str = "Guild-Recruitment-Sync") -> str:
    return os.getenv("BOT_NAME", default)


def _coerce_int(value: Optional[str], fallback: int) -> int:
    try:
        if value is None:
            raise TypeError
        return int(value)
    except (TypeError, ValueError):
        return fallback


def get_command_prefix(default: str = "!") -> str:
    return os.getenv("COMMAND_PREFIX", default)


def get_poll_interval_sec(default: int = 300) -> int:
    """
    Seconds between reconciliation cycles.

    Values below 30s are clamped.
    """

    return max(30, _coerce_int(os.getenv("POLL_INTERVAL_SEC"), default))


def get_guild_settings_path(default: str = "server-settings.json") -> str:
    """Location of the per-guild settings JSON document."""

    return os.getenv("GUILD_SETTINGS_PATH", default)


def get_timezone(default: str = "UTC") -> str:
    """IANA timezone name used to read spreadsheet timestamps."""

    return os.getenv("TIMEZONE", default)
