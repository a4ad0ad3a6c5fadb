"""Per-guild sync settings persisted as one JSON document keyed by guild id."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

log = logging.getLogger("c1c.guild_sync.settings")

DEFAULT_THREAD_AGE_LIMIT_HOURS = 0.5
DEFAULT_MAX_ENTRY_AGE_DAYS = 14.0
DEFAULT_MAX_NEW_THREADS_PER_CYCLE = 10

_KEYS = {
    "alliance_channel_id": "ALLIANCE_CHANNEL_ID",
    "horde_channel_id": "HORDE_CHANNEL_ID",
    "mod_channel_id": "MOD_CHANNEL_ID",
    "spreadsheet_id": "SPREADSHEET_ID",
    "sheet_range": "SHEET_RANGE",
    "image_column_header": "IMAGE_COLUMN_HEADER",
    "excluded_column_header": "EXCLUDED_COLUMN_HEADER",
    "thread_age_limit_hours": "THREAD_AGE_LIMIT_HOURS",
    "max_entry_age_days": "MAX_ENTRY_AGE_DAYS",
    "max_new_threads_per_cycle": "MAX_NEW_THREADS_PER_CYCLE",
}


def _as_id(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = int(text)
    except ValueError:
        return None
    return value if value > 0 else None


def _as_float(raw: Any, default: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _as_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class GuildSettings:
    """Immutable snapshot of one guild's record, read at the start of a cycle."""

    guild_id: int
    alliance_channel_id: Optional[int] = None
    horde_channel_id: Optional[int] = None
    mod_channel_id: Optional[int] = None
    spreadsheet_id: str = ""
    sheet_range: str = ""
    image_column_header: str = ""
    excluded_column_header: str = ""
    thread_age_limit_hours: float = DEFAULT_THREAD_AGE_LIMIT_HOURS
    max_entry_age_days: float = DEFAULT_MAX_ENTRY_AGE_DAYS
    max_new_threads_per_cycle: int = DEFAULT_MAX_NEW_THREADS_PER_CYCLE

    @classmethod
    def from_record(cls, guild_id: int, record: Mapping[str, Any]) -> "GuildSettings":
        def get(attr: str) -> Any:
            return record.get(_KEYS[attr])

        return cls(
            guild_id=int(guild_id),
            alliance_channel_id=_as_id(get("alliance_channel_id")),
            horde_channel_id=_as_id(get("horde_channel_id")),
            mod_channel_id=_as_id(get("mod_channel_id")),
            spreadsheet_id=str(get("spreadsheet_id") or "").strip(),
            sheet_range=str(get("sheet_range") or "").strip(),
            image_column_header=str(get("image_column_header") or "").strip(),
            excluded_column_header=str(get("excluded_column_header") or "").strip(),
            thread_age_limit_hours=_as_float(
                get("thread_age_limit_hours"), DEFAULT_THREAD_AGE_LIMIT_HOURS
            ),
            max_entry_age_days=_as_float(
                get("max_entry_age_days"), DEFAULT_MAX_ENTRY_AGE_DAYS
            ),
            max_new_threads_per_cycle=_as_int(
                get("max_new_threads_per_cycle"), DEFAULT_MAX_NEW_THREADS_PER_CYCLE
            ),
        )

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for attr, key in _KEYS.items():
            value = getattr(self, attr)
            if attr.endswith("_channel_id"):
                value = "" if value is None else str(value)
            record[key] = value
        return record

    def missing_fields(self) -> list[str]:
        missing = []
        for attr in ("alliance_channel_id", "horde_channel_id", "mod_channel_id"):
            if getattr(self, attr) is None:
                missing.append(_KEYS[attr])
        if not self.spreadsheet_id:
            missing.append(_KEYS["spreadsheet_id"])
        if not self.sheet_range:
            missing.append(_KEYS["sheet_range"])
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def replace(self, **changes: Any) -> "GuildSettings":
        return dataclasses.replace(self, **changes)


class GuildSettingsStore:
    """JSON file of ``{guild_id: record}``; re-read on every load."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"guild settings file is not valid JSON: {self.path}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"guild settings file must hold an object: {self.path}")
        return payload

    def load_all(self) -> dict[int, GuildSettings]:
        settings: dict[int, GuildSettings] = {}
        for raw_id, record in self._read().items():
            guild_id = _as_id(raw_id)
            if guild_id is None or not isinstance(record, Mapping):
                log.warning("ignoring malformed guild settings entry", extra={"key": str(raw_id)})
                continue
            settings[guild_id] = GuildSettings.from_record(guild_id, record)
        return settings

    def load(self, guild_id: int) -> GuildSettings:
        record = self._read().get(str(guild_id))
        if not isinstance(record, Mapping):
            return GuildSettings(guild_id=int(guild_id))
        return GuildSettings.from_record(guild_id, record)

    def save(self, settings: GuildSettings) -> None:
        payload = self._read()
        payload[str(settings.guild_id)] = settings.to_record()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.write("\n")
        os.replace(tmp_path, self.path)
        log.info(
            "guild settings saved",
            extra={"guild_id": settings.guild_id, "path": str(self.path)},
        )

    def update(self, guild_id: int, **changes: Any) -> GuildSettings:
        updated = self.load(guild_id).replace(**changes)
        self.save(updated)
        return updated


__all__ = [
    "DEFAULT_MAX_ENTRY_AGE_DAYS",
    "DEFAULT_MAX_NEW_THREADS_PER_CYCLE",
    "DEFAULT_THREAD_AGE_LIMIT_HOURS",
    "GuildSettings",
    "GuildSettingsStore",
]
