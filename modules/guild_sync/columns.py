"""Spreadsheet grid interpretation: header lookup, entries and column kinds.

The recruitment form sheet is an implicit schema. Required headers:

* ``Guild Name`` - the correlation key between a row and a forum thread
* ``Timestamp`` - form submission time, ``MM/dd/yyyy HH:mm:ss``
* ``Faction`` - ``Alliance`` or ``Horde``; picks the target forum
* ``Guild Type`` - the guild scope shown in the thread title

Headers are matched by case-sensitive containment and the first matching
column wins, so ``"Guild Name (in game)"`` still resolves ``Guild Name``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Sequence

log = logging.getLogger("c1c.guild_sync.columns")

GUILD_NAME_HEADER = "Guild Name"
TIMESTAMP_HEADER = "Timestamp"
FACTION_HEADER = "Faction"
SCOPE_HEADER = "Guild Type"

DISCORD_LINK_HEADER = "discord link"
DISCORD_CONTACT_HEADER = "discord contact"

__all__ = [
    "ColumnKind",
    "Entry",
    "Faction",
    "MissingColumnsError",
    "SheetLayout",
    "cell",
    "classify_column",
    "find_column",
    "iter_entries",
    "resolve_layout",
]


class MissingColumnsError(LookupError):
    """A required header is absent; the phase that needed it cannot run."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"required columns not found: {', '.join(self.missing)}")


class Faction(enum.Enum):
    ALLIANCE = "Alliance"
    HORDE = "Horde"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "Faction":
        text = (raw or "").strip().lower()
        for member in (cls.ALLIANCE, cls.HORDE):
            if text == member.value.lower():
                return member
        return cls.UNKNOWN


class ColumnKind(enum.Enum):
    EXCLUDED = "excluded"
    IMAGE = "image"
    BRACKETED = "bracketed"
    DISCORD_LINK = "discord_link"
    DISCORD_CONTACT = "discord_contact"
    DISPLAY = "display"


def find_column(headers: Sequence[str], name: str) -> Optional[int]:
    """Return the first index whose header contains ``name``, else ``None``."""

    if not name:
        return None
    for index, header in enumerate(headers):
        if name in (header or ""):
            return index
    return None


def cell(row: Sequence[str], index: Optional[int]) -> str:
    """Trimmed cell text; missing cells of ragged rows read as empty."""

    if index is None or index < 0 or index >= len(row):
        return ""
    value = row[index]
    return "" if value is None else str(value).strip()


@dataclass(frozen=True, slots=True)
class SheetLayout:
    headers: tuple[str, ...]
    guild_name: Optional[int]
    timestamp: Optional[int]
    faction: Optional[int]
    scope: Optional[int]
    image: Optional[int]


def resolve_layout(
    headers: Sequence[str],
    *,
    image_header: str = "",
    require: Sequence[str] = (GUILD_NAME_HEADER, TIMESTAMP_HEADER),
) -> SheetLayout:
    """Locate the known columns, raising :class:`MissingColumnsError` for any
    header in ``require`` that is absent."""

    cleaned = tuple("" if h is None else str(h) for h in headers)
    lookup = {
        GUILD_NAME_HEADER: find_column(cleaned, GUILD_NAME_HEADER),
        TIMESTAMP_HEADER: find_column(cleaned, TIMESTAMP_HEADER),
        FACTION_HEADER: find_column(cleaned, FACTION_HEADER),
        SCOPE_HEADER: find_column(cleaned, SCOPE_HEADER),
    }
    missing = [name for name in require if lookup.get(name) is None]
    if missing:
        raise MissingColumnsError(missing)
    return SheetLayout(
        headers=cleaned,
        guild_name=lookup[GUILD_NAME_HEADER],
        timestamp=lookup[TIMESTAMP_HEADER],
        faction=lookup[FACTION_HEADER],
        scope=lookup[SCOPE_HEADER],
        image=find_column(cleaned, image_header),
    )


@dataclass(frozen=True, slots=True)
class Entry:
    """One recruitment listing (a spreadsheet row after the header)."""

    row_number: int
    guild_name: str
    faction: Faction
    scope: str
    timestamp: str
    submitted_at: Optional[datetime]
    cells: tuple[str, ...]

    @property
    def key(self) -> str:
        """Normalised guild name used to correlate with thread titles."""

        return self.guild_name.strip().lower()


def iter_entries(
    grid: Sequence[Sequence[str]],
    layout: SheetLayout,
    *,
    parse_timestamp=None,
) -> Iterator[Entry]:
    """Yield entries for rows with a guild name and a timestamp.

    Rows missing either are skipped silently. ``parse_timestamp`` converts the
    raw timestamp; a ``None`` result is kept on the entry so freshness checks
    can treat it as stale.
    """

    for offset, row in enumerate(grid[1:], start=2):
        guild_name = cell(row, layout.guild_name)
        timestamp = cell(row, layout.timestamp)
        if not guild_name or not timestamp:
            continue
        scope = cell(row, layout.scope) if layout.scope is not None else ""
        yield Entry(
            row_number=offset,
            guild_name=guild_name,
            faction=Faction.parse(cell(row, layout.faction)),
            scope=scope or "Unknown",
            timestamp=timestamp,
            submitted_at=parse_timestamp(timestamp) if parse_timestamp else None,
            cells=tuple("" if c is None else str(c) for c in row),
        )


def classify_column(
    header: str,
    *,
    excluded_header: str = "",
    image_header: str = "",
) -> ColumnKind:
    """Decide how a column is rendered in the thread post."""

    key = (header or "").strip()
    lowered = key.lower()
    if excluded_header and excluded_header in key:
        return ColumnKind.EXCLUDED
    if image_header and image_header in key:
        return ColumnKind.IMAGE
    if "guild logo" in lowered:
        return ColumnKind.EXCLUDED
    if key.startswith("[") and key.endswith("]"):
        return ColumnKind.BRACKETED
    if DISCORD_LINK_HEADER in lowered:
        return ColumnKind.DISCORD_LINK
    if DISCORD_CONTACT_HEADER in lowered:
        return ColumnKind.DISCORD_CONTACT
    return ColumnKind.DISPLAY
