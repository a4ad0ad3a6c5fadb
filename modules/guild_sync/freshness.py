"""Age thresholds for spreadsheet entries and forum threads."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

log = logging.getLogger("c1c.guild_sync.freshness")

TIMESTAMP_FORMAT = "%m/%d/%Y %H:%M:%S"

_SECONDS_PER_DAY = 86400.0
_SECONDS_PER_HOUR = 3600.0


def resolve_timezone(name: str | None) -> tzinfo:
    try:
        return ZoneInfo((name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("timezone not found; defaulting to UTC", extra={"timezone": name})
        return timezone.utc


def parse_timestamp(raw: str | None, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """Parse a form timestamp (``MM/dd/yyyy HH:mm:ss``) in ``tz``."""

    text = (raw or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=tz)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def entry_age_days(submitted_at: Optional[datetime], now: datetime) -> Optional[float]:
    if submitted_at is None:
        return None
    return (_utc(now) - _utc(submitted_at)).total_seconds() / _SECONDS_PER_DAY


def thread_age_hours(created_at: Optional[datetime], now: datetime) -> float:
    """Hours since thread creation; ``-1`` when the platform gave no timestamp."""

    if created_at is None:
        return -1.0
    return (_utc(now) - _utc(created_at)).total_seconds() / _SECONDS_PER_HOUR


@dataclass(frozen=True)
class FreshnessPolicy:
    """Per-guild thresholds bound to a clock.

    Entry age uses a strict ``>`` boundary, thread age an inclusive ``>=``.
    Timestamps that cannot be parsed count as too old so bad rows drop out
    instead of pinning threads forever.
    """

    max_entry_age_days: float
    thread_age_limit_hours: float
    tz: tzinfo = timezone.utc
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return _utc(self.clock())

    def parse(self, raw: str | None) -> Optional[datetime]:
        return parse_timestamp(raw, self.tz)

    def is_entry_too_old(self, timestamp: str | datetime | None) -> bool:
        submitted = timestamp if isinstance(timestamp, datetime) else self.parse(timestamp)
        age = entry_age_days(submitted, self.now())
        if age is None:
            return True
        return age > self.max_entry_age_days

    def thread_age(self, created_at: Optional[datetime]) -> float:
        return thread_age_hours(created_at, self.now())

    def needs_repost(self, created_at: Optional[datetime]) -> bool:
        age = self.thread_age(created_at)
        if age < 0:
            return False
        return age >= self.thread_age_limit_hours
