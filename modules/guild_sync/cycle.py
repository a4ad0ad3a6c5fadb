"""One poll cycle: load every guild's settings and reconcile guilds in turn."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from shared import config as shared_config
from shared.health import set_component
from shared.logging import set_trace_id
from shared.sheets.async_core import afetch_range

from .freshness import FreshnessPolicy, resolve_timezone
from .gateway import DiscordForumGateway, ForumChannelMissing, ForumGateway
from .images import ImageFetcher
from .phases import GridFetcher, Reconciler, SyncReport
from .render import ListingRenderer
from .settings import GuildSettings, GuildSettingsStore

log = logging.getLogger("c1c.guild_sync.cycle")

HEALTH_COMPONENT = "guild_sync"
SHEET_FETCH_TIMEOUT_SEC = 60.0

Reporter = Callable[[str], Awaitable[None]]


async def fetch_sheet_grid(spreadsheet_id: str, range_expr: str) -> Sequence[Sequence[str]]:
    return await afetch_range(spreadsheet_id, range_expr, timeout=SHEET_FETCH_TIMEOUT_SEC)


class GuildSyncCycle:
    """Serialises reconciliation runs; scheduled and manual runs share a lock."""

    def __init__(
        self,
        bot,
        *,
        store: Optional[GuildSettingsStore] = None,
        gateway: Optional[ForumGateway] = None,
        fetch_grid: GridFetcher = fetch_sheet_grid,
        image_fetcher: Optional[ImageFetcher] = None,
        reporter: Optional[Reporter] = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.bot = bot
        self.store = store or GuildSettingsStore(shared_config.get_guild_settings_path())
        self.gateway = gateway or DiscordForumGateway(
            bot,
            default_retry_after=shared_config.get_rate_limit_default_sec(),
            call_timeout=shared_config.get_platform_call_timeout_sec(),
        )
        self.fetch_grid = fetch_grid
        self.image_fetcher = image_fetcher or ImageFetcher(
            timeout=shared_config.get_image_fetch_timeout_sec(),
            max_bytes=shared_config.get_image_max_bytes(),
        )
        self.reporter = reporter
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.last_reports: list[SyncReport] = []
        self.last_finished_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def build_reconciler(self, settings: GuildSettings) -> Reconciler:
        policy = FreshnessPolicy(
            max_entry_age_days=settings.max_entry_age_days,
            thread_age_limit_hours=settings.thread_age_limit_hours,
            tz=resolve_timezone(shared_config.get_timezone()),
        )
        renderer = ListingRenderer(
            excluded_header=settings.excluded_column_header,
            image_header=settings.image_column_header,
            image_fetcher=self.image_fetcher,
        )
        return Reconciler(
            settings,
            self.gateway,
            self.fetch_grid,
            renderer=renderer,
            policy=policy,
            create_timeout=shared_config.get_thread_create_timeout_sec(),
            repost_timeout=shared_config.get_repost_timeout_sec(),
            call_timeout=shared_config.get_platform_call_timeout_sec(),
            rate_limit_default=shared_config.get_rate_limit_default_sec(),
            alert_threshold=shared_config.get_alert_similarity_threshold(),
            sleep=self._sleep,
        )

    async def sync_guild(self, settings: GuildSettings) -> Optional[SyncReport]:
        if not settings.is_complete:
            log.info(
                "⚠️ **GuildSync** — guild=%s • reason=incomplete_settings • missing=%s",
                settings.guild_id,
                ",".join(settings.missing_fields()),
                extra={"guild_id": settings.guild_id, "missing": settings.missing_fields()},
            )
            return None
        channels = [
            settings.alliance_channel_id,
            settings.horde_channel_id,
            settings.mod_channel_id,
        ]
        try:
            await self.gateway.ensure_forums(channels)
        except ForumChannelMissing as exc:
            log.warning(
                "⚠️ **GuildSync** — guild=%s • reason=channel_unavailable • detail=%s",
                settings.guild_id,
                exc,
                extra={"guild_id": settings.guild_id},
            )
            return None
        return await self.build_reconciler(settings).run()

    async def run_guild(self, guild_id: int) -> Optional[SyncReport]:
        """Reconcile a single guild now, waiting for any cycle in progress."""

        async with self._lock:
            set_trace_id()
            report = await self.sync_guild(self.store.load(guild_id))
            if report is not None:
                log.info("guild sync finished • %s", report.summary(), extra={"guild_id": guild_id})
            return report

    async def run_once(self, *, reason: str = "scheduled") -> list[SyncReport]:
        async with self._lock:
            return await self._run_locked(reason)

    async def _run_locked(self, reason: str) -> list[SyncReport]:
        set_trace_id()
        started = time.monotonic()
        try:
            records = self.store.load_all()
        except (OSError, ValueError):
            log.exception("guild settings unreadable", extra={"path": str(self.store.path)})
            set_component(HEALTH_COMPONENT, False)
            return []

        reports: list[SyncReport] = []
        failures = 0
        for guild in list(getattr(self.bot, "guilds", []) or []):
            settings = records.get(guild.id)
            if settings is None:
                log.debug("guild has no sync settings", extra={"guild_id": guild.id})
                continue
            try:
                report = await self.sync_guild(settings)
            except Exception:
                failures += 1
                log.exception("guild sync failed", extra={"guild_id": guild.id})
                continue
            if report is not None:
                reports.append(report)
                log.info("guild sync finished • %s", report.summary(), extra={"guild_id": guild.id})

        duration = time.monotonic() - started
        self.last_reports = reports
        self.last_finished_at = datetime.now(timezone.utc)
        set_component(HEALTH_COMPONENT, failures == 0)

        created = sum(r.created for r in reports)
        deleted = sum(r.deleted for r in reports)
        alerts = sum(r.alerts for r in reports)
        failed_phases = sum(r.failed_phases for r in reports) + failures
        summary = (
            f"🧾 **GuildSync** — reason={reason} • guilds={len(reports)} • created={created}"
            f" • deleted={deleted} • alerts={alerts} • failed_phases={failed_phases}"
            f" • duration={duration:.1f}s"
        )
        log.info(
            summary,
            extra={
                "reason": reason,
                "guilds": len(reports),
                "threads_created": created,
                "threads_deleted": deleted,
                "alerts": alerts,
                "failed_phases": failed_phases,
                "duration_s": round(duration, 3),
            },
        )
        noteworthy = created or deleted or alerts or failed_phases or reason != "scheduled"
        if self.reporter is not None and noteworthy:
            try:
                await self.reporter(summary)
            except Exception:
                log.warning("failed to post cycle summary", exc_info=True)
        return reports


__all__ = ["GuildSyncCycle", "HEALTH_COMPONENT", "fetch_sheet_grid"]
