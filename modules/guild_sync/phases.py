"""Reconcile one guild's spreadsheet with its Alliance and Horde forum channels.

Phases run in a fixed order and each one is isolated: a failure is logged
and recorded on its :class:`PhaseReport`, then the next phase starts.

1. remove duplicate threads (per channel)
2. remove threads with no fresh spreadsheet entry (per channel)
3. repost the single oldest eligible thread (per channel)
4. post threads for new entries (both channels, capped per cycle)
5. alert moderators about similar guild names (per channel)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from .columns import (
    FACTION_HEADER,
    GUILD_NAME_HEADER,
    SCOPE_HEADER,
    TIMESTAMP_HEADER,
    Entry,
    Faction,
    SheetLayout,
    iter_entries,
    resolve_layout,
)
from .freshness import FreshnessPolicy
from .gateway import ForumGateway, ThreadRef
from .outcomes import (
    DEFAULT_RETRY_AFTER_SEC,
    PlatformError,
    RateLimited,
    Step,
    TimedOut,
    step_for,
)
from .render import ListingRenderer, RenderedPost, match_key
from .settings import GuildSettings
from .similarity import ALERT_THRESHOLD, SimilarCluster, find_similar_clusters, mentions_any

log = logging.getLogger("c1c.guild_sync.phases")

T = TypeVar("T")

GridFetcher = Callable[[str, str], Awaitable[Sequence[Sequence[str]]]]

PHASE_DUPLICATES = "duplicates"
PHASE_UNMATCHED = "unmatched"
PHASE_REPOST = "repost"
PHASE_NEW_ENTRIES = "new_entries"
PHASE_SIMILAR = "similar_names"

REASON_DUPLICATE = "Duplicate thread"
REASON_UNMATCHED = "No matching data in Google Sheets or outdated entry"
REASON_REPOST = "Reposting new thread"
REASON_CREATE = "Creating thread for recruitment post"
REASON_ALERT = "Similar guild names detected"

ALERT_TITLE_PREFIX = "Similar Guild Names"
MAX_TITLE_LENGTH = 100

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class SheetUnavailable(RuntimeError):
    """The spreadsheet could not be read; phases needing rows do not run."""


@dataclass
class PhaseReport:
    phase: str
    channel_id: Optional[int] = None
    created: int = 0
    deleted: int = 0
    alerts: int = 0
    failures: int = 0
    stopped: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    guild_id: int
    phases: list[PhaseReport] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(p.created for p in self.phases)

    @property
    def deleted(self) -> int:
        return sum(p.deleted for p in self.phases)

    @property
    def alerts(self) -> int:
        return sum(p.alerts for p in self.phases)

    @property
    def failed_phases(self) -> int:
        return sum(1 for p in self.phases if not p.ok)

    def summary(self) -> str:
        return (
            f"guild={self.guild_id} • created={self.created} • deleted={self.deleted}"
            f" • alerts={self.alerts} • failed_phases={self.failed_phases}"
        )


def alert_title(key: str, when: datetime) -> str:
    return f"{ALERT_TITLE_PREFIX} - {key} - {when:%Y-%m-%d %H:%M}"[:MAX_TITLE_LENGTH]


def alert_body(key: str, members: Sequence[ThreadRef]) -> str:
    lines = [f"⚠️ **Potentially Similar Guild Names Found for: {key}**", ""]
    lines.extend(f" - {thread.title} (ID: {thread.id})" for thread in members)
    return "\n".join(lines) + "\n"


class Reconciler:
    """Runs the reconciliation phases for a single guild settings snapshot."""

    def __init__(
        self,
        settings: GuildSettings,
        gateway: ForumGateway,
        fetch_grid: GridFetcher,
        *,
        renderer: Optional[ListingRenderer] = None,
        policy: Optional[FreshnessPolicy] = None,
        create_timeout: float = 15.0,
        repost_timeout: float = 10.0,
        call_timeout: float = 10.0,
        rate_limit_default: float = DEFAULT_RETRY_AFTER_SEC,
        alert_threshold: float = ALERT_THRESHOLD,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self._fetch_grid = fetch_grid
        self.renderer = renderer or ListingRenderer(
            excluded_header=settings.excluded_column_header,
            image_header=settings.image_column_header,
        )
        self.policy = policy or FreshnessPolicy(
            max_entry_age_days=settings.max_entry_age_days,
            thread_age_limit_hours=settings.thread_age_limit_hours,
        )
        self.create_timeout = create_timeout
        self.repost_timeout = repost_timeout
        self.call_timeout = call_timeout
        self.rate_limit_default = rate_limit_default
        self.alert_threshold = alert_threshold
        self._sleep = sleep
        self._mod_corpus: Optional[list[str]] = None

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    async def _guard(self, operation: str, call: Awaitable[T], timeout: float) -> T:
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as exc:
            raise PlatformError(TimedOut(operation)) from exc

    async def _rows(self) -> Sequence[Sequence[str]]:
        """Fresh copy of the sheet; every phase that needs rows reads it again."""

        try:
            return await self._fetch_grid(self.settings.spreadsheet_id, self.settings.sheet_range)
        except Exception as exc:
            raise SheetUnavailable(f"spreadsheet fetch failed: {exc}") from exc

    async def _entries(self, require: Sequence[str]) -> tuple[SheetLayout, list[Entry]]:
        grid = await self._rows()
        headers = grid[0] if grid else []
        layout = resolve_layout(
            headers,
            image_header=self.settings.image_column_header,
            require=require,
        )
        return layout, list(iter_entries(grid, layout, parse_timestamp=self.policy.parse))

    async def _threads(self, channel_id: int) -> list[ThreadRef]:
        return await self._guard(
            "list threads", self.gateway.list_active_threads(channel_id), self.call_timeout
        )

    async def _on_failure(
        self,
        exc: PlatformError,
        report: PhaseReport,
        *,
        item: str,
        stop_on_timeout: bool,
    ) -> Step:
        failure = exc.failure
        report.failures += 1
        if isinstance(failure, RateLimited):
            delay = failure.retry_after if failure.retry_after > 0 else self.rate_limit_default
            log.warning(
                "⚠️ **GuildSync** — phase=%s • reason=rate_limited • retry_after=%.1fs • item=%s",
                report.phase,
                delay,
                item,
                extra={"phase": report.phase, "retry_after": delay, "bucket": failure.bucket},
            )
            await self._sleep(delay)
            return Step.SKIP_ITEM
        step = step_for(failure)
        if step is Step.STOP_PHASE and not stop_on_timeout:
            step = Step.SKIP_ITEM
        if step is Step.STOP_PHASE:
            report.stopped = str(exc)
            log.error(
                "❌ **GuildSync** — phase=%s • reason=%s • item=%s • stopping phase",
                report.phase,
                exc,
                item,
                extra={"phase": report.phase, "channel_id": report.channel_id},
            )
        else:
            log.warning(
                "⚠️ **GuildSync** — phase=%s • reason=%s • item=%s",
                report.phase,
                exc,
                item,
                extra={"phase": report.phase, "channel_id": report.channel_id},
            )
        return step

    async def _delete(self, thread: ThreadRef, reason: str, report: PhaseReport) -> Step:
        try:
            await self._guard(
                "delete thread",
                self.gateway.delete_thread(thread, reason=reason),
                self.call_timeout,
            )
        except PlatformError as exc:
            return await self._on_failure(exc, report, item=thread.title, stop_on_timeout=False)
        report.deleted += 1
        log.info(
            "deleted thread",
            extra={
                "phase": report.phase,
                "channel_id": thread.channel_id,
                "thread_id": thread.id,
                "title": thread.title,
                "reason": reason,
            },
        )
        return Step.CONTINUE

    async def _run_phase(
        self,
        phase: str,
        channel_id: Optional[int],
        body: Callable[[PhaseReport], Awaitable[None]],
    ) -> PhaseReport:
        report = PhaseReport(phase=phase, channel_id=channel_id)
        try:
            await body(report)
        except PlatformError as exc:
            report.error = str(exc)
            await self._on_failure(exc, report, item="phase", stop_on_timeout=True)
        except Exception as exc:
            report.error = str(exc) or exc.__class__.__name__
            log.exception(
                "guild sync phase failed",
                extra={
                    "guild_id": self.settings.guild_id,
                    "phase": phase,
                    "channel_id": channel_id,
                },
            )
        log.info(
            "%s **GuildSync** — phase=%s • channel=%s • created=%d • deleted=%d • alerts=%d • failures=%d",
            "✅" if report.ok else "❌",
            phase,
            channel_id if channel_id is not None else "both",
            report.created,
            report.deleted,
            report.alerts,
            report.failures,
            extra={
                "guild_id": self.settings.guild_id,
                "phase": phase,
                "channel_id": channel_id,
                "threads_created": report.created,
                "threads_deleted": report.deleted,
                "alerts": report.alerts,
                "failures": report.failures,
            },
        )
        return report

    # ------------------------------------------------------------------
    # phases
    # ------------------------------------------------------------------
    async def remove_duplicates(self, channel_id: int) -> PhaseReport:
        async def body(report: PhaseReport) -> None:
            groups: dict[str, list[ThreadRef]] = {}
            for thread in await self._threads(channel_id):
                groups.setdefault(thread.normalized_title, []).append(thread)
            for members in groups.values():
                for duplicate in members[1:]:
                    await self._delete(duplicate, REASON_DUPLICATE, report)

        return await self._run_phase(PHASE_DUPLICATES, channel_id, body)

    async def remove_unmatched(self, channel_id: int) -> PhaseReport:
        async def body(report: PhaseReport) -> None:
            _, entries = await self._entries((GUILD_NAME_HEADER, TIMESTAMP_HEADER))
            fresh = {
                match_key(entry.guild_name)
                for entry in entries
                if not self.policy.is_entry_too_old(entry.submitted_at)
            }
            for thread in await self._threads(channel_id):
                title = thread.normalized_title
                if any(key in title for key in fresh):
                    continue
                await self._delete(thread, REASON_UNMATCHED, report)

        return await self._run_phase(PHASE_UNMATCHED, channel_id, body)

    async def repost_oldest(self, channel_id: int) -> PhaseReport:
        async def body(report: PhaseReport) -> None:
            threads = [
                thread
                for thread in await self._threads(channel_id)
                if self.policy.needs_repost(thread.created_at)
            ]
            if not threads:
                return
            threads.sort(key=lambda thread: thread.created_at or _OLDEST)
            layout, entries = await self._entries((GUILD_NAME_HEADER, TIMESTAMP_HEADER))
            for thread in threads:
                title = thread.normalized_title
                entry = next((e for e in entries if match_key(e.guild_name) in title), None)
                if entry is None:
                    log.debug("no entry for thread; not reposting", extra={"title": thread.title})
                    continue
                if self.policy.is_entry_too_old(entry.submitted_at):
                    log.debug("entry too old; not reposting", extra={"title": thread.title})
                    continue
                step = await self._repost(channel_id, thread, layout, entry, report)
                if step is not Step.SKIP_ITEM:
                    break

        return await self._run_phase(PHASE_REPOST, channel_id, body)

    async def _repost(
        self,
        channel_id: int,
        thread: ThreadRef,
        layout: SheetLayout,
        entry: Entry,
        report: PhaseReport,
    ) -> Step:
        post = await self.renderer.render(layout, entry)
        deleted = False

        async def swap() -> ThreadRef:
            nonlocal deleted
            await self.gateway.delete_thread(thread, reason=REASON_REPOST)
            deleted = True
            return await self.gateway.create_thread(
                channel_id, post.title, post, reason=REASON_REPOST
            )

        try:
            created = await self._guard("repost thread", swap(), self.repost_timeout)
        except PlatformError as exc:
            if deleted:
                report.deleted += 1
            return await self._on_failure(exc, report, item=thread.title, stop_on_timeout=True)
        report.deleted += 1
        report.created += 1
        log.info(
            "reposted thread",
            extra={
                "channel_id": channel_id,
                "old_thread_id": thread.id,
                "thread_id": created.id,
                "title": post.title,
            },
        )
        return Step.CONTINUE

    async def post_new_entries(self, alliance_channel_id: int, horde_channel_id: int) -> PhaseReport:
        routes = {Faction.ALLIANCE: alliance_channel_id, Faction.HORDE: horde_channel_id}
        cap = self.settings.max_new_threads_per_cycle

        async def body(report: PhaseReport) -> None:
            layout, entries = await self._entries(
                (GUILD_NAME_HEADER, TIMESTAMP_HEADER, FACTION_HEADER, SCOPE_HEADER)
            )
            existing = [t.normalized_title for t in await self._threads(alliance_channel_id)]
            existing += [t.normalized_title for t in await self._threads(horde_channel_id)]

            pending: set[str] = set()
            for entry in entries:
                key = match_key(entry.guild_name)
                if not any(key in title for title in existing):
                    pending.add(key)
            if not pending:
                return

            for entry in entries:
                if report.created >= cap:
                    log.info(
                        "new thread cap reached; remaining entries wait for the next cycle",
                        extra={"cap": cap, "pending": len(pending)},
                    )
                    break
                key = match_key(entry.guild_name)
                if key not in pending or self.policy.is_entry_too_old(entry.submitted_at):
                    continue
                target = routes.get(entry.faction)
                if target is None:
                    log.debug(
                        "entry has no recognised faction",
                        extra={"guild": entry.guild_name, "row": entry.row_number},
                    )
                    continue
                post = await self.renderer.render(layout, entry)
                try:
                    created = await self._guard(
                        "create thread",
                        self.gateway.create_thread(target, post.title, post, reason=REASON_CREATE),
                        self.create_timeout,
                    )
                except PlatformError as exc:
                    step = await self._on_failure(
                        exc, report, item=entry.guild_name, stop_on_timeout=True
                    )
                    if step is Step.STOP_PHASE:
                        break
                    continue
                pending.discard(key)
                report.created += 1
                log.info(
                    "created thread",
                    extra={"channel_id": target, "thread_id": created.id, "title": post.title},
                )

        return await self._run_phase(PHASE_NEW_ENTRIES, None, body)

    async def _moderation_corpus(self) -> list[str]:
        """Titles and message bodies of active moderation threads, lower-cased."""

        if self._mod_corpus is not None:
            return self._mod_corpus
        corpus: list[str] = []
        mod_channel_id = self.settings.mod_channel_id
        for thread in await self._threads(mod_channel_id):
            corpus.append(thread.normalized_title)
            try:
                messages = await self._guard(
                    "fetch messages", self.gateway.fetch_messages(thread), self.call_timeout
                )
            except PlatformError as exc:
                log.warning(
                    "could not read moderation thread",
                    extra={"thread_id": thread.id, "error": str(exc)},
                )
                continue
            corpus.extend(message.lower() for message in messages if message)
        self._mod_corpus = corpus
        return corpus

    async def similar_clusters(
        self, channel_id: int, *, threshold: float
    ) -> list[SimilarCluster[ThreadRef]]:
        threads = await self._threads(channel_id)
        return find_similar_clusters(threads, title_of=lambda t: t.title, threshold=threshold)

    async def flag_similar_names(self, channel_id: int) -> PhaseReport:
        async def body(report: PhaseReport) -> None:
            clusters = await self.similar_clusters(channel_id, threshold=self.alert_threshold)
            if not clusters:
                return
            corpus = await self._moderation_corpus()
            for cluster in clusters:
                names = cluster.guild_names(lambda t: t.title)
                if mentions_any(corpus, names):
                    log.info("similar names already flagged", extra={"key": cluster.key})
                    continue
                when = self.policy.now().astimezone(self.policy.tz)
                title = alert_title(cluster.key, when)
                post = RenderedPost(title=title, embed=None, content=alert_body(cluster.key, cluster.members))
                try:
                    await self._guard(
                        "create alert",
                        self.gateway.create_thread(
                            self.settings.mod_channel_id, title, post, reason=REASON_ALERT
                        ),
                        self.create_timeout,
                    )
                except PlatformError as exc:
                    step = await self._on_failure(exc, report, item=cluster.key, stop_on_timeout=True)
                    if step is Step.STOP_PHASE:
                        break
                    continue
                corpus.extend([title.lower(), post.content.lower()])
                report.alerts += 1

        return await self._run_phase(PHASE_SIMILAR, channel_id, body)

    async def run(self) -> SyncReport:
        """All phases in order; never raises for a phase failure."""

        settings = self.settings
        channels = (settings.alliance_channel_id, settings.horde_channel_id)
        report = SyncReport(guild_id=settings.guild_id)
        for channel_id in channels:
            report.phases.append(await self.remove_duplicates(channel_id))
        for channel_id in channels:
            report.phases.append(await self.remove_unmatched(channel_id))
        for channel_id in channels:
            report.phases.append(await self.repost_oldest(channel_id))
        report.phases.append(await self.post_new_entries(*channels))
        for channel_id in channels:
            report.phases.append(await self.flag_similar_names(channel_id))
        return report


__all__ = [
    "PHASE_DUPLICATES",
    "PHASE_NEW_ENTRIES",
    "PHASE_REPOST",
    "PHASE_SIMILAR",
    "PHASE_UNMATCHED",
    "PhaseReport",
    "Reconciler",
    "SheetUnavailable",
    "SyncReport",
    "alert_body",
    "alert_title",
]
