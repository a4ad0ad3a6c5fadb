from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from shared import health
from modules.guild_sync.cycle import HEALTH_COMPONENT, GuildSyncCycle
from modules.guild_sync.freshness import TIMESTAMP_FORMAT
from modules.guild_sync.settings import GuildSettingsStore

from sync_fakes import ALLIANCE, HEADERS, FakeGateway, SleepRecorder, make_settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sheet(*names: str) -> list[list[str]]:
    stamp = (_utcnow() - timedelta(hours=1)).strftime(TIMESTAMP_FORMAT)
    return [list(HEADERS), *[[stamp, name, "Alliance", "Casual", "About", ""] for name in names]]


class ExplodingGateway(FakeGateway):
    def __init__(self, explode_on: int) -> None:
        super().__init__(clock=_utcnow)
        self.explode_on = explode_on

    async def ensure_forums(self, channel_ids) -> None:
        if self.explode_on in channel_ids:
            raise RuntimeError("gateway exploded")
        await super().ensure_forums(channel_ids)


def _bot(*guild_ids: int):
    return SimpleNamespace(guilds=[SimpleNamespace(id=guild_id) for guild_id in guild_ids])


def _cycle(bot, store, gateway, sheet, messages):
    async def fetch_grid(spreadsheet_id, range_expr):
        return sheet

    async def reporter(message: str) -> None:
        messages.append(message)

    return GuildSyncCycle(
        bot,
        store=store,
        gateway=gateway,
        fetch_grid=fetch_grid,
        reporter=reporter,
        sleep=SleepRecorder(),
    )


def test_cycle_skips_incomplete_guilds_and_survives_guild_failures(settings_path):
    store = GuildSettingsStore(settings_path)
    store.save(make_settings(guild_id=42))
    store.save(make_settings(guild_id=7, alliance_channel_id=None, spreadsheet_id=""))
    store.save(
        make_settings(guild_id=99, alliance_channel_id=2001, horde_channel_id=2002, mod_channel_id=2003)
    )
    gateway = ExplodingGateway(explode_on=2001)
    messages: list[str] = []
    cycle = _cycle(_bot(99, 7, 42, 500), store, gateway, _sheet("Stormcallers"), messages)

    reports = asyncio.run(cycle.run_once())

    assert [report.guild_id for report in reports] == [42]
    assert gateway.titles(ALLIANCE) == ["<Stormcallers> - Casual"]
    assert len(messages) == 1
    assert "reason=scheduled" in messages[0]
    assert "guilds=1" in messages[0]
    assert "created=1" in messages[0]
    assert "failed_phases=1" in messages[0]
    assert health.components_snapshot()[HEALTH_COMPONENT]["ok"] is False
    assert cycle.last_reports == reports
    assert cycle.last_finished_at is not None


def test_quiet_scheduled_cycle_is_not_reported(settings_path):
    store = GuildSettingsStore(settings_path)
    store.save(make_settings(guild_id=42))
    gateway = FakeGateway(clock=_utcnow)
    gateway.add_thread(ALLIANCE, "<Stormcallers> - Casual")
    messages: list[str] = []
    cycle = _cycle(_bot(42), store, gateway, _sheet("Stormcallers"), messages)

    asyncio.run(cycle.run_once())
    assert messages == []
    assert health.components_snapshot()[HEALTH_COMPONENT]["ok"] is True

    asyncio.run(cycle.run_once(reason="manual"))
    assert len(messages) == 1
    assert "reason=manual" in messages[0]


def test_settings_are_reloaded_every_cycle(settings_path):
    store = GuildSettingsStore(settings_path)
    store.save(make_settings(guild_id=42, spreadsheet_id=""))
    gateway = FakeGateway(clock=_utcnow)
    cycle = _cycle(_bot(42), store, gateway, _sheet("Stormcallers"), [])

    assert asyncio.run(cycle.run_once()) == []

    store.update(42, spreadsheet_id="sheet-123")
    reports = asyncio.run(cycle.run_once())

    assert [report.created for report in reports] == [1]


def test_missing_forum_channel_skips_guild(settings_path):
    store = GuildSettingsStore(settings_path)
    store.save(make_settings(guild_id=42))
    gateway = FakeGateway(clock=_utcnow)
    gateway.missing_forums.add(ALLIANCE)
    cycle = _cycle(_bot(42), store, gateway, _sheet("Stormcallers"), [])

    assert asyncio.run(cycle.run_once()) == []
    assert gateway.created == []


def test_unreadable_settings_mark_component_unhealthy(settings_path):
    settings_path.write_text("{not json", encoding="utf-8")
    cycle = _cycle(_bot(42), GuildSettingsStore(settings_path), FakeGateway(clock=_utcnow), [], [])

    assert asyncio.run(cycle.run_once()) == []
    assert health.components_snapshot()[HEALTH_COMPONENT]["ok"] is False


def test_manual_run_waits_for_cycle_in_progress(settings_path):
    store = GuildSettingsStore(settings_path)
    store.save(make_settings(guild_id=42))
    gateway = FakeGateway(clock=_utcnow)
    gateway.add_thread(ALLIANCE, "<Gone> - Casual")
    order: list[str] = []

    async def runner():
        release = asyncio.Event()
        sheet = _sheet("Stormcallers")

        async def fetch_grid(spreadsheet_id, range_expr):
            order.append("fetch")
            await release.wait()
            return sheet

        cycle = GuildSyncCycle(
            _bot(42), store=store, gateway=gateway, fetch_grid=fetch_grid, sleep=SleepRecorder()
        )
        scheduled = asyncio.create_task(cycle.run_once())
        while not order:
            await asyncio.sleep(0)
        assert cycle.running

        manual = asyncio.create_task(cycle.run_guild(42))
        await asyncio.sleep(0.01)
        assert not manual.done()
        assert order == ["fetch"]

        release.set()
        first = await scheduled
        second = await manual
        return first, second

    first, second = asyncio.run(runner())

    assert first[0].created == 1
    assert first[0].deleted == 1
    assert second is not None
    assert (second.created, second.deleted) == (0, 0)
