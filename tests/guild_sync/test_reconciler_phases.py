from __future__ import annotations

import asyncio

from modules.guild_sync.outcomes import PlatformError, RateLimited
from modules.guild_sync.phases import (
    PHASE_DUPLICATES,
    PHASE_NEW_ENTRIES,
    PHASE_REPOST,
    PHASE_SIMILAR,
    PHASE_UNMATCHED,
    REASON_ALERT,
    REASON_CREATE,
    REASON_DUPLICATE,
    REASON_REPOST,
    REASON_UNMATCHED,
)

from sync_fakes import ALLIANCE, HORDE, MOD, grid, make_settings, row


def _letters(count: int) -> list[str]:
    return [f"Guild {chr(ord('A') + i)}" for i in range(count)]


def test_duplicates_keep_first_thread_per_normalised_title(gateway, make_reconciler):
    for title in ["Alpha", "alpha ", " ALPHA", "Beta"]:
        gateway.add_thread(ALLIANCE, title)
    reconciler = make_reconciler(grid())

    report = asyncio.run(reconciler.remove_duplicates(ALLIANCE))

    assert gateway.titles(ALLIANCE) == ["Alpha", "Beta"]
    assert report.deleted == 2
    assert {reason for _, reason in gateway.deleted} == {REASON_DUPLICATE}
    assert reconciler.fetches == []


def test_delete_failure_skips_only_that_thread(gateway, make_reconciler):
    gateway.add_thread(ALLIANCE, "Alpha")
    stuck = gateway.add_thread(ALLIANCE, "alpha")
    gateway.add_thread(ALLIANCE, "ALPHA")
    gateway.delete_failures.add(stuck.id)

    report = asyncio.run(make_reconciler(grid()).remove_duplicates(ALLIANCE))

    assert gateway.titles(ALLIANCE) == ["Alpha", "alpha"]
    assert report.deleted == 1
    assert report.failures == 1
    assert report.ok


def test_unmatched_uses_loose_containment_and_freshness(gateway, make_reconciler):
    sheet = grid(
        row("Stormcallers"),
        row("Dawn's Edge"),
        row("Old Guard", days_ago=20),
    )
    gateway.add_thread(ALLIANCE, "<Stormcallers> - Casual")
    gateway.add_thread(ALLIANCE, "<Stormcallers Reborn> - Casual")
    gateway.add_thread(ALLIANCE, "<Dawns Edge> - Casual")
    gateway.add_thread(ALLIANCE, "<Old Guard> - Casual")
    gateway.add_thread(ALLIANCE, "Random chatter")

    report = asyncio.run(make_reconciler(sheet).remove_unmatched(ALLIANCE))

    assert gateway.titles(ALLIANCE) == [
        "<Stormcallers> - Casual",
        "<Stormcallers Reborn> - Casual",
        "<Dawns Edge> - Casual",
    ]
    assert report.deleted == 2
    assert {reason for _, reason in gateway.deleted} == {REASON_UNMATCHED}


def test_sheet_fetch_failure_deletes_nothing(gateway, make_reconciler):
    gateway.add_thread(ALLIANCE, "<Stormcallers> - Casual", age_hours=5)
    gateway.add_thread(HORDE, "<Ashbringers> - PvP", age_hours=5)
    reconciler = make_reconciler(RuntimeError("quota exceeded"))

    report = asyncio.run(reconciler.run())

    assert gateway.deleted == []
    assert gateway.created == []
    failed = {p.phase for p in report.phases if not p.ok}
    assert failed == {PHASE_UNMATCHED, PHASE_REPOST, PHASE_NEW_ENTRIES}
    assert all("spreadsheet fetch failed" in p.error for p in report.phases if not p.ok)


def test_empty_sheet_is_treated_as_missing_columns(gateway, make_reconciler):
    gateway.add_thread(ALLIANCE, "<Stormcallers> - Casual")

    report = asyncio.run(make_reconciler([]).remove_unmatched(ALLIANCE))

    assert gateway.deleted == []
    assert "Guild Name" in report.error


def test_missing_columns_abort_only_the_phase_that_needs_them(gateway, make_reconciler):
    headers = ["Timestamp", "Guild Name", "Guild Type"]
    sheet = [headers, [row("Stormcallers")[0], "Stormcallers", "Casual"]]
    gateway.add_thread(ALLIANCE, "<Stormcallers> - Casual")
    gateway.add_thread(ALLIANCE, "<Gone> - Casual")

    report = asyncio.run(make_reconciler(sheet).run())

    by_phase = {(p.phase, p.channel_id): p for p in report.phases}
    assert by_phase[(PHASE_UNMATCHED, ALLIANCE)].ok
    assert by_phase[(PHASE_UNMATCHED, ALLIANCE)].deleted == 1
    new_entries = by_phase[(PHASE_NEW_ENTRIES, None)]
    assert not new_entries.ok
    assert "Faction" in new_entries.error
    assert gateway.created == []


def test_new_entries_respect_cap_and_route_by_faction(gateway, make_reconciler):
    names = _letters(15)
    sheet = grid(*[row(name, "Horde" if i % 2 else "Alliance") for i, name in enumerate(names)])
    sheet.append(row("Stale Guild", days_ago=30))
    sheet.append(row("Neutral Guild", "Pandaren"))

    first = asyncio.run(make_reconciler(sheet).post_new_entries(ALLIANCE, HORDE))
    assert first.created == 10
    assert [title for _, title, _, _ in gateway.created] == [
        f"<{name}> - Casual" for name in names[:10]
    ]
    assert {reason for *_, reason in gateway.created} == {REASON_CREATE}
    assert gateway.titles(ALLIANCE)[0] == "<Guild A> - Casual"
    assert gateway.titles(HORDE)[0] == "<Guild B> - Casual"

    second = asyncio.run(make_reconciler(sheet).post_new_entries(ALLIANCE, HORDE))
    assert second.created == 5

    third = asyncio.run(make_reconciler(sheet).post_new_entries(ALLIANCE, HORDE))
    assert third.created == 0
    assert gateway.create_attempts == 15


def test_create_timeout_stops_the_phase(gateway, make_reconciler):
    async def hang_on_second(attempt: int) -> None:
        if attempt == 2:
            await asyncio.sleep(5)

    gateway.create_hook = hang_on_second
    sheet = grid(*[row(name) for name in _letters(3)])

    reconciler = make_reconciler(sheet, create_timeout=0.05)

    report = asyncio.run(reconciler.post_new_entries(ALLIANCE, HORDE))

    assert report.created == 1
    assert report.failures == 1
    assert "timed out" in report.stopped
    assert gateway.create_attempts == 2
    assert gateway.titles(ALLIANCE) == ["<Guild A> - Casual"]


def test_rate_limit_sleeps_for_hint_then_skips_item(gateway, make_reconciler, sleeps):
    async def limited_once(attempt: int) -> None:
        if attempt == 1:
            raise PlatformError(RateLimited(retry_after=3.5))

    gateway.create_hook = limited_once
    sheet = grid(*[row(name) for name in _letters(3)])

    report = asyncio.run(make_reconciler(sheet).post_new_entries(ALLIANCE, HORDE))

    assert sleeps.calls == [3.5]
    assert report.created == 2
    assert report.stopped is None
    assert gateway.titles(ALLIANCE) == ["<Guild B> - Casual", "<Guild C> - Casual"]


def test_rate_limit_without_hint_uses_default_delay(gateway, make_reconciler, sleeps):
    async def limited(attempt: int) -> None:
        raise PlatformError(RateLimited(retry_after=0))

    gateway.create_hook = limited
    reconciler = make_reconciler(grid(row("Stormcallers")), rate_limit_default=7.0)

    asyncio.run(reconciler.post_new_entries(ALLIANCE, HORDE))

    assert sleeps.calls == [7.0]


def test_repost_replaces_only_the_oldest_eligible_thread(gateway, make_reconciler):
    sheet = grid(row("Alpha"), row("Beta"), row("Gamma"))
    gateway.add_thread(ALLIANCE, "<Ghost> - Casual", age_hours=20)
    gateway.add_thread(ALLIANCE, "<Alpha> - Casual", age_hours=5)
    beta = gateway.add_thread(ALLIANCE, "<Beta> - Casual", age_hours=10)
    gateway.add_thread(ALLIANCE, "<Gamma> - Casual", age_hours=0.1)
    gateway.add_thread(ALLIANCE, "<Unknown age> - Casual", age_hours=None)

    report = asyncio.run(make_reconciler(sheet).repost_oldest(ALLIANCE))

    assert report.deleted == 1
    assert report.created == 1
    assert [thread.id for thread, _ in gateway.deleted] == [beta.id]
    assert [(title, reason) for _, title, _, reason in gateway.created] == [
        ("<Beta> - Casual", REASON_REPOST)
    ]
    assert gateway.titles(ALLIANCE).count("<Beta> - Casual") == 1


def test_repost_skips_when_no_thread_is_old_enough(gateway, make_reconciler):
    gateway.add_thread(ALLIANCE, "<Alpha> - Casual", age_hours=0.2)
    reconciler = make_reconciler(grid(row("Alpha")))

    report = asyncio.run(reconciler.repost_oldest(ALLIANCE))

    assert report.created == report.deleted == 0
    assert reconciler.fetches == []


def test_similar_names_alert_once(gateway, make_reconciler):
    gateway.add_thread(ALLIANCE, "<Stormcallers> - Casual")
    gateway.add_thread(ALLIANCE, "<Storm Callers> - Casual")

    first = asyncio.run(make_reconciler(grid()).flag_similar_names(ALLIANCE))

    assert first.alerts == 1
    channel_id, title, post, reason = gateway.created[0]
    assert channel_id == MOD
    assert reason == REASON_ALERT
    assert title == "Similar Guild Names - <stormcallers> - casual - 2026-10-18 12:00"
    assert "Potentially Similar Guild Names Found for: <stormcallers> - casual" in post.content
    assert "<Storm Callers> - Casual (ID:" in post.content

    second = asyncio.run(make_reconciler(grid()).flag_similar_names(ALLIANCE))

    assert second.alerts == 0
    assert len(gateway.titles(MOD)) == 1


def test_existing_moderator_discussion_suppresses_alert(gateway, make_reconciler):
    gateway.add_thread(HORDE, "<Ashbringers> - PvP")
    gateway.add_thread(HORDE, "<Ash Bringers> - PvP")
    gateway.add_thread(MOD, "Recruitment questions", messages=["Ash Bringers is a rename, fine to keep"])

    report = asyncio.run(make_reconciler(grid()).flag_similar_names(HORDE))

    assert report.alerts == 0
    assert gateway.created == []


def test_run_executes_phases_in_order_and_is_idempotent(gateway, make_reconciler):
    sheet = grid(row("Stormcallers"), row("Ashbringers", "Horde", scope="PvP"))
    gateway.add_thread(ALLIANCE, "<Forgotten> - Casual")

    first = asyncio.run(make_reconciler(sheet).run())

    assert [p.phase for p in first.phases] == [
        PHASE_DUPLICATES,
        PHASE_DUPLICATES,
        PHASE_UNMATCHED,
        PHASE_UNMATCHED,
        PHASE_REPOST,
        PHASE_REPOST,
        PHASE_NEW_ENTRIES,
        PHASE_SIMILAR,
        PHASE_SIMILAR,
    ]
    assert (first.created, first.deleted, first.alerts, first.failed_phases) == (2, 1, 0, 0)
    assert gateway.titles(ALLIANCE) == ["<Stormcallers> - Casual"]
    assert gateway.titles(HORDE) == ["<Ashbringers> - PvP"]

    second = asyncio.run(make_reconciler(sheet).run())

    assert (second.created, second.deleted, second.alerts) == (0, 0, 0)
    assert second.summary() == "guild=42 • created=0 • deleted=0 • alerts=0 • failed_phases=0"


def test_sheet_is_refetched_by_every_phase_that_reads_rows(gateway, make_reconciler):
    settings = make_settings(sheet_range="Sheet1!A:F")
    reconciler = make_reconciler(grid(row("Stormcallers")), settings=settings)

    asyncio.run(reconciler.run())

    # unmatched (alliance, horde) and new entries; repost finds no old threads
    assert reconciler.fetches == [("sheet-123", "Sheet1!A:F")] * 3


def test_long_guild_names_are_not_reposted_every_cycle(gateway, make_reconciler):
    name = "Stormcallers of the Eastern Reach " + "and Beyond " * 7
    sheet = grid(row(name))

    first = asyncio.run(make_reconciler(sheet).run())
    second = asyncio.run(make_reconciler(sheet).run())

    assert (first.created, first.deleted) == (1, 0)
    assert (second.created, second.deleted) == (0, 0)
    assert len(gateway.titles(ALLIANCE)) == 1
    assert len(gateway.titles(ALLIANCE)[0]) <= 100


def test_repost_timeout_after_delete_stops_the_phase(gateway, make_reconciler):
    async def hang(attempt: int) -> None:
        await asyncio.sleep(5)

    gateway.create_hook = hang
    alpha = gateway.add_thread(ALLIANCE, "<Alpha> - Casual", age_hours=20)
    gateway.add_thread(ALLIANCE, "<Beta> - Casual", age_hours=10)
    reconciler = make_reconciler(grid(row("Alpha"), row("Beta")), repost_timeout=0.05)

    report = asyncio.run(reconciler.repost_oldest(ALLIANCE))

    assert "timed out" in report.stopped
    assert (report.deleted, report.created, report.failures) == (1, 0, 1)
    assert [thread.id for thread, _ in gateway.deleted] == [alpha.id]
    assert gateway.create_attempts == 1
    assert gateway.titles(ALLIANCE) == ["<Beta> - Casual"]


def test_alert_timeout_stops_the_phase(gateway, make_reconciler):
    async def hang(attempt: int) -> None:
        await asyncio.sleep(5)

    gateway.create_hook = hang
    for title in (
        "<Stormcallers> - Casual",
        "<Storm Callers> - Casual",
        "<Ashbringers> - Casual",
        "<Ash Bringers> - Casual",
    ):
        gateway.add_thread(ALLIANCE, title)
    reconciler = make_reconciler(grid(), create_timeout=0.05)

    report = asyncio.run(reconciler.flag_similar_names(ALLIANCE))

    assert "timed out" in report.stopped
    assert report.alerts == 0
    assert gateway.create_attempts == 1
    assert gateway.titles(MOD) == []
