from __future__ import annotations

import json

import pytest

from modules.guild_sync.settings import GuildSettings, GuildSettingsStore

from sync_fakes import make_settings


def test_missing_file_yields_default_settings(settings_path):
    store = GuildSettingsStore(settings_path)

    settings = store.load(42)

    assert settings == GuildSettings(guild_id=42)
    assert not settings.is_complete
    assert store.load_all() == {}
    assert settings.missing_fields() == [
        "ALLIANCE_CHANNEL_ID",
        "HORDE_CHANNEL_ID",
        "MOD_CHANNEL_ID",
        "SPREADSHEET_ID",
        "SHEET_RANGE",
    ]


def test_save_round_trips_and_replaces_atomically(settings_path):
    store = GuildSettingsStore(settings_path)
    original = make_settings(guild_id=42)

    store.save(original)
    store.save(make_settings(guild_id=7, mod_channel_id=None))

    assert store.load(42) == original
    assert store.load_all()[7].mod_channel_id is None
    assert not settings_path.with_name(settings_path.name + ".tmp").exists()

    document = json.loads(settings_path.read_text(encoding="utf-8"))
    assert sorted(document) == ["42", "7"]
    assert document["42"]["ALLIANCE_CHANNEL_ID"] == "1001"
    assert document["7"]["MOD_CHANNEL_ID"] == ""
    assert document["42"]["MAX_NEW_THREADS_PER_CYCLE"] == 10


def test_update_changes_only_named_fields(settings_path):
    store = GuildSettingsStore(settings_path)
    store.save(make_settings(guild_id=42))

    updated = store.update(42, max_new_threads_per_cycle=3, image_column_header="Banner")

    assert updated.max_new_threads_per_cycle == 3
    assert store.load(42).image_column_header == "Banner"
    assert store.load(42).spreadsheet_id == "sheet-123"


def test_bad_values_fall_back_to_defaults():
    settings = GuildSettings.from_record(
        42,
        {
            "ALLIANCE_CHANNEL_ID": "<#123>",
            "HORDE_CHANNEL_ID": 456,
            "THREAD_AGE_LIMIT_HOURS": "soon",
            "MAX_ENTRY_AGE_DAYS": -3,
            "MAX_NEW_THREADS_PER_CYCLE": "0",
        },
    )

    assert settings.alliance_channel_id is None
    assert settings.horde_channel_id == 456
    assert settings.thread_age_limit_hours == 0.5
    assert settings.max_entry_age_days == 14.0
    assert settings.max_new_threads_per_cycle == 10


def test_malformed_entries_are_skipped(settings_path):
    settings_path.write_text(
        json.dumps({"42": {"SPREADSHEET_ID": "abc"}, "not-a-guild": {}, "7": "oops"}),
        encoding="utf-8",
    )

    loaded = GuildSettingsStore(settings_path).load_all()

    assert list(loaded) == [42]
    assert loaded[42].spreadsheet_id == "abc"


@pytest.mark.parametrize("payload", ["{broken", "[1, 2, 3]"])
def test_unreadable_document_raises_value_error(settings_path, payload):
    settings_path.write_text(payload, encoding="utf-8")

    with pytest.raises(ValueError):
        GuildSettingsStore(settings_path).load_all()
