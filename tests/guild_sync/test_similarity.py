from __future__ import annotations

from modules.guild_sync.similarity import (
    GENERAL_THRESHOLD,
    extract_guild_name,
    find_similar_clusters,
    mentions_any,
    similarity,
)


def test_similarity_ignores_case_and_whitespace():
    assert similarity("Stormcallers", "Storm Callers") >= GENERAL_THRESHOLD
    assert similarity("STORM callers", "stormcallers") == 1.0
    assert similarity("Stormcallers", "Ashbringers") < GENERAL_THRESHOLD


def test_extract_guild_name_strips_scope_and_brackets():
    assert extract_guild_name("<Stormcallers> - Casual") == "Stormcallers"
    assert extract_guild_name("Plain Title") == "Plain Title"
    assert extract_guild_name(None) == ""


def test_clusters_are_keyed_by_the_earlier_title():
    titles = ["<Stormcallers> - Casual", "<Storm Callers> - Casual", "<Ashbringers> - PvP"]
    clusters = find_similar_clusters(titles, title_of=lambda t: t, threshold=0.8)

    assert len(clusters) == 1
    cluster = clusters[0]
    assert cluster.key == "<stormcallers> - casual"
    assert cluster.members == ["<Storm Callers> - Casual"]
    assert cluster.guild_names(lambda t: t) == ["storm callers"]


def test_no_clusters_for_distinct_titles():
    titles = ["<Ashbringers> - PvP", "<Moonwardens> - Casual"]
    assert find_similar_clusters(titles, title_of=lambda t: t, threshold=0.8) == []


def test_mentions_any_is_case_insensitive():
    corpus = ["⚠️ **Potentially Similar Guild Names Found for: x**\n - <Storm Callers> - Raiding"]
    assert mentions_any(corpus, ["storm callers"]) is True
    assert mentions_any(corpus, ["ashbringers"]) is False
    assert mentions_any(corpus, [""]) is False
