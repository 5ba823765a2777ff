import asyncio
import threading

import pytest

from tfttrack.assets import build_index
from tfttrack.errors import InvalidPayload
from tfttrack.matches import MatchService, parse_previews_request
from tfttrack.previews import REASON_NOT_FOUND, build_player_previews, missing_preview, preview_needs_icons

from conftest import ASSET_BASE, make_riot, match_payload, participant


def test_match_is_fetched_once_then_served_from_cache(tracker, fake_riot, store):
    fake_riot.add_match("NA1_1234567890", [participant("p1", 2), participant("p2", 1)])

    first = asyncio.run(tracker.matches.get_or_fetch_match("NA1_1234567890"))
    assert first["cached"] is False
    assert [p["puuid"] for p in first["participants"]] == ["p2", "p1"]
    assert first["gameDatetimeISO"].startswith("2023-11-14T22:13:20")
    assert store.get_match_cache("NA1_1234567890") is not None

    second = asyncio.run(tracker.matches.get_or_fetch_match("NA1_1234567890"))
    assert second["cached"] is True
    assert second["queueId"] == 1100
    assert fake_riot.count("/tft/match/v1/matches/NA1") == 1


def test_upstream_down_returns_none_and_persists_nothing(tracker, fake_riot, store):
    fake_riot.down = True
    assert asyncio.run(tracker.matches.get_or_fetch_match("EUW1_42")) is None
    assert store.get_match_cache("EUW1_42") is None


@pytest.mark.parametrize("bad", ["", "euw1_1", "EUW1-1", "EUW1_", "_123", "EUW1_12a"])
def test_invalid_match_id_is_rejected(tracker, bad):
    with pytest.raises(InvalidPayload):
        asyncio.run(tracker.matches.get_or_fetch_match(bad))


def test_insert_match_cache_is_idempotent(store):
    payload = match_payload("EUW1_7", [participant("a", 1)])
    assert store.insert_match_cache("EUW1_7", "EUROPE", None, 1100, payload, {"a": {"placement": 1}}) is True
    assert store.insert_match_cache("EUW1_7", "EUROPE", None, 1100, {"other": True}, {}) is False
    row = store.get_match_cache("EUW1_7")
    assert row["data"] == payload
    assert row["player_previews"] == {"a": {"placement": 1}}


def test_cached_match_previews_are_repaired_on_read(tracker, store, fake_riot):
    parts = [participant("a", 1), participant("b", 2)]
    payload = match_payload("EUW1_9", parts)
    stale = build_player_previews(parts, build_index({}, ASSET_BASE))
    store.insert_match_cache("EUW1_9", "EUROPE", None, 1100, payload, {"a": stale["a"]})

    result = asyncio.run(tracker.matches.get_or_fetch_match("EUW1_9"))
    assert result["cached"] is True
    stored = store.get_match_cache("EUW1_9")["player_previews"]
    assert set(stored) == {"a", "b"}
    assert not any(preview_needs_icons(p) for p in stored.values())
    assert fake_riot.calls == []


def test_previews_mix_cached_fetched_and_missing(tracker, store, fake_riot):
    cached_parts = [participant("abc", 3), participant("zzz", 1)]
    store.insert_match_cache(
        "NA1_1",
        "AMERICAS",
        None,
        1100,
        match_payload("NA1_1", cached_parts),
        build_player_previews(cached_parts, build_index({}, ASSET_BASE)),
    )
    fake_riot.add_match("NA1_2", [participant("ABC", 5), participant("yyy", 2)])

    out = asyncio.run(tracker.matches.get_previews_for_player("abc", ["NA1_1", "NA1_2", "NA1_3"], "NA1"))

    assert list(out) == ["NA1_1", "NA1_2", "NA1_3"]
    assert out["NA1_1"]["placement"] == 3
    assert not preview_needs_icons(out["NA1_1"])
    assert out["NA1_2"]["placement"] == 5
    assert out["NA1_3"] == missing_preview("abc")
    assert fake_riot.count("/tft/match/v1/matches/NA1_1") == 0
    assert store.get_match_cache("NA1_2") is not None
    assert store.get_match_cache("NA1_3") is None
    hydrated = store.get_match_cache("NA1_1")["player_previews"]["abc"]
    assert not preview_needs_icons(hydrated)


def test_previews_without_api_key_are_placeholders(cfg, store, catalog, fake_riot):
    fake_riot.add_match("EUW1_5", [participant("abc", 1)])
    service = MatchService(store, make_riot(fake_riot, api_key=None), catalog)
    out = asyncio.run(service.get_previews_for_player("abc", ["EUW1_5", "EUW1_6"]))
    assert set(out) == {"EUW1_5", "EUW1_6"}
    assert all(p["reason"] == REASON_NOT_FOUND for p in out.values())
    assert fake_riot.calls == []


def test_preview_fetch_failure_is_isolated(tracker, fake_riot, monkeypatch):
    fake_riot.add_match("EUW1_1", [participant("abc", 4)])
    fake_riot.add_match("EUW1_2", [participant("abc", 6)])
    original = tracker.matches._fetch_preview

    async def flaky(match_id, *args):
        if match_id == "EUW1_2":
            raise RuntimeError("boom")
        return await original(match_id, *args)

    monkeypatch.setattr(tracker.matches, "_fetch_preview", flaky)
    out = asyncio.run(tracker.matches.get_previews_for_player("abc", ["EUW1_1", "EUW1_2"]))
    assert out["EUW1_1"]["placement"] == 4
    assert out["EUW1_2"]["reason"] == REASON_NOT_FOUND


def test_parse_previews_request():
    ids, puuid, region = parse_previews_request(
        {"puuid": "  AbC ", "matchIds": ["EUW1_1", "bad", 7] + [f"EUW1_{n}" for n in range(2, 15)], "region": "EUW1"}
    )
    assert puuid == "abc"
    assert region == "EUW1"
    assert ids[0] == "EUW1_1" and len(ids) == 10

    for body in [None, [], {"puuid": "abc"}, {"puuid": "", "matchIds": ["EUW1_1"]}, {"puuid": "abc", "matchIds": ["nope"]}]:
        with pytest.raises(InvalidPayload):
            parse_previews_request(body)


def test_cache_recent_matches_skips_known_ids(tracker, fake_riot, store):
    fake_riot.match_ids["abc"] = ["EUW1_10", "EUW1_11"]
    fake_riot.add_match("EUW1_10", [participant("abc", 2)])
    fake_riot.add_match("EUW1_11", [participant("abc", 7)], game_datetime=1_700_000_100_000)

    assert asyncio.run(tracker.matches.cache_recent_matches_for_puuid("abc")) == 2
    assert asyncio.run(tracker.matches.cache_recent_matches_for_puuid("abc")) == 0

    recent = asyncio.run(tracker.matches.recent_matches_from_cache("abc"))
    assert [m["matchId"] for m in recent] == ["EUW1_11", "EUW1_10"]
    assert recent[0]["placement"] == 7
    assert recent[0]["gameDateTime"] == 1_700_000_100_000


def test_concurrent_preview_merges_keep_every_key(store):
    store.insert_match_cache("EUW1_77", "EUROPE", None, 1100, match_payload("EUW1_77", []), {})
    rounds = 40

    def writer(worker):
        for n in range(rounds):
            store.merge_player_previews("EUW1_77", {f"w{worker}-{n}": {"placement": n}})

    threads = [threading.Thread(target=writer, args=(w,)) for w in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    previews = store.get_match_cache("EUW1_77")["player_previews"]
    assert len(previews) == 4 * rounds
    assert previews["w3-39"] == {"placement": 39}


def test_merge_into_missing_row_is_a_no_op(store):
    store.merge_player_previews("EUW1_404", {"a": {"placement": 1}})
    assert store.get_match_cache("EUW1_404") is None
