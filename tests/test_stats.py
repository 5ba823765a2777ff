import asyncio

from tfttrack.stats import (
    UNRANKED_ICON,
    average_placement,
    build_leaderboard,
    pick_ranked_entry,
    rank_icon_url,
)

from conftest import participant


def add_player(store, riot_id="Jay#EUW", puuid="p1", **extra):
    fields = {
        "riot_id": riot_id,
        "region": "EUW1",
        "slug": riot_id.lower().replace("#", "-") + "-euw1",
        "puuid": puuid,
    }
    fields.update(extra)
    return store.insert_tracked_player(fields)


def test_average_placement_rounds_to_two_places():
    assert average_placement([1, 4, 8]) == 4.33
    assert average_placement([1, 1, 2, 2, 3, 3, 2, 3]) == 2.13
    assert average_placement([1, 2, 3, 3, 3, 3, 3, 3]) == 2.63
    assert average_placement([]) is None


def test_ensure_average_placement_persists(tracker, store, fake_riot):
    player = add_player(store)
    fake_riot.match_ids["p1"] = ["EUW1_1", "EUW1_2", "EUW1_3"]
    for n, place in zip((1, 2, 3), (1, 4, 8)):
        fake_riot.add_match(f"EUW1_{n}", [participant("p1", place), participant("other", 9 - place)])

    assert asyncio.run(tracker.stats.ensure_average_placement(player)) == 4.33
    row = store.get_tracked_player(player["id"])
    assert row["avg_placement_10"] == 4.33
    assert row["avg_placement_updated_at"]

    calls = len(fake_riot.calls)
    assert asyncio.run(tracker.stats.ensure_average_placement(row)) == 4.33
    assert len(fake_riot.calls) == calls


def test_no_recent_matches_leaves_average_unset(tracker, store):
    player = add_player(store)
    assert asyncio.run(tracker.stats.ensure_average_placement(player)) is None
    assert store.get_tracked_player(player["id"])["avg_placement_updated_at"] is None


def test_ranked_queue_is_picked_over_turbo():
    entries = [
        {"queueType": "RANKED_TFT_TURBO", "tier": "CHALLENGER", "rank": "I", "leaguePoints": 900},
        {"queueType": "RANKED_TFT", "tier": "GOLD", "rank": "II", "leaguePoints": 40},
    ]
    assert pick_ranked_entry(entries)["tier"] == "GOLD"
    assert pick_ranked_entry([{"queueType": "PAIRS"}]) is None
    assert pick_ranked_entry(None) is None


def test_ensure_ranked_cache_updates_row(tracker, store, fake_riot):
    player = add_player(store)
    fake_riot.league["p1"] = [
        {"queueType": "RANKED_TFT_TURBO", "tier": "CHALLENGER", "rank": "I", "leaguePoints": 900},
        {"queueType": "RANKED_TFT", "tier": "GOLD", "rank": "II", "leaguePoints": 40},
    ]
    result = asyncio.run(tracker.stats.ensure_ranked_cache(player))
    assert result["status"] == "updated"
    assert result["ranked"] == {"tier": "GOLD", "rank": "II", "leaguePoints": 40}
    assert result["rankIconUrl"] == rank_icon_url("GOLD")
    row = store.get_tracked_player(player["id"])
    assert row["ranked_queue"] == "RANKED_TFT"

    again = asyncio.run(tracker.stats.ensure_ranked_cache(row))
    assert again["status"] == "cached"


def test_ranked_upstream_failure_serves_stored_values(tracker, store, fake_riot):
    player = add_player(store, ranked_tier="SILVER", ranked_rank="I", ranked_lp=10, ranked_queue="RANKED_TFT")
    fake_riot.down = True
    result = asyncio.run(tracker.stats.ensure_ranked_cache(player, force=True))
    assert result["status"] == "cached"
    assert result["ranked"]["tier"] == "SILVER"
    assert store.get_tracked_player(player["id"])["ranked_updated_at"] is None


def test_live_status_not_in_game(tracker, store):
    player = add_player(store)
    live = asyncio.run(tracker.stats.get_live_status(player))
    assert live == {"inGame": False, "gameStartTime": None, "participantCount": None}
    row = store.get_tracked_player(player["id"])
    assert row["live_in_game"] is False
    assert row["live_updated_at"]


def test_live_status_in_game(tracker, store, fake_riot):
    player = add_player(store)
    fake_riot.live["p1"] = {"gameStartTime": 1_700_000_000_000, "participants": [{}] * 8}
    live = asyncio.run(tracker.stats.get_live_status(player))
    assert live == {"inGame": True, "gameStartTime": 1_700_000_000_000, "participantCount": 8}


def test_leaderboard_sorts_by_rank_then_riot_id():
    rows = [
        {"id": "1", "riot_id": "b#EUW", "slug": "b", "region": "EUW1", "ranked_tier": "GOLD", "ranked_rank": "I", "ranked_lp": 10},
        {"id": "2", "riot_id": "a#EUW", "slug": "a", "region": "EUW1"},
        {"id": "3", "riot_id": "c#EUW", "slug": "c", "region": "EUW1", "ranked_tier": "MASTER", "ranked_rank": "I", "ranked_lp": 0},
        {"id": "4", "riot_id": "d#EUW", "slug": "d", "region": "EUW1", "ranked_tier": "GOLD", "ranked_rank": "I", "ranked_lp": 55},
        {"id": "5", "riot_id": "0#EUW", "slug": "0", "region": "EUW1"},
    ]
    board = build_leaderboard(rows)
    assert [r["id"] for r in board] == ["3", "4", "1", "5", "2"]
    assert board[0]["rankIconUrl"].endswith("/master.png")
    assert board[-1]["ranked"] is None and board[-1]["rankIconUrl"] is None
    assert "_score" not in board[0]


def test_leaderboard_is_cached_until_invalidated(tracker, store):
    add_player(store)
    first = asyncio.run(tracker.stats.get_leaderboard())
    add_player(store, riot_id="Kay#EUW", puuid="p2")
    assert asyncio.run(tracker.stats.get_leaderboard()) is first
    tracker.stats.invalidate_leaderboard()
    assert len(asyncio.run(tracker.stats.get_leaderboard())) == 2


def test_profile_built_from_cache_only(tracker, store, fake_riot):
    player = add_player(store, ranked_tier="GOLD", ranked_rank="IV", ranked_lp=1)
    fake_riot.match_ids["p1"] = ["EUW1_1", "EUW1_2"]
    fake_riot.add_match("EUW1_1", [participant("p1", 2)])
    fake_riot.add_match("EUW1_2", [participant("p1", 6)], queue_id=1090)
    asyncio.run(tracker.matches.cache_recent_matches_for_puuid("p1"))
    calls = len(fake_riot.calls)

    profile = asyncio.run(tracker.stats.build_profile(player))
    assert len(fake_riot.calls) == calls
    assert len(profile["recentMatches"]) == 2
    # the Hyper Roll game is left out of favourites
    assert profile["favoriteUnit"]["characterId"] == "TFT13_Jinx"
    assert profile["favoriteUnit"]["count"] == 1
    assert profile["favoriteUnit"]["champIconUrl"].endswith(".png")
    assert profile["favoriteItems"][0]["itemName"] == "TFT_Item_BFSword"
    assert profile["favoriteTraits"][0]["name"] == "TFT13_Sniper"
    assert profile["needsRankedRefresh"] is False
    assert profile["needsMatchesRefresh"] is False


def test_unranked_profile_uses_unranked_icon(tracker, store):
    player = add_player(store)
    profile = asyncio.run(tracker.stats.build_profile(player))
    assert profile["rankIconUrl"] == UNRANKED_ICON
    assert profile["needsRankedRefresh"] is True
    assert tracker.stats.profile_is_stale(profile) is True


def test_ranked_info_is_served_from_process_cache(tracker, store, fake_riot):
    player = add_player(store)
    fake_riot.league["p1"] = [{"queueType": "RANKED_TFT", "tier": "GOLD", "rank": "II", "leaguePoints": 40}]
    first = asyncio.run(tracker.stats.get_ranked_info(player, force=True))
    assert first["status"] == "updated"
    calls = fake_riot.count("/tft/league/")
    again = asyncio.run(tracker.stats.get_ranked_info(player))
    assert again["status"] == "cached"
    assert again["ranked"] == first["ranked"]
    assert fake_riot.count("/tft/league/") == calls


def test_recent_matches_fall_back_to_cache(tracker, store, fake_riot):
    fake_riot.match_ids["p1"] = ["EUW1_1"]
    fake_riot.add_match("EUW1_1", [participant("p1", 5)])
    live = asyncio.run(tracker.matches.get_recent_matches("p1"))
    assert live == [{"matchId": "EUW1_1", "placement": 5, "gameStartTime": None, "gameDateTime": 1_700_000_000_000}]

    asyncio.run(tracker.matches.cache_recent_matches_for_puuid("p1"))
    fake_riot.match_ids["p1"] = []
    cached = asyncio.run(tracker.matches.get_recent_matches("p1"))
    assert [m["matchId"] for m in cached] == ["EUW1_1"]
    assert cached[0]["placement"] == 5
    assert asyncio.run(tracker.matches.get_recent_matches(None)) == []


def test_stale_profile_triggers_one_background_sync(tracker, store, fake_riot):
    add_player(store)
    fake_riot.add_account("Jay#EUW", "p1")
    fake_riot.league["p1"] = [{"queueType": "RANKED_TFT", "tier": "GOLD", "rank": "II", "leaguePoints": 40}]

    async def run():
        first = await tracker.get_player_profile("jay-euw-euw1")
        await tracker.drain()
        second = await tracker.get_player_profile("JAY-EUW-EUW1")
        await tracker.drain()
        return first, second

    first, second = asyncio.run(run())
    assert first["ranked"] is None
    assert second["ranked"]["tier"] == "GOLD"
    assert fake_riot.count("/riot/account/") == 1


def test_profile_for_unknown_slug_is_empty(tracker):
    profile = asyncio.run(tracker.get_player_profile("nobody"))
    assert profile["player"] is None
    assert profile["recentMatches"] == []


def test_ranked_falls_back_to_summoner_endpoint(tracker, store, fake_riot):
    player = add_player(store, summoner_id="s1")
    fake_riot.league_by_summoner["s1"] = [{"queueType": "RANKED_TFT", "tier": "PLATINUM", "rank": "III", "leaguePoints": 12}]
    result = asyncio.run(tracker.stats.ensure_ranked_cache(player, force=True))
    assert result["status"] == "updated"
    assert result["ranked"]["tier"] == "PLATINUM"
    assert fake_riot.count("/tft/league/v1/entries/by-summoner/s1") == 1
    assert store.get_tracked_player(player["id"])["ranked_queue"] == "RANKED_TFT"
