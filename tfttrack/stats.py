from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from .assets import AssetCatalog, sanitize_icon_url
from .caches import TtlCache
from .matches import MatchService, participants_of
from .previews import hydrate_preview_icons
from .riot import RiotClient
from .store import Store, is_fresh, now_iso


log = logging.getLogger(__name__)

RANKED_QUEUE_PICK_ORDER = ("RANKED_TFT", "RANKED_TFT_DOUBLE_UP", "RANKED_TFT_TURBO")
RANKED_QUEUE_IDS = frozenset({1100})

TIER_ORDER = {
    "CHALLENGER": 9,
    "GRANDMASTER": 8,
    "MASTER": 7,
    "DIAMOND": 6,
    "EMERALD": 5,
    "PLATINUM": 4,
    "GOLD": 3,
    "SILVER": 2,
    "BRONZE": 1,
    "IRON": 0,
}
DIVISION_ORDER = {"I": 4, "II": 3, "III": 2, "IV": 1}

RANK_ICON_BASE = "https://cdn.communitydragon.org/latest/tft/ranked-icons"
UNRANKED_ICON = "/ranks/UNRANKED.png"
PROFILE_STALE_S = 5 * 60


def rank_icon_url(tier: Optional[str]) -> Optional[str]:
    if not tier:
        return None
    return f"{RANK_ICON_BASE}/{tier.lower()}.png"


def pick_ranked_entry(entries: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    """First entry of the most preferred queue; queues are never merged."""
    if not entries:
        return None
    for queue in RANKED_QUEUE_PICK_ORDER:
        for entry in entries:
            if isinstance(entry, dict) and entry.get("queueType") == queue:
                return entry
    return None


def ranked_from_row(player: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    tier, rank, lp = player.get("ranked_tier"), player.get("ranked_rank"), player.get("ranked_lp")
    if not tier or not rank or lp is None:
        return None
    return {"tier": tier, "rank": rank, "leaguePoints": lp}


def rank_score(ranked: Optional[Dict[str, Any]]) -> int:
    if not ranked:
        return -1
    return (
        TIER_ORDER.get(ranked["tier"], -1) * 1000
        + DIVISION_ORDER.get(ranked["rank"], 0) * 100
        + (ranked.get("leaguePoints") or 0)
    )


def average_placement(placements: List[int]) -> Optional[float]:
    if not placements:
        return None
    avg = sum(placements) / len(placements)
    # halves round up, e.g. 2.125 -> 2.13
    return float(Decimal(str(avg)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def build_leaderboard(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    board = []
    for row in rows:
        ranked = ranked_from_row(row)
        board.append(
            {
                "id": row["id"],
                "riot_id": row["riot_id"],
                "slug": row["slug"],
                "region": row["region"],
                "avgPlacement": row.get("avg_placement_10"),
                "live": {"inGame": bool(row.get("live_in_game"))},
                "ranked": ranked,
                "rankIconUrl": rank_icon_url(ranked["tier"]) if ranked else None,
                "rankedQueue": row.get("ranked_queue"),
                "profile_image_url": row.get("profile_image_url"),
                "_score": rank_score(ranked),
            }
        )
    board.sort(key=lambda r: (-r["_score"], r["riot_id"]))
    for r in board:
        r.pop("_score")
    return board


def empty_profile() -> Dict[str, Any]:
    return {
        "player": None,
        "ranked": None,
        "rankIconUrl": None,
        "rankedQueue": None,
        "avgPlacement": None,
        "live": {"inGame": False, "gameStartTime": None, "participantCount": None},
        "recentMatches": [],
        "favoriteUnit": None,
        "favoriteItems": [],
        "favoriteTraits": [],
    }


class PlayerStats:
    """Ranked, live and average-placement facts for tracked players.

    Each fact has its own freshness column; a stale one never blocks the
    others. The in-process rank and leaderboard caches are injected.
    """

    def __init__(
        self,
        store: Store,
        riot: RiotClient,
        matches: MatchService,
        catalog: AssetCatalog,
        rank_cache: Optional[TtlCache] = None,
        leaderboard_cache: Optional[TtlCache] = None,
        rank_ttl_s: float = 60,
        live_ttl_s: float = 45,
        avg_ttl_s: float = 15 * 60,
        match_count: int = 10,
    ) -> None:
        self.store = store
        self.riot = riot
        self.matches = matches
        self.catalog = catalog
        self.rank_cache = rank_cache if rank_cache is not None else TtlCache(rank_ttl_s)
        self.leaderboard_cache = leaderboard_cache if leaderboard_cache is not None else TtlCache(60)
        self.rank_ttl_s = float(rank_ttl_s)
        self.live_ttl_s = float(live_ttl_s)
        self.avg_ttl_s = float(avg_ttl_s)
        self.match_count = int(match_count)

    async def _update(self, player_id: str, fields: Dict[str, Any]) -> None:
        await asyncio.to_thread(self.store.update_tracked_player, player_id, fields)

    # ---- average placement ----
    def avg_is_fresh(self, player: Dict[str, Any]) -> bool:
        return is_fresh(player.get("avg_placement_updated_at"), self.avg_ttl_s)

    async def ensure_average_placement(self, player: Dict[str, Any], force: bool = False) -> Optional[float]:
        puuid = player.get("puuid")
        if not puuid:
            return None
        if not force and self.avg_is_fresh(player):
            return player.get("avg_placement_10")
        ids = await self.riot.get_match_ids_by_puuid(puuid, self.match_count) or []
        if not ids:
            return None
        payloads = await asyncio.gather(*(self.riot.get_match(m) for m in ids))
        placements = []
        for payload in payloads:
            for p in participants_of(payload):
                if p.get("puuid") == puuid and isinstance(p.get("placement"), int):
                    placements.append(p["placement"])
                    break
        avg = average_placement(placements)
        if avg is None:
            return None
        await self._update(player["id"], {"avg_placement_10": avg, "avg_placement_updated_at": now_iso()})
        return avg

    # ---- ranked ----
    def _ranked_result(self, ranked, queue, status) -> Dict[str, Any]:
        return {
            "ranked": ranked,
            "rankIconUrl": rank_icon_url(ranked["tier"]) if ranked else None,
            "rankedQueue": queue,
            "status": status,
        }

    async def ensure_ranked_cache(self, player: Dict[str, Any], force: bool = False) -> Dict[str, Any]:
        queue = player.get("ranked_queue")
        if not force and is_fresh(player.get("ranked_updated_at"), self.rank_ttl_s):
            return self._ranked_result(ranked_from_row(player), queue, "cached")
        puuid = player.get("puuid")
        if not puuid:
            return self._ranked_result(None, None, "skipped")
        entries = await self.riot.get_league_entries_by_puuid(puuid)
        if entries is None and player.get("summoner_id"):
            # older accounts still answer on the summoner-keyed endpoint
            entries = await self.riot.get_league_entries_by_summoner_id(player["summoner_id"])
        if entries is None:
            # upstream unavailable; serve whatever the row already has
            stored = ranked_from_row(player)
            return self._ranked_result(stored, queue, "cached" if stored else "skipped")
        entry = pick_ranked_entry(entries) or {}
        ts = now_iso()
        fields = {
            "ranked_tier": entry.get("tier"),
            "ranked_rank": entry.get("rank"),
            "ranked_lp": entry.get("leaguePoints"),
            "ranked_queue": entry.get("queueType"),
            "ranked_updated_at": ts,
            "riot_data_updated_at": ts,
        }
        await self._update(player["id"], fields)
        return self._ranked_result(ranked_from_row(fields), fields["ranked_queue"], "updated")

    async def get_ranked_info(self, player: Dict[str, Any], force: bool = False) -> Dict[str, Any]:
        hit, cached = self.rank_cache.lookup(player["id"])
        if not force and hit:
            return self._ranked_result(cached, player.get("ranked_queue"), "cached")
        result = await self.ensure_ranked_cache(player, force)
        self.rank_cache.set(player["id"], result["ranked"])
        return result

    # ---- live ----
    async def ensure_live_cache(self, player: Dict[str, Any], force: bool = False) -> Dict[str, Any]:
        if not force and is_fresh(player.get("live_updated_at"), self.live_ttl_s):
            return {
                "inGame": bool(player.get("live_in_game")),
                "gameStartTime": player.get("live_game_start_time"),
                "participantCount": None,
                "status": "cached",
            }
        puuid = player.get("puuid")
        if not puuid:
            return {"inGame": False, "gameStartTime": None, "participantCount": None, "status": "skipped"}
        live = await self.riot.get_live_game_by_puuid(puuid)
        in_game = bool(live)
        start = live.get("gameStartTime") if in_game else None
        parts = live.get("participants") if in_game else None
        ts = now_iso()
        await self._update(
            player["id"],
            {
                "live_in_game": in_game,
                "live_game_start_time": start,
                "live_updated_at": ts,
                "riot_data_updated_at": ts,
            },
        )
        return {
            "inGame": in_game,
            "gameStartTime": start,
            "participantCount": len(parts) if isinstance(parts, list) else None,
            "status": "updated",
        }

    async def get_live_status(self, player: Dict[str, Any], force: bool = False) -> Dict[str, Any]:
        live = await self.ensure_live_cache(player, force)
        if not live["inGame"]:
            return {"inGame": False, "gameStartTime": None, "participantCount": None}
        return {"inGame": True, "gameStartTime": live["gameStartTime"], "participantCount": live["participantCount"]}

    async def backfill_summoner_id(self, player: Dict[str, Any]) -> bool:
        if player.get("summoner_id") or not player.get("puuid"):
            return False
        summoner = await self.riot.get_summoner_by_puuid(player["puuid"])
        sid = summoner.get("id") if isinstance(summoner, dict) else None
        if not sid:
            return False
        await self._update(player["id"], {"summoner_id": sid})
        return True

    # ---- leaderboard ----
    async def get_leaderboard(self) -> List[Dict[str, Any]]:
        hit, cached = self.leaderboard_cache.lookup("leaderboard")
        if hit:
            return cached
        started = time.perf_counter()
        rows = await asyncio.to_thread(self.store.list_active_players)
        board = build_leaderboard(rows)
        self.leaderboard_cache.set("leaderboard", board)
        log.debug("leaderboard rows=%d totalMs=%d", len(board), (time.perf_counter() - started) * 1000)
        return board

    def invalidate_leaderboard(self) -> None:
        self.leaderboard_cache.clear()
        log.info("leaderboard cache invalidated")

    # ---- profile ----
    async def build_profile(self, player: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Profile assembled from stored columns and the match cache only."""
        if not player or not player.get("is_active"):
            return empty_profile()
        ranked = ranked_from_row(player)
        puuid = player.get("puuid")
        recent = await self.matches.recent_matches_from_cache(puuid, self.match_count) if puuid else []
        index = await self.catalog.get()
        for match in recent:
            if match.get("preview"):
                match["preview"] = hydrate_preview_icons(match["preview"], index)[0]

        units: Counter = Counter()
        unit_icons: Dict[str, Optional[str]] = {}
        items: Counter = Counter()
        item_icons: Dict[str, Optional[str]] = {}
        traits: Counter = Counter()
        trait_icons: Dict[str, Optional[str]] = {}
        for match in recent:
            queue_id = match.get("queueId")
            if queue_id is not None and queue_id not in RANKED_QUEUE_IDS:
                continue
            preview = match.get("preview") or {}
            for unit in preview.get("units") or []:
                cid = (unit.get("character_id") or "").strip()
                if not cid:
                    continue
                units[cid] += 1
                unit_icons.setdefault(cid, unit.get("champIconUrl"))
                urls = unit.get("itemIconUrls") or []
                for i, name in enumerate(unit.get("itemNames") or []):
                    name = (name or "").strip()
                    if not name:
                        continue
                    items[name] += 1
                    if not item_icons.get(name):
                        item_icons[name] = urls[i] if i < len(urls) else None
            for trait in preview.get("topTraits") or []:
                name = (trait.get("name") or "").strip()
                if name:
                    traits[name] += 1
                    if not trait_icons.get(name):
                        trait_icons[name] = trait.get("iconUrl")

        favorite_unit = None
        if units:
            cid, count = units.most_common(1)[0]
            favorite_unit = {
                "characterId": cid,
                "champIconUrl": unit_icons.get(cid) or index.champion_icon(cid),
                "count": count,
            }

        return {
            "player": player,
            "ranked": ranked,
            "rankIconUrl": rank_icon_url(ranked["tier"]) if ranked else UNRANKED_ICON,
            "rankedQueue": player.get("ranked_queue"),
            "avgPlacement": player.get("avg_placement_10"),
            "live": {
                "inGame": bool(player.get("live_in_game")),
                "gameStartTime": player.get("live_game_start_time"),
                "participantCount": None,
            },
            "recentMatches": recent,
            "favoriteUnit": favorite_unit,
            "favoriteItems": [
                {
                    "itemName": name,
                    "itemIconUrl": sanitize_icon_url(item_icons.get(name)) or index.item_icon(name),
                    "count": count,
                }
                for name, count in items.most_common(3)
            ],
            "favoriteTraits": [
                {
                    "name": name,
                    "iconUrl": sanitize_icon_url(trait_icons.get(name)) or index.trait_icon(name),
                    "count": count,
                }
                for name, count in traits.most_common(3)
            ],
            "needsRankedRefresh": ranked is None,
            "needsMatchesRefresh": not recent,
            "needsProfileRefresh": not puuid,
        }

    @staticmethod
    def profile_is_stale(profile: Dict[str, Any]) -> bool:
        player = profile.get("player") or {}
        if not player:
            return False
        if profile.get("needsRankedRefresh") or profile.get("needsMatchesRefresh") or profile.get("needsProfileRefresh"):
            return True
        return not is_fresh(player.get("riot_data_updated_at"), PROFILE_STALE_S)
