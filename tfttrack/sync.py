from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .caches import TtlCache, run_with_limit
from .job_lock import acquire_job_lock, release_job_lock
from .matches import MatchService
from .players import resolve_riot_data
from .riot import RiotClient
from .stats import PlayerStats
from .store import Store


log = logging.getLogger(__name__)

SYNC_ALL_LOCK = "sync_all"
MAX_LEADERBOARD_CONCURRENCY = 5


class SyncService:
    """Refreshes tracked players one at a time or in batches."""

    def __init__(
        self,
        store: Store,
        riot: RiotClient,
        stats: PlayerStats,
        matches: MatchService,
        player_cache: Optional[TtlCache] = None,
        supported_region: str = "EUW1",
        batch_limit: int = 10,
        lock_ttl_s: float = 120,
        pause_s: float = 0.2,
        leaderboard_concurrency: int = MAX_LEADERBOARD_CONCURRENCY,
        recent_match_count: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.riot = riot
        self.stats = stats
        self.matches = matches
        self.player_cache = player_cache
        self.supported_region = supported_region.upper()
        self.batch_limit = int(batch_limit)
        self.lock_ttl_s = float(lock_ttl_s)
        self.pause_s = float(pause_s)
        self.leaderboard_concurrency = min(int(leaderboard_concurrency), MAX_LEADERBOARD_CONCURRENCY)
        self.recent_match_count = int(recent_match_count)
        self.sleep = sleep

    def invalidate_caches(self) -> None:
        self.stats.invalidate_leaderboard()
        if self.player_cache is not None:
            self.player_cache.clear()

    async def sync_tracked_player_by_id(self, player_id: str, force: bool = False) -> Dict[str, Any]:
        """Resolve the account, then refresh ranked, live and average placement.

        Never raises for upstream or storage trouble; problems come back as
        ``{"updated": False, "warning": ...}``.
        """
        try:
            player = await asyncio.to_thread(self.store.get_tracked_player, player_id)
        except sqlite3.Error as e:
            return {"updated": False, "warning": f"Database error: {e}"}
        if not player:
            return {"updated": False, "warning": "Tracked player not found."}
        if (player.get("region") or "").upper() != self.supported_region:
            return {"updated": False, "warning": f"Only {self.supported_region} is supported."}

        puuid, warning = await resolve_riot_data(self.riot, player["riot_id"])
        if not puuid:
            return {"updated": False, "warning": warning or "Riot sync failed."}

        try:
            kept = await asyncio.to_thread(self.store.set_player_puuid, player["id"], puuid)
            if not kept:
                # identifier already resolved to another account; it stays
                warning = "Riot account changed; keeping the stored identifier."
                log.warning("puuid mismatch for player=%s riot_id=%s", player["id"], player["riot_id"])
                puuid = player["puuid"]
            player = {**player, "puuid": puuid}
            ranked = await self.stats.ensure_ranked_cache(player, force)
            live = await self.stats.ensure_live_cache(player, force)
            was_avg_fresh = self.stats.avg_is_fresh(player)
            avg = await self.stats.ensure_average_placement(player, force)
        except sqlite3.Error as e:
            log.warning("sync failed player=%s err=%s", player_id, e)
            return {"updated": False, "warning": f"Database error: {e}"}

        if avg is None:
            avg_status = "skipped"
        elif force or not was_avg_fresh:
            avg_status = "updated"
        else:
            avg_status = "cached"
        return {
            "updated": True,
            "warning": warning,
            "ranked": ranked["ranked"],
            "live": {
                "inGame": live["inGame"],
                "gameStartTime": live["gameStartTime"],
                "participantCount": live["participantCount"],
            },
            "avgPlacement": avg,
            "statuses": {"ranked": ranked["status"], "live": live["status"], "avgPlacement": avg_status},
        }

    async def sync_players_batch(self, limit: Optional[int] = None) -> Dict[str, Any]:
        rows = await asyncio.to_thread(self.store.list_active_players, limit or self.batch_limit)
        results = []
        for row in rows:
            r = await self.sync_tracked_player_by_id(row["id"], force=True)
            if not r["updated"]:
                status = "failed"
            else:
                status = "warning" if r.get("warning") else "success"
            results.append(
                {
                    "id": row["id"],
                    "riot_id": row["riot_id"],
                    "status": status,
                    "warning": r.get("warning"),
                    "statuses": r.get("statuses"),
                }
            )
        self.invalidate_caches()
        return {"total": len(rows), "results": results}

    async def _after_sync(self, player_id: str) -> None:
        refreshed = await asyncio.to_thread(self.store.get_tracked_player, player_id)
        if not refreshed or not refreshed.get("puuid"):
            return
        await self.stats.backfill_summoner_id(refreshed)
        await self.matches.cache_recent_matches_for_puuid(refreshed["puuid"], self.recent_match_count)

    async def sync_all(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """Scheduled sync of the stalest active players under the ``sync_all`` lock."""
        lock = await acquire_job_lock(self.store, SYNC_ALL_LOCK, self.lock_ttl_s)
        if not lock["ok"]:
            log.info("sync_all skipped; locked until %s", lock["lockedUntil"])
            return {"ok": False, "lockedUntil": lock["lockedUntil"]}

        started = time.perf_counter()
        results: List[Dict[str, Any]] = []
        rate_limited = False
        try:
            players = await asyncio.to_thread(
                self.store.list_active_players, limit or self.batch_limit, True
            )
            for i, player in enumerate(players):
                self.riot.rate_limit.reset()
                entry = {"id": player["id"], "riot_id": player["riot_id"]}
                try:
                    r = await self.sync_tracked_player_by_id(player["id"], force=True)
                    if r["updated"]:
                        await self._after_sync(player["id"])
                        results.append({**entry, "status": "updated", "warning": r.get("warning")})
                    else:
                        results.append({**entry, "status": "skipped", "warning": r.get("warning")})
                except Exception as e:
                    log.exception("sync_all player failed id=%s", player["id"])
                    results.append({**entry, "status": "failed", "warning": str(e) or "Sync failed."})

                if self.riot.rate_limit.is_set():
                    rate_limited = True
                    for rest in players[i + 1:]:
                        results.append({"id": rest["id"], "riot_id": rest["riot_id"], "status": "rate_limited"})
                    break
                if i < len(players) - 1:
                    await self.sleep(self.pause_s)
            log.debug(
                "sync_all processed=%d rateLimited=%s totalMs=%d",
                len(results),
                rate_limited,
                (time.perf_counter() - started) * 1000,
            )
        finally:
            self.invalidate_caches()
            await release_job_lock(self.store, SYNC_ALL_LOCK)
        return {"ok": True, "total": len(results), "results": results, "rateLimited": rate_limited}

    async def sync_leaderboard(self, limit: Optional[int] = None, concurrency: Optional[int] = None) -> Dict[str, Any]:
        """Ranked-only refresh of every active player."""
        workers = min(concurrency or self.leaderboard_concurrency, MAX_LEADERBOARD_CONCURRENCY)
        players = await asyncio.to_thread(self.store.list_active_players, limit)

        async def refresh(player: Dict[str, Any]) -> Dict[str, Any]:
            entry = {"id": player["id"], "riot_id": player["riot_id"]}
            if not player.get("puuid"):
                return {**entry, "status": "skipped", "ranked": None}
            await self.stats.backfill_summoner_id(player)
            result = await self.stats.ensure_ranked_cache(player, force=True)
            status = "updated" if result["status"] == "updated" else "skipped"
            return {**entry, "status": status, "ranked": result["ranked"] if status == "updated" else None}

        started = time.perf_counter()
        results = await run_with_limit(players, max(1, workers), refresh)
        log.debug(
            "sync_leaderboard total=%d updated=%d totalMs=%d",
            len(results),
            sum(1 for r in results if r["status"] == "updated"),
            (time.perf_counter() - started) * 1000,
        )
        self.stats.invalidate_leaderboard()
        return {"total": len(players), "results": results}
