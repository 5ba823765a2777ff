from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from .assets import AssetCatalog
from .caches import RefreshTracker, TtlCache
from .config import db_path
from .matches import MatchService
from .players import PlayerDirectory
from .riot import RiotClient
from .stats import PlayerStats, empty_profile
from .store import Store
from .sync import SyncService


log = logging.getLogger(__name__)


class Tracker:
    """One set of caches and services built from a config mapping.

    Everything process-local lives on the instance, so two trackers never
    share state.
    """

    def __init__(
        self,
        cfg: Dict[str, Any],
        store: Store,
        riot: RiotClient,
        catalog: AssetCatalog,
    ) -> None:
        cache = cfg["cache"]
        sync = cfg["sync"]
        supported = cfg["riot"].get("supported_region", "EUW1")
        self.cfg = cfg
        self.store = store
        self.riot = riot
        self.catalog = catalog
        self.player_cache = TtlCache(float(cache.get("player_ttl_s", 30)))
        self.refresh_tracker = RefreshTracker(float(cache.get("player_refresh_ttl_s", 300)))
        self.matches = MatchService(
            store,
            riot,
            catalog,
            preview_concurrency=int(sync.get("preview_concurrency", 2)),
            default_region=cfg["riot"].get("region", "europe"),
        )
        self.stats = PlayerStats(
            store,
            riot,
            self.matches,
            catalog,
            rank_cache=TtlCache(float(cache.get("rank_ttl_s", 60))),
            leaderboard_cache=TtlCache(float(cache.get("leaderboard_ttl_s", 60))),
            rank_ttl_s=float(cache.get("rank_ttl_s", 60)),
            live_ttl_s=float(cache.get("live_ttl_s", 45)),
            avg_ttl_s=float(cache.get("avg_placement_ttl_s", 900)),
            match_count=int(sync.get("recent_match_count", 10)),
        )
        self.players = PlayerDirectory(store, riot, supported_region=supported)
        self.sync = SyncService(
            store,
            riot,
            self.stats,
            self.matches,
            player_cache=self.player_cache,
            supported_region=supported,
            batch_limit=int(sync.get("batch_limit", 10)),
            lock_ttl_s=float(sync.get("lock_ttl_s", 120)),
            pause_s=float(sync.get("pause_s", 0.2)),
            leaderboard_concurrency=int(sync.get("leaderboard_concurrency", 5)),
            recent_match_count=int(sync.get("recent_match_count", 10)),
        )
        self._background: Set["asyncio.Task[Any]"] = set()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], store: Optional[Store] = None, **riot_kwargs: Any) -> "Tracker":
        return cls(
            cfg,
            store or Store(db_path=db_path(cfg)),
            RiotClient.from_config(cfg, **riot_kwargs),
            AssetCatalog.from_config(cfg),
        )

    def invalidate_caches(self) -> None:
        self.sync.invalidate_caches()

    def invalidate_player(self, slug: str) -> None:
        self.player_cache.invalidate(slug.strip().lower())

    async def get_player_profile(self, slug_or_riot_id: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Cached per-slug profile; stale ones queue one background sync per window."""
        key = (slug_or_riot_id or "").strip().lower()
        if not force_refresh:
            hit, cached = self.player_cache.lookup(key)
            if hit:
                return cached
        player = await self.players.find_player(key)
        if player and force_refresh:
            await self.sync.sync_tracked_player_by_id(player["id"], force=True)
            self.invalidate_player(key)
            player = await self.players.find_player(key)
        if not player or not player.get("is_active"):
            profile = empty_profile()
            self.player_cache.set(key, profile)
            return profile

        profile = await self.stats.build_profile(player)
        if self.stats.profile_is_stale(profile) and self.refresh_tracker.should_trigger(key):
            log.info("background refresh queued slug=%s", key)
            self._spawn(self._background_sync(player["id"], key))
        self.player_cache.set(key, profile)
        return profile

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_sync(self, player_id: str, key: str) -> None:
        try:
            await self.sync.sync_tracked_player_by_id(player_id, force=True)
        except Exception:
            log.exception("background refresh failed slug=%s", key)
            return
        self.invalidate_player(key)

    async def drain(self) -> None:
        """Wait for queued background refreshes."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
