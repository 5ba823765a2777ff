from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import time
from typing import Any, Dict, List, Optional, Tuple

from .assets import AssetCatalog, AssetIndex
from .caches import run_with_limit
from .errors import InvalidPayload
from .previews import (
    build_player_previews,
    enrich_participants,
    find_preview_for_puuid,
    hydrate_preview_icons,
    missing_preview,
    preview_for_player,
    repair_previews,
)
from .riot import RiotClient, map_shard_to_routing_region
from .store import Store, iso_to_ms, ms_to_iso, now_iso


log = logging.getLogger(__name__)

MATCH_ID_RE = re.compile(r"^[A-Z0-9]+_\d+$")
MAX_PREVIEW_MATCHES = 10
DEFAULT_ROUTING = "EUROPE"


def is_match_id(value: Any) -> bool:
    return isinstance(value, str) and bool(MATCH_ID_RE.match(value))


def participants_of(payload: Any) -> List[Dict[str, Any]]:
    info = payload.get("info") if isinstance(payload, dict) else None
    parts = info.get("participants") if isinstance(info, dict) else None
    return [p for p in parts if isinstance(p, dict)] if isinstance(parts, list) else []


def _info(payload: Any) -> Dict[str, Any]:
    info = payload.get("info") if isinstance(payload, dict) else None
    return info if isinstance(info, dict) else {}


def _queue_id(payload: Any) -> Optional[int]:
    info = _info(payload)
    q = info.get("queue_id", info.get("queueId"))
    return q if isinstance(q, int) else None


def _game_ms(payload: Any) -> Optional[int]:
    ms = _info(payload).get("game_datetime")
    return ms if isinstance(ms, int) and not isinstance(ms, bool) else None


def parse_previews_request(body: Any) -> Tuple[List[str], str, Optional[str]]:
    """Validate a batch previews body into ``(match_ids, puuid, region)``.

    Malformed match IDs are dropped and the list is capped at ten; an empty
    list or a missing identifier raises :class:`InvalidPayload`.
    """
    if not isinstance(body, dict):
        raise InvalidPayload("invalid_payload")
    raw_puuid = body.get("puuid")
    puuid = raw_puuid.strip().lower() if isinstance(raw_puuid, str) else ""
    region_value = body.get("region") or body.get("platform") or body.get("routingRegion")
    region = region_value.strip() if isinstance(region_value, str) and region_value.strip() else None
    raw_ids = body.get("matchIds")
    match_ids = [m for m in raw_ids if is_match_id(m)] if isinstance(raw_ids, list) else []
    match_ids = match_ids[:MAX_PREVIEW_MATCHES]
    if not puuid or not match_ids:
        raise InvalidPayload("invalid_payload")
    return match_ids, puuid, region


class MatchService:
    """Match cache reads, preview repair and upstream fills."""

    def __init__(
        self,
        store: Store,
        riot: RiotClient,
        catalog: AssetCatalog,
        preview_concurrency: int = 2,
        default_region: str = DEFAULT_ROUTING,
    ) -> None:
        self.store = store
        self.riot = riot
        self.catalog = catalog
        self.preview_concurrency = max(1, int(preview_concurrency))
        self.default_region = default_region.upper()

    def _region_for(self, match_id: str, hint: Optional[str] = None) -> str:
        return (
            map_shard_to_routing_region(hint)
            or map_shard_to_routing_region(match_id.split("_", 1)[0])
            or self.default_region
        )

    async def _persist_fetched(
        self,
        match_id: str,
        payload: Dict[str, Any],
        previews: Dict[str, Dict[str, Any]],
        region: str,
        merge_on_conflict: bool = False,
    ) -> bool:
        game_iso = ms_to_iso(_game_ms(payload)) or now_iso()
        inserted = await asyncio.to_thread(
            self.store.insert_match_cache,
            match_id,
            region,
            game_iso,
            _queue_id(payload),
            payload,
            previews,
        )
        if not inserted:
            log.debug("match cache row already present match=%s", match_id)
            if merge_on_conflict and previews:
                await asyncio.to_thread(self.store.merge_player_previews, match_id, previews)
        return inserted

    def _response(
        self,
        match_id: str,
        cached: bool,
        payload: Any,
        game_iso: Optional[str],
        queue_id: Optional[int],
        index: AssetIndex,
    ) -> Dict[str, Any]:
        game_ms = _game_ms(payload)
        return {
            "matchId": match_id,
            "cached": cached,
            "gameDateTime": game_ms,
            "gameDatetimeISO": game_iso if (cached or game_ms) else None,
            "queueId": queue_id,
            "participants": enrich_participants(participants_of(payload), index),
        }

    async def get_or_fetch_match(self, match_id: str) -> Optional[Dict[str, Any]]:
        """Cached match with repaired previews, or a fresh upstream fetch.

        Returns ``None`` when the match is not cached and upstream is
        unavailable; nothing is persisted in that case.
        """
        if not is_match_id(match_id):
            raise InvalidPayload("Invalid matchId")
        row = await asyncio.to_thread(self.store.get_match_cache, match_id)
        index = await self.catalog.get()
        if row is not None:
            payload = row.get("data") or {}
            previews, changed = repair_previews(participants_of(payload), row.get("player_previews"), index)
            if changed:
                await asyncio.to_thread(self.store.merge_player_previews, match_id, previews)
            return self._response(match_id, True, payload, row.get("game_datetime"), row.get("queue_id"), index)

        payload = await self.riot.get_match(match_id)
        if not isinstance(payload, dict):
            return None
        previews = build_player_previews(participants_of(payload), index)
        await self._persist_fetched(match_id, payload, previews, self._region_for(match_id))
        return self._response(match_id, False, payload, ms_to_iso(_game_ms(payload)), _queue_id(payload), index)

    async def _fetch_preview(self, match_id: str, puuid: str, region: str, index: AssetIndex) -> Dict[str, Any]:
        payload = await self.riot.get_match(match_id)
        if not isinstance(payload, dict):
            return missing_preview(puuid)
        participants = participants_of(payload)
        previews = build_player_previews(participants, index)
        try:
            await self._persist_fetched(match_id, payload, previews, region, merge_on_conflict=True)
        except sqlite3.Error as e:
            log.warning("match cache write failed match=%s err=%s", match_id, e)
        return preview_for_player(participants, previews, puuid, index)

    async def get_previews_for_player(
        self,
        puuid: str,
        match_ids: List[str],
        region: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """One preview per requested match ID, never absent.

        Cached previews are re-hydrated; the rest are fetched with bounded
        concurrency. Unavailable matches yield a not-found placeholder.
        """
        wanted = (puuid or "").strip()
        ids = [m for m in match_ids if is_match_id(m)][:MAX_PREVIEW_MATCHES]
        if not wanted or not ids:
            raise InvalidPayload("invalid_payload")
        started = time.perf_counter()
        routing = map_shard_to_routing_region(region) or self.default_region
        rows = await asyncio.to_thread(self.store.get_match_previews, ids)
        index = await self.catalog.get()

        out: Dict[str, Dict[str, Any]] = {}
        missing: List[str] = []
        for match_id in ids:
            if match_id in out or match_id in missing:
                continue
            row = rows.get(match_id)
            cached = find_preview_for_puuid(row.get("player_previews") if row else None, wanted)
            if cached is None:
                missing.append(match_id)
                continue
            hydrated, changed = hydrate_preview_icons(cached, index)
            out[match_id] = hydrated
            if changed:
                key = cached.get("puuid") or wanted
                try:
                    await asyncio.to_thread(self.store.merge_player_previews, match_id, {key: hydrated})
                except sqlite3.Error as e:
                    log.warning("preview update failed match=%s err=%s", match_id, e)

        if missing and not self.riot.has_key:
            for match_id in missing:
                out[match_id] = missing_preview(wanted)
        elif missing:
            async def worker(match_id: str) -> Dict[str, Any]:
                try:
                    return await self._fetch_preview(match_id, wanted, routing, index)
                except Exception:
                    log.exception("preview fetch failed match=%s", match_id)
                    return missing_preview(wanted)

            fetched = await run_with_limit(missing, self.preview_concurrency, worker)
            for match_id, preview in zip(missing, fetched):
                out[match_id] = preview or missing_preview(wanted)

        for match_id in ids:
            out.setdefault(match_id, missing_preview(wanted))
        log.debug(
            "previews matches=%d cached=%d fetched=%d totalMs=%d",
            len(ids),
            len(ids) - len(missing),
            len(missing),
            (time.perf_counter() - started) * 1000,
        )
        return out

    async def cache_recent_matches_for_puuid(self, puuid: str, count: int = 10) -> int:
        """Store any of the player's latest matches not cached yet."""
        if not puuid:
            return 0
        ids = await self.riot.get_match_ids_by_puuid(puuid, count)
        if not ids:
            return 0
        have = await asyncio.to_thread(self.store.cached_match_ids, ids)
        todo = [m for m in ids if m not in have and is_match_id(m)]
        if not todo:
            return 0
        index = await self.catalog.get()

        async def store_one(match_id: str) -> bool:
            payload = await self.riot.get_match(match_id)
            if not isinstance(payload, dict):
                return False
            previews = build_player_previews(participants_of(payload), index)
            return await self._persist_fetched(match_id, payload, previews, self._region_for(match_id))

        stored = await run_with_limit(todo, self.preview_concurrency, store_one)
        return sum(1 for s in stored if s)

    async def recent_matches_from_cache(self, puuid: str, count: int = 10) -> List[Dict[str, Any]]:
        rows = await asyncio.to_thread(self.store.recent_cached_matches_for_puuid, puuid, count)
        out = []
        for row in rows:
            preview = (row.get("player_previews") or {}).get(puuid) or {}
            info = _info(row.get("data"))
            placement = preview.get("placement")
            out.append(
                {
                    "matchId": row["match_id"],
                    "placement": placement if isinstance(placement, int) else None,
                    "gameStartTime": info.get("game_start_time"),
                    "gameDateTime": iso_to_ms(row.get("game_datetime")) or _game_ms(row.get("data")),
                    "queueId": row.get("queue_id"),
                    "preview": preview or None,
                }
            )
        return out

    async def get_recent_matches(self, puuid: Optional[str], count: int = 10) -> List[Dict[str, Any]]:
        """Latest match summaries from upstream, or the cache when upstream has none."""
        if not puuid:
            return []
        ids = await self.riot.get_match_ids_by_puuid(puuid, count) or []
        if not ids:
            return await self.recent_matches_from_cache(puuid, count)
        payloads = await asyncio.gather(*(self.riot.get_match(m) for m in ids))
        out = []
        for match_id, payload in zip(ids, payloads):
            info = _info(payload)
            placement = next(
                (p.get("placement") for p in participants_of(payload) if p.get("puuid") == puuid),
                None,
            )
            out.append(
                {
                    "matchId": match_id,
                    "placement": placement,
                    "gameStartTime": info.get("game_start_time"),
                    "gameDateTime": info.get("game_datetime"),
                }
            )
        return out
