from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from .caches import TtlCache
from .config import get_api_key


log = logging.getLogger(__name__)

ROUTING_BY_SHARD = {
    "EUROPE": ("EUW1", "EUN1", "RU", "TR1", "ME1"),
    "AMERICAS": ("NA1", "BR1", "LA1", "LA2", "OC1"),
    "ASIA": ("KR", "JP1"),
    "SEA": ("PH2", "SG2", "TH2", "TW2", "VN2"),
}


def _base(host: str) -> str:
    return f"https://{host}.api.riotgames.com"


def parse_riot_id(riot_id: str) -> Optional[Dict[str, str]]:
    """Split ``GameName#TAG``; ``None`` when either side is empty."""
    trimmed = (riot_id or "").strip()
    idx = trimmed.find("#")
    if idx <= 0 or idx == len(trimmed) - 1:
        return None
    return {"gameName": trimmed[:idx], "tagLine": trimmed[idx + 1:]}


def map_shard_to_routing_region(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().upper()
    if normalized in ROUTING_BY_SHARD:
        return normalized
    for routing, shards in ROUTING_BY_SHARD.items():
        if normalized in shards:
            return routing
    return None


class RateLimitFlag:
    """Raised by the client on any 429; batch callers poll and reset it."""

    def __init__(self) -> None:
        self._hit = False

    def set(self) -> None:
        self._hit = True

    def reset(self) -> None:
        self._hit = False

    def is_set(self) -> bool:
        return self._hit


@dataclass
class RiotClient:
    region: str
    platform: str
    api_key: Optional[str]
    timeout_s: float = 8.0
    max_attempts: int = 3
    rate_limit: RateLimitFlag = field(default_factory=RateLimitFlag)
    live_cache: TtlCache = field(default_factory=lambda: TtlCache(30))
    transport: Optional[httpx.AsyncBaseTransport] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **kwargs: Any) -> "RiotClient":
        riot = cfg["riot"]
        return cls(
            region=riot["region"],
            platform=riot["platform"],
            api_key=get_api_key(cfg),
            timeout_s=float(riot.get("timeout_s", 8)),
            max_attempts=int(riot.get("max_attempts", 3)),
            live_cache=TtlCache(float(riot.get("live_cache_ttl_s", 30))),
            **kwargs,
        )

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"X-Riot-Token": self.api_key or ""}

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport)

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None, allow_404: bool = False) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            if not self.api_key:
                return None
            try:
                async with self._http() as h:
                    resp = await h.get(url, headers=self._headers(), params=params)
            except httpx.HTTPError as e:
                log.debug("riot request failed url=%s err=%s", url, e)
                return None
            if resp.status_code == 429:
                self.rate_limit.set()
                retry_after = resp.headers.get("Retry-After")
                try:
                    wait = float(retry_after) if retry_after else 0.0
                except ValueError:
                    wait = 0.0
                await self.sleep(wait or 0.5 * attempt)
                continue
            if resp.status_code == 404 and allow_404:
                return None
            if resp.is_error:
                log.debug("riot request status=%s url=%s", resp.status_code, url)
                return None
            try:
                return resp.json()
            except ValueError:
                return None
        log.warning("riot rate limit persisted after %d attempts url=%s", self.max_attempts, url)
        return None

    # Account V1
    async def get_account_by_riot_id(self, riot_id: str) -> Optional[Dict[str, Any]]:
        parsed = parse_riot_id(riot_id)
        if not parsed:
            return None
        url = (
            f"{_base(self.region)}/riot/account/v1/accounts/by-riot-id/"
            f"{quote(parsed['gameName'], safe='')}/{quote(parsed['tagLine'], safe='')}"
        )
        return await self._get(url)

    # TFT Summoner V1
    async def get_summoner_by_puuid(self, puuid: str) -> Optional[Dict[str, Any]]:
        url = f"{_base(self.platform)}/tft/summoner/v1/summoners/by-puuid/{quote(puuid, safe='')}"
        return await self._get(url)

    # TFT League V1
    async def get_league_entries_by_summoner_id(self, summoner_id: str) -> Optional[List[Dict[str, Any]]]:
        url = f"{_base(self.platform)}/tft/league/v1/entries/by-summoner/{quote(summoner_id, safe='')}"
        return await self._get(url)

    async def get_league_entries_by_puuid(self, puuid: str) -> Optional[List[Dict[str, Any]]]:
        url = f"{_base(self.platform)}/tft/league/v1/by-puuid/{quote(puuid, safe='')}"
        return await self._get(url)

    # TFT Match V1
    async def get_match_ids_by_puuid(self, puuid: str, count: int = 10) -> Optional[List[str]]:
        url = f"{_base(self.region)}/tft/match/v1/matches/by-puuid/{quote(puuid, safe='')}/ids"
        return await self._get(url, params={"count": int(count)})

    async def get_match(self, match_id: str) -> Optional[Dict[str, Any]]:
        url = f"{_base(self.region)}/tft/match/v1/matches/{quote(match_id, safe='')}"
        return await self._get(url)

    # TFT Spectator V5
    async def get_live_game_by_puuid(self, puuid: str) -> Optional[Dict[str, Any]]:
        hit, cached = self.live_cache.lookup(puuid)
        if hit:
            return cached
        url = f"{_base(self.platform)}/tft/spectator/v5/active-games/by-puuid/{quote(puuid, safe='')}"
        data = await self._get(url, allow_404=True)
        self.live_cache.set(puuid, data)
        return data
