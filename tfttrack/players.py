from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import time
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidPayload, NotFound
from .riot import RiotClient, parse_riot_id
from .store import Store, now_iso


log = logging.getLogger(__name__)

SEARCH_LIMIT = 8

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify_riot_id(riot_id: str, region: str) -> str:
    base = f"{riot_id}-{region}".strip().lower().replace("#", "-")
    slug = _NON_SLUG.sub("-", base).strip("-")
    return slug or f"player-{int(time.time() * 1000)}"


async def resolve_riot_data(riot: RiotClient, riot_id: str) -> Tuple[Optional[str], Optional[str]]:
    """Look up the account behind ``riot_id``; returns ``(puuid, warning)``."""
    if not parse_riot_id(riot_id):
        return None, "Invalid Riot ID format."
    account = await riot.get_account_by_riot_id(riot_id)
    puuid = account.get("puuid") if isinstance(account, dict) else None
    if not puuid:
        return None, "Riot account not found or API unavailable."
    return puuid, None


class PlayerDirectory:
    """Tracked-player administration and lookups."""

    def __init__(self, store: Store, riot: RiotClient, supported_region: str = "EUW1") -> None:
        self.store = store
        self.riot = riot
        self.supported_region = supported_region.upper()

    async def create_tracked_player(
        self,
        riot_id: str,
        region: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        riot_id = (riot_id or "").strip()
        region = (region or self.supported_region).strip().upper()
        if not riot_id:
            raise InvalidPayload("Riot ID is required.")
        if region != self.supported_region:
            raise InvalidPayload(f"Only {self.supported_region} is supported.")
        puuid, warning = await resolve_riot_data(self.riot, riot_id)
        fields = {
            "riot_id": riot_id,
            "region": region,
            "slug": slugify_riot_id(riot_id, region),
            "puuid": puuid,
            "riot_data_updated_at": now_iso() if puuid else None,
            "profile_image_url": (profile_image_url or "").strip() or None,
        }
        try:
            row = await asyncio.to_thread(self.store.insert_tracked_player, fields)
        except sqlite3.IntegrityError as e:
            raise InvalidPayload("Player is already tracked.") from e
        log.info("tracked player created riot_id=%s resolved=%s", riot_id, bool(puuid))
        return row, warning

    async def update_tracked_player(self, player_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if isinstance(updates.get("is_active"), bool):
            fields["is_active"] = updates["is_active"]
        if "profile_image_url" in updates:
            value = updates["profile_image_url"]
            if value is None or isinstance(value, str):
                fields["profile_image_url"] = value
        if not fields:
            raise InvalidPayload("Missing fields.")
        row = await asyncio.to_thread(self.store.update_tracked_player, player_id, fields)
        if row is None:
            raise NotFound("Tracked player not found.")
        return row

    async def delete_tracked_player(self, player_id: str) -> None:
        deleted = await asyncio.to_thread(self.store.delete_tracked_player, player_id)
        if not deleted:
            raise NotFound("Tracked player not found.")

    async def list_tracked_players(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.store.list_tracked_players)

    async def search_tracked_players(self, query: str) -> List[Dict[str, Any]]:
        q = (query or "").strip()
        if not q:
            return []
        return await asyncio.to_thread(self.store.search_players, q, SEARCH_LIMIT)

    def _find(self, slug_or_riot_id: str) -> Optional[Dict[str, Any]]:
        key = (slug_or_riot_id or "").strip()
        if not key:
            return None
        row = self.store.find_player_by_slug(key)
        if row is None and "#" in key:
            normalized = slugify_riot_id(key, self.supported_region)
            if normalized != key:
                row = self.store.find_player_by_slug(normalized)
            if row is None:
                row = self.store.find_player_by_riot_id(key)
        if row is None and "#" not in key:
            row = self.store.find_player_by_game_name(key)
        return row

    async def find_player(self, slug_or_riot_id: str) -> Optional[Dict[str, Any]]:
        """Slug first, then the slug of a ``name#tag``, then the Riot ID itself."""
        return await asyncio.to_thread(self._find, slug_or_riot_id)
