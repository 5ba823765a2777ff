from __future__ import annotations

import asyncio
import sqlite3

from fastapi import APIRouter, Depends

from tfttrack.tracker import Tracker
from ..deps import ok, tracker


router = APIRouter()


@router.get("/health")
async def health(t: Tracker = Depends(tracker)):
    try:
        version = await asyncio.to_thread(t.store.get_meta, "schema_version")
        db = {"ok": True, "schema_version": int(version or 0)}
    except sqlite3.Error as e:
        db = {"ok": False, "error": str(e)}
    data = {
        "db": db,
        "riot_api": {"key_present": t.riot.has_key, "rate_limited": t.riot.rate_limit.is_set()},
        "assets": t.catalog.info(),
        "caches": {"players": len(t.player_cache), "leaderboard": len(t.stats.leaderboard_cache)},
    }
    return ok(data)
