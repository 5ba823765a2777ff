from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from tfttrack.tracker import Tracker
from ..deps import is_admin, ok, tracker


router = APIRouter()


@router.get("/player/{slug}")
async def player_profile(slug: str, request: Request, refresh: int = Query(0), t: Tracker = Depends(tracker)):
    # only admins may force an upstream sync from a page view
    force = bool(refresh) and is_admin(request)
    return ok(await t.get_player_profile(slug, force_refresh=force))


@router.get("/leaderboard")
async def leaderboard(t: Tracker = Depends(tracker)):
    return ok(await t.stats.get_leaderboard())


@router.get("/search")
async def search(q: str = Query(""), t: Tracker = Depends(tracker)):
    return ok(await t.players.search_tracked_players(q))
