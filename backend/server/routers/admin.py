from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from tfttrack.errors import InvalidPayload, NotFound
from tfttrack.tracker import Tracker
from ..deps import (
    ADMIN_COOKIE,
    ADMIN_COOKIE_VALUE,
    check_admin_password,
    check_cron_secret,
    config,
    fail,
    is_admin,
    ok,
    tracker,
)


log = logging.getLogger(__name__)

router = APIRouter()


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return int(value)


@router.post("/login")
def login(payload: Dict[str, Any], request: Request):
    if not check_admin_password(config(request), payload.get("password")):
        return JSONResponse(fail("UNAUTHORIZED", "Invalid password"), status_code=401)
    resp = JSONResponse(ok({"authenticated": True}))
    resp.set_cookie(ADMIN_COOKIE, ADMIN_COOKIE_VALUE, httponly=True, samesite="lax")
    return resp


@router.post("/logout")
def logout():
    resp = JSONResponse(ok({"authenticated": False}))
    resp.delete_cookie(ADMIN_COOKIE)
    return resp


@router.get("/tracked-players", dependencies=[Depends(require_admin)])
async def list_players(t: Tracker = Depends(tracker)):
    return ok(await t.players.list_tracked_players())


@router.post("/tracked-players", dependencies=[Depends(require_admin)])
async def create_player(payload: Dict[str, Any], t: Tracker = Depends(tracker)):
    try:
        row, warning = await t.players.create_tracked_player(
            payload.get("riotId") or payload.get("riot_id") or "",
            payload.get("region"),
            payload.get("profileImageUrl") or payload.get("profile_image_url"),
        )
    except InvalidPayload as e:
        return JSONResponse(fail("INVALID_INPUT", str(e)), status_code=400)
    t.invalidate_caches()
    return ok({"result": row, "warning": warning})


@router.patch("/tracked-players/{player_id}", dependencies=[Depends(require_admin)])
async def update_player(player_id: str, payload: Dict[str, Any], t: Tracker = Depends(tracker)):
    try:
        row = await t.players.update_tracked_player(player_id, payload)
    except InvalidPayload as e:
        return JSONResponse(fail("INVALID_INPUT", str(e)), status_code=400)
    except NotFound as e:
        return JSONResponse(fail("NOT_FOUND", str(e)), status_code=404)
    t.invalidate_caches()
    return ok(row)


@router.delete("/tracked-players/{player_id}", dependencies=[Depends(require_admin)])
async def delete_player(player_id: str, t: Tracker = Depends(tracker)):
    try:
        await t.players.delete_tracked_player(player_id)
    except NotFound as e:
        return JSONResponse(fail("NOT_FOUND", str(e)), status_code=404)
    t.invalidate_caches()
    return ok({"deleted": player_id})


@router.post("/sync-player", dependencies=[Depends(require_admin)])
async def sync_player(payload: Dict[str, Any], t: Tracker = Depends(tracker)):
    player_id = payload.get("id")
    if not isinstance(player_id, str) or not player_id:
        return JSONResponse(fail("INVALID_INPUT", "Missing player id."), status_code=400)
    result = await t.sync.sync_tracked_player_by_id(player_id, force=bool(payload.get("force", True)))
    t.invalidate_caches()
    return ok(result)


@router.post("/sync-players", dependencies=[Depends(require_admin)])
async def sync_players(payload: Optional[Dict[str, Any]] = Body(None), t: Tracker = Depends(tracker)):
    limit = _positive_int((payload or {}).get("limit"))
    return ok(await t.sync.sync_players_batch(limit))


@router.post("/sync-leaderboard", dependencies=[Depends(require_admin)])
async def sync_leaderboard(payload: Optional[Dict[str, Any]] = Body(None), t: Tracker = Depends(tracker)):
    body = payload or {}
    return ok(await t.sync.sync_leaderboard(_positive_int(body.get("limit")), _positive_int(body.get("concurrency"))))


@router.post("/invalidate-cache", dependencies=[Depends(require_admin)])
def invalidate_cache(t: Tracker = Depends(tracker)):
    t.invalidate_caches()
    return ok({"invalidated": True})


@router.post("/cron/sync-all")
async def cron_sync_all(request: Request, payload: Optional[Dict[str, Any]] = Body(None), t: Tracker = Depends(tracker)):
    if not check_cron_secret(request):
        return JSONResponse(fail("UNAUTHORIZED", "Unauthorized"), status_code=401)
    result = await t.sync.sync_all(_positive_int((payload or {}).get("limit")))
    if not result["ok"]:
        body = fail("LOCKED", "Job locked")
        body["lockedUntil"] = result["lockedUntil"]
        return JSONResponse(body, status_code=409)
    return ok(result)
