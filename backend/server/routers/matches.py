from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from tfttrack.errors import InvalidPayload
from tfttrack.matches import parse_previews_request
from tfttrack.tracker import Tracker
from ..deps import fail, ok, tracker


router = APIRouter()
log = logging.getLogger(__name__)


@router.get("/match/{match_id}")
async def get_match(match_id: str, t: Tracker = Depends(tracker)):
    try:
        match = await t.matches.get_or_fetch_match(match_id)
    except InvalidPayload as e:
        return JSONResponse(fail("INVALID_INPUT", str(e)), status_code=400)
    if match is None:
        return JSONResponse(fail("RIOT_DOWN", "Riot API unavailable"), status_code=502)
    return ok(match)


@router.post("/match/previews")
async def match_previews(request: Request, t: Tracker = Depends(tracker)):
    try:
        body = await request.json()
        match_ids, puuid, region = parse_previews_request(body)
    except ValueError as e:
        log.debug("previews request rejected: %s", e)
        return {"ok": False, "data": {"previews": {}}, "error": {"code": "invalid_payload", "message": "invalid_payload"}}
    previews = await t.matches.get_previews_for_player(puuid, match_ids, region)
    return ok({"previews": previews})
