from __future__ import annotations

import hmac
from typing import Any, Dict, Optional

from fastapi import Request

from tfttrack.config import get_admin_password, get_cron_secret
from tfttrack.tracker import Tracker


ADMIN_COOKIE = "admin_session"
ADMIN_COOKIE_VALUE = "authenticated"


def tracker(request: Request) -> Tracker:
    return request.app.state.tracker


def config(request: Request) -> Dict[str, Any]:
    return request.app.state.tracker.cfg


def ok(data: Any) -> Dict[str, Any]:
    return {"ok": True, "data": data}


def fail(code: str, message: str) -> Dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message}}


def is_admin(request: Request) -> bool:
    return request.cookies.get(ADMIN_COOKIE) == ADMIN_COOKIE_VALUE


def check_admin_password(cfg: Dict[str, Any], provided: Optional[str]) -> bool:
    expected = get_admin_password(cfg)
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def provided_cron_secret(request: Request) -> Optional[str]:
    header = (request.headers.get("x-cron-secret") or "").strip()
    if header:
        return header
    auth = (request.headers.get("authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


def check_cron_secret(request: Request) -> bool:
    expected = get_cron_secret(config(request))
    provided = provided_cron_secret(request)
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())
