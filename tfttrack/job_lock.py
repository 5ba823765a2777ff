from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Dict

from .store import Store, iso, utcnow


async def acquire_job_lock(store: Store, name: str, ttl_s: float) -> Dict[str, Any]:
    """Take ``name`` until ``now + ttl_s`` unless someone holds it.

    Returns ``{"ok": True, "lockedUntil": ...}`` on success, otherwise
    ``{"ok": False, "lockedUntil": <current holder's expiry>}``.
    """
    now = utcnow()
    until = iso(now + timedelta(seconds=ttl_s))
    taken = await asyncio.to_thread(store.try_lock, name, until, iso(now))
    if taken:
        return {"ok": True, "lockedUntil": until}
    current = await asyncio.to_thread(store.get_lock, name)
    return {"ok": False, "lockedUntil": current}


async def release_job_lock(store: Store, name: str) -> None:
    await asyncio.to_thread(store.release_lock, name)
