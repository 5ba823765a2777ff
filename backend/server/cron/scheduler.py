from __future__ import annotations

import asyncio
import logging
from typing import Optional

from tfttrack.tracker import Tracker


log = logging.getLogger(__name__)

_INITIAL_DELAY_S = 20


async def _loop(tracker: Tracker, interval_s: float) -> None:
    await asyncio.sleep(_INITIAL_DELAY_S)
    while True:
        try:
            result = await tracker.sync.sync_all()
            if result.get("ok"):
                log.info("scheduled sync_all total=%d rateLimited=%s", result["total"], result["rateLimited"])
            else:
                log.info("scheduled sync_all skipped; locked until %s", result.get("lockedUntil"))
        except Exception:
            log.exception("scheduled sync_all failed")
        await asyncio.sleep(interval_s)


def start_scheduler(tracker: Tracker) -> Optional["asyncio.Task[None]"]:
    """Start the periodic sync when ``cron.enabled``; returns the task."""
    cron = tracker.cfg.get("cron", {})
    if not cron.get("enabled"):
        return None
    interval = float(cron.get("interval_s", 900))
    log.info("scheduler started interval_s=%s", interval)
    return asyncio.ensure_future(_loop(tracker, interval))
