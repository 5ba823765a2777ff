from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Sequence, Tuple, TypeVar


T = TypeVar("T")
R = TypeVar("R")


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TtlCache:
    """Process-local key/value cache with per-entry expiry.

    ``None`` is a legitimate cached value (e.g. "not in game"), so reads go
    through :meth:`lookup`, which returns a ``(hit, value)`` pair.
    """

    def __init__(self, ttl_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}

    def lookup(self, key: Hashable) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if self._clock() >= entry.expires_at:
            self._entries.pop(key, None)
            return False, None
        return True, entry.value

    def get(self, key: Hashable, default: Any = None) -> Any:
        hit, value = self.lookup(key)
        return value if hit else default

    def set(self, key: Hashable, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self.ttl_s if ttl_s is None else float(ttl_s)
        now = self._clock()
        self.prune(now)
        self._entries[key] = _Entry(value=value, expires_at=now + ttl)

    def prune(self, now: Optional[float] = None) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.lookup(key)[0]


class RefreshTracker:
    """Allows one trigger per key per window."""

    def __init__(self, window_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_s = float(window_s)
        self._clock = clock
        self._last: Dict[Hashable, float] = {}

    def should_trigger(self, key: Hashable) -> bool:
        now = self._clock()
        self._last = {k: t for k, t in self._last.items() if now - t < self.window_s}
        last = self._last.get(key)
        if last is not None and now - last < self.window_s:
            return False
        self._last[key] = now
        return True

    def clear(self) -> None:
        self._last.clear()

    def __len__(self) -> int:
        return len(self._last)


class InflightLoads:
    """Collapses concurrent loads of the same resource into one task.

    The in-flight marker is dropped when the task finishes, whether it
    succeeded or raised, so a failed load never blocks the next attempt.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, "asyncio.Task[Any]"] = {}

    async def run(self, name: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._tasks.get(name)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._tasks[name] = task
            task.add_done_callback(lambda t, n=name: self._forget(n, t))
        return await asyncio.shield(task)

    def _forget(self, name: str, task: "asyncio.Task[Any]") -> None:
        if self._tasks.get(name) is task:
            self._tasks.pop(name, None)
        # retrieve the exception so an unawaited failure is not reported as lost
        if not task.cancelled():
            task.exception()


async def run_with_limit(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T], Awaitable[R]],
) -> List[R]:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight.

    A fixed pool of consumer tasks drains a shared queue; results keep the
    input order.
    """
    results: List[Any] = [None] * len(items)
    if not items:
        return results
    queue: "asyncio.Queue[Tuple[int, T]]" = asyncio.Queue()
    for idx, item in enumerate(items):
        queue.put_nowait((idx, item))

    async def consume() -> None:
        while True:
            try:
                idx, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[idx] = await worker(item)

    n_workers = max(1, min(int(limit), len(items)))
    await asyncio.gather(*(consume() for _ in range(n_workers)))
    return results
