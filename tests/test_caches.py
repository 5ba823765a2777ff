import asyncio

import pytest

from tfttrack.caches import InflightLoads, RefreshTracker, TtlCache, run_with_limit


class Clock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


def test_ttl_cache_expires_and_caches_none():
    clock = Clock()
    cache = TtlCache(30, clock=clock)
    cache.set("not-in-game", None)
    assert cache.lookup("not-in-game") == (True, None)
    assert "not-in-game" in cache
    clock.t = 29.9
    assert cache.lookup("not-in-game")[0] is True
    clock.t = 30.0
    assert cache.lookup("not-in-game") == (False, None)
    assert len(cache) == 0


def test_ttl_cache_invalidate_and_per_entry_ttl():
    clock = Clock()
    cache = TtlCache(60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl_s=5)
    cache.invalidate("a")
    assert cache.get("a", "gone") == "gone"
    clock.t = 6
    assert cache.get("b") is None
    cache.set("c", 3)
    cache.clear()
    assert len(cache) == 0


def test_separate_caches_do_not_share_state():
    a, b = TtlCache(60), TtlCache(60)
    a.set("k", 1)
    assert b.lookup("k") == (False, None)


def test_refresh_tracker_allows_one_trigger_per_window():
    clock = Clock()
    tracker = RefreshTracker(300, clock=clock)
    assert tracker.should_trigger("slug") is True
    assert tracker.should_trigger("slug") is False
    assert tracker.should_trigger("other") is True
    clock.t = 301
    assert tracker.should_trigger("slug") is True


def test_inflight_loads_deduplicate_concurrent_callers():
    loads = InflightLoads()
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "value"

    async def run():
        return await asyncio.gather(*(loads.run("k", factory) for _ in range(4)))

    assert asyncio.run(run()) == ["value"] * 4
    assert len(calls) == 1


def test_inflight_failure_does_not_wedge_next_attempt():
    loads = InflightLoads()
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("boom")
        return "ok"

    async def run():
        with pytest.raises(RuntimeError):
            await loads.run("k", flaky)
        return await loads.run("k", flaky)

    assert asyncio.run(run()) == "ok"
    assert len(attempts) == 2


def test_run_with_limit_caps_concurrency_and_keeps_order():
    active = {"now": 0, "peak": 0}

    async def worker(n):
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0.001 * (5 - n % 5))
        active["now"] -= 1
        return n * 10

    out = asyncio.run(run_with_limit(list(range(12)), 2, worker))
    assert out == [n * 10 for n in range(12)]
    assert active["peak"] == 2


def test_run_with_limit_empty():
    async def worker(n):
        return n

    assert asyncio.run(run_with_limit([], 3, worker)) == []


def test_ttl_cache_prunes_expired_keys_on_write():
    clock = Clock()
    cache = TtlCache(10, clock=clock)
    for n in range(50):
        cache.set(f"slug-{n}", {"player": None})
    assert len(cache) == 50
    clock.t = 11
    cache.set("fresh", 1)
    assert len(cache) == 1
    assert cache.get("fresh") == 1


def test_refresh_tracker_forgets_keys_outside_window():
    clock = Clock()
    tracker = RefreshTracker(300, clock=clock)
    for n in range(20):
        tracker.should_trigger(f"slug-{n}")
    assert len(tracker) == 20
    clock.t = 301
    assert tracker.should_trigger("slug-0") is True
    assert len(tracker) == 1
