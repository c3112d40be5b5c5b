from __future__ import annotations

import time

from mfgerp.apps.catalog.cache import ItemCache


class _FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entry_expires_after_ttl():
    clock = _FakeClock()
    cache = ItemCache(ttl_seconds=300, clock=clock)
    cache.set("product:flour", "value")

    clock.advance(299)
    assert cache.get("product:flour") == "value"

    clock.advance(2)
    assert cache.get("product:flour") is None
    assert len(cache) == 0


def test_sweep_removes_only_expired_entries():
    clock = _FakeClock()
    cache = ItemCache(ttl_seconds=60, clock=clock)
    cache.set("old", 1)
    clock.advance(45)
    cache.set("fresh", 2)
    clock.advance(30)

    removed = cache.sweep()

    assert removed == 1
    assert cache.get("old") is None
    assert cache.get("fresh") == 2


def test_delete_and_clear():
    cache = ItemCache()
    cache.set("a", 1)
    cache.set("b", 2)

    cache.delete("a")
    cache.delete("missing")
    assert cache.get("a") is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_background_sweep_start_and_stop():
    clock = _FakeClock()
    cache = ItemCache(ttl_seconds=10, sweep_interval_seconds=0.01, clock=clock)
    cache.set("stale", 1)
    clock.advance(11)

    cache.start()
    try:
        assert cache.running
        deadline = time.monotonic() + 2
        while len(cache) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(cache) == 0
    finally:
        cache.stop()

    assert not cache.running


def test_start_is_idempotent():
    cache = ItemCache(sweep_interval_seconds=10)
    cache.start()
    first = cache._thread
    cache.start()
    try:
        assert cache._thread is first
    finally:
        cache.stop()
