from __future__ import annotations

from datetime import datetime, timedelta, timezone

from clubpass_api.services.nfc.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(timedelta(minutes=5), clock=clock)
    cache.set("AE", "rules")

    clock.advance(minutes=4, seconds=59)
    assert cache.get("AE") == "rules"

    clock.advance(seconds=1)
    assert cache.get("AE") is None
    assert len(cache) == 0


def test_invalidate_single_key_and_all() -> None:
    cache: TTLCache[int] = TTLCache(timedelta(minutes=2))
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert "a" not in cache
    assert cache.get("b") == 2

    cache.invalidate()
    assert len(cache) == 0


def test_set_refreshes_insertion_time() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(timedelta(minutes=2), clock=clock)
    cache.set("key", "old")
    clock.advance(minutes=1, seconds=30)
    cache.set("key", "new")
    clock.advance(minutes=1)

    assert cache.get("key") == "new"
