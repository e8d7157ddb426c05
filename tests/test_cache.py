from datetime import datetime, timedelta, timezone

from mining_comps.cache import TTLCache, is_expired

T0 = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


def test_empty_cache_is_expired():
    cache = TTLCache(60)
    assert is_expired(cache, T0)
    assert cache.get(T0) is None


def test_entry_expires_after_ttl():
    cache = TTLCache(60)
    cache.put(["ABX.TO"], now=T0)
    assert not is_expired(cache, T0 + timedelta(seconds=59))
    assert cache.get(T0 + timedelta(seconds=59)) == ["ABX.TO"]
    assert is_expired(cache, T0 + timedelta(seconds=60))
    assert cache.get(T0 + timedelta(seconds=61)) is None


def test_caches_are_independent():
    first, second = TTLCache(60), TTLCache(60)
    first.put({"USD": 1.35}, now=T0)
    assert second.get(T0) is None
    first.clear()
    assert first.get(T0) is None
