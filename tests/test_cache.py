from datetime import datetime, timezone

from conftest import make_event

from models.calendar import DateRange
from services.cache import CachePolicy, EventCache


def test_policy_freshness():
    policy = CachePolicy(ttl_seconds=300)
    assert policy.is_fresh(created_at=0, now=299)
    assert not policy.is_fresh(created_at=0, now=300)


# Purpose: entries older than the TTL are never served as fresh.
def test_entries_expire(clock, january):
    cache = EventCache(CachePolicy(ttl_seconds=300), clock=clock)
    key = cache.make_key("u1", january, "combined:academic")
    cache.put(key, [make_event("e1")])

    clock.advance(299)
    assert [event.id for event in cache.get(key)] == ["e1"]

    clock.advance(2)
    assert cache.get(key) is None
    assert [event.id for event in cache.get_stale(key)] == ["e1"]


# Purpose: keys separate users, ranges and inclusion flags.
def test_keys_are_distinct(clock, january):
    cache = EventCache(clock=clock)
    cache.put(cache.make_key("u1", january, "combined"), [make_event("a")])

    assert cache.get(cache.make_key("u2", january, "combined")) is None
    assert cache.get(cache.make_key("u1", january, "branch_only")) is None


def test_rolling_ranges_share_a_key():
    first = DateRange.next_days(30, now=datetime(2025, 1, 1, 9, 0, 5, tzinfo=timezone.utc))
    second = DateRange.next_days(30, now=datetime(2025, 1, 1, 9, 0, 40, tzinfo=timezone.utc))

    assert EventCache.make_key("u1", first, "f") == EventCache.make_key("u1", second, "f")


def test_returned_lists_are_copies(clock, january):
    cache = EventCache(clock=clock)
    key = cache.make_key("u1", january, "f")
    cache.put(key, [make_event("a")])

    cache.get(key).clear()

    assert len(cache.get(key)) == 1


def test_clear_and_stats(clock, january):
    cache = EventCache(CachePolicy(ttl_seconds=10), clock=clock)
    cache.put(cache.make_key("u1", january, "f"), [])
    clock.advance(20)
    cache.put(cache.make_key("u2", january, "f"), [])

    assert cache.stats() == {"size": 2, "fresh": 1, "stale": 1, "ttl_seconds": 10}

    cache.clear("u1")
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0
