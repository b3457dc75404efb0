"""
Tests for the TTL cache used to hold candidate pools.
"""

from recon_kernel.services.cache import TTLCache


class TestTTLCache:

    def test_hit_before_expiry(self, deterministic_clock):
        cache = TTLCache(deterministic_clock, default_ttl_seconds=60)
        cache.set("k", [1, 2])

        deterministic_clock.advance(59)

        assert cache.get("k") == [1, 2]

    def test_expired_entries_evicted(self, deterministic_clock):
        cache = TTLCache(deterministic_clock, default_ttl_seconds=60)
        cache.set("k", "v")

        deterministic_clock.advance(60)

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_per_key_ttl_overrides_default(self, deterministic_clock):
        cache = TTLCache(deterministic_clock, default_ttl_seconds=60)
        cache.set("short", "v", ttl_seconds=5)
        cache.set("long", "v")

        deterministic_clock.advance(10)

        assert cache.get("short") is None
        assert cache.get("long") == "v"

    def test_no_default_ttl_never_expires(self, deterministic_clock):
        cache = TTLCache(deterministic_clock, default_ttl_seconds=None)
        cache.set("k", "v")

        deterministic_clock.advance(days=365)

        assert cache.get("k") == "v"

    def test_invalidate_and_clear(self, deterministic_clock):
        cache = TTLCache(deterministic_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0
