"""Tests for the status-aware flight cache."""

import pytest

from skyalert.services.flight_cache import FlightCache, normalize_cache_key, ttl_for_status

from conftest import make_flight


class FakeTime:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now


class TestCacheKeys:

    def test_key_is_upper_cased_without_whitespace(self):
        assert normalize_cache_key(" aa 100 ") == "AA100"

    def test_departure_date_is_part_of_the_key(self):
        assert normalize_cache_key("aa100", "2025-06-15") == "AA100:2025-06-15"


class TestTtl:

    @pytest.mark.parametrize("status,expected", [
        ("active", 300),
        ("scheduled", 1800),
        ("landed", 3600),
        ("cancelled", 3600),
        ("diverted", 3600),
        ("incident", 600),
        (None, 600),
    ])
    def test_ttl_depends_on_status(self, status, expected):
        assert ttl_for_status(status) == expected


class TestFlightCache:

    def setup_method(self):
        self.time = FakeTime()
        self.cache = FlightCache(clock=self.time)

    def test_hit_before_expiry(self):
        flight = make_flight("AA100", "active")
        self.cache.set("AA100", flight)

        self.time.now += 299
        assert self.cache.get("AA100") is flight

    def test_active_flights_expire_after_five_minutes(self):
        self.cache.set("AA100", make_flight("AA100", "active"))

        self.time.now += 300
        assert self.cache.get("AA100") is None
        assert len(self.cache) == 0

    def test_scheduled_flights_live_longer(self):
        self.cache.set("AA100", make_flight("AA100", "scheduled"))

        self.time.now += 1000
        assert self.cache.get("AA100") is not None

    def test_cleanup_evicts_only_expired_entries(self):
        self.cache.set("AA100", make_flight("AA100", "active"))
        self.cache.set("UA200", make_flight("UA200", "landed"))

        self.time.now += 600
        removed = self.cache.cleanup()

        assert removed == 1
        assert len(self.cache) == 1
        assert self.cache.get("UA200") is not None

    def test_disabled_cache_always_misses(self):
        cache = FlightCache(enabled=False, clock=self.time)
        cache.set("AA100", make_flight("AA100", "scheduled"))

        assert cache.get("AA100") is None
        assert len(cache) == 0

    def test_stats_track_hits_and_misses(self):
        self.cache.set("AA100", make_flight("AA100", "scheduled"))
        self.cache.get("AA100")
        self.cache.get("UA200")

        stats = self.cache.get_stats()

        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["cache_size"] == 1
