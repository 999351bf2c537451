"""In-memory cache for normalized provider responses with status-dependent TTL."""

import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable
import structlog

from ..models.flight import Flight

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 10 * 60

# Flights in the air move fast, scheduled and finished flights barely change.
STATUS_TTL_SECONDS = {
    "active": 5 * 60,
    "scheduled": 30 * 60,
    "landed": 60 * 60,
    "cancelled": 60 * 60,
    "diverted": 60 * 60,
}


def ttl_for_status(status: Optional[str]) -> int:
    if not status:
        return DEFAULT_TTL_SECONDS
    return STATUS_TTL_SECONDS.get(status.lower(), DEFAULT_TTL_SECONDS)


def normalize_cache_key(identifier: str, departure_date: Optional[str] = None) -> str:
    key = "".join(identifier.split()).upper()
    if departure_date:
        key = f"{key}:{departure_date}"
    return key


@dataclass
class CacheEntry:
    """Cached flight and the moment it stops being valid"""
    data: Flight
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class FlightCache:
    """
    get/set/cleanup cache keyed by normalized flight identifier.

    The cache is an optimization only: callers must behave the same when it is
    disabled, in which case get() always misses and set() is a no-op.
    """

    def __init__(self, enabled: bool = True, clock: Callable[[], float] = time.time):
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Flight]:
        if not self.enabled:
            self._misses += 1
            return None

        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug("cache_expired", key=key)
            return None

        self._hits += 1
        logger.debug("cache_hit", key=key)
        return entry.data

    def set(self, key: str, flight: Flight) -> None:
        if not self.enabled:
            return

        ttl = ttl_for_status(flight.status)
        self._entries[key] = CacheEntry(data=flight, expires_at=self._clock() + ttl)

        logger.debug("flight_cached", key=key, status=flight.status, ttl_seconds=ttl)

    def cleanup(self) -> int:
        """Evict expired entries; returns how many were removed."""
        now = self._clock()
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]

        for key in expired_keys:
            del self._entries[key]

        logger.info("cache_cleaned",
            removed_entries=len(expired_keys),
            remaining_entries=len(self._entries)
        )
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "enabled": self.enabled,
            "cache_hits": self._hits,
            "cache_misses": self._misses,
            "hit_rate_percent": round(hit_rate, 2),
            "cache_size": len(self._entries),
        }
