"""
Single entry point for flight data: tries each provider in order and caches
the normalized result.
"""

from typing import Optional, List, Dict, Any, Protocol
import structlog

from ..models.flight import Flight
from .flight_cache import FlightCache, normalize_cache_key

logger = structlog.get_logger(__name__)


class FlightProvider(Protocol):
    name: str

    async def get_flight(self, flight_number: str, departure_date: Optional[str] = None) -> Optional[Flight]:
        ...


class FlightDataGateway:
    """
    Usage:
        gateway = FlightDataGateway([AeroAPIClient(), AviationStackClient()])
        flight = await gateway.fetch_flight("AA1234")
    """

    def __init__(self, providers: List[FlightProvider], cache: Optional[FlightCache] = None):
        self.providers = providers
        self.cache = cache if cache is not None else FlightCache()

    async def fetch_flight(self, identifier: str, departure_date: Optional[str] = None) -> Optional[Flight]:
        if not identifier or not identifier.strip():
            return None

        cache_key = normalize_cache_key(identifier, departure_date)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        for provider in self.providers:
            try:
                flight = await provider.get_flight(identifier, departure_date)
            except Exception as e:
                # Providers are expected to return None on failure; guard anyway
                logger.error("provider_unexpected_error",
                    provider=getattr(provider, "name", type(provider).__name__),
                    identifier=identifier,
                    error=str(e)
                )
                continue

            if flight is not None:
                self.cache.set(cache_key, flight)
                logger.info("flight_fetched",
                    identifier=identifier,
                    provider=getattr(provider, "name", None),
                    status=flight.status
                )
                return flight

        logger.info("flight_data_unavailable", identifier=identifier, departure_date=departure_date)
        return None

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup()
