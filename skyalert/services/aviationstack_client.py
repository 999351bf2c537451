"""
AviationStack fallback provider.

Used when AeroAPI is not configured or has nothing for a flight. AviationStack
already reports flight_status with the canonical words, but the field layout
differs, so it is mapped onto the same Flight shape.
"""

import os
import httpx
import structlog
from typing import Optional, Dict, Any

from ..models.flight import Flight, FlightEndpoint, Aircraft, LivePosition, normalize_status, parse_timestamp
from ..utils.retry_logic import retry_async, RetryConfigs

logger = structlog.get_logger(__name__)


class AviationStackClient:
    name = "aviationstack"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        base_url: str = "https://api.aviationstack.com/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else os.getenv("AVIATIONSTACK_API_KEY")
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def get_flight(self, flight_number: str, departure_date: Optional[str] = None) -> Optional[Flight]:
        if not self.api_key:
            return None

        params = {
            "access_key": self.api_key,
            "flight_iata": "".join(flight_number.split()).upper(),
        }
        if departure_date:
            params["flight_date"] = departure_date

        try:
            data = await retry_async(
                lambda: self._request(params),
                config=RetryConfigs.AVIATIONSTACK_API,
                context=f"aviationstack_flights_{flight_number}"
            )
        except Exception as e:
            logger.error("aviationstack_request_failed",
                flight_number=flight_number,
                error_type=type(e).__name__,
                error=str(e)[:200]
            )
            return None

        return self.parse_flights_response(data, flight_number)

    async def _request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(f"{self.base_url}/flights", params=params)
            response.raise_for_status()
            return response.json()

    def parse_flights_response(self, data: Any, flight_number: str) -> Optional[Flight]:
        try:
            # AviationStack reports quota/auth problems inside a 200 body
            if data.get("error"):
                logger.error("aviationstack_api_error",
                    flight_number=flight_number,
                    error=str(data["error"])[:200]
                )
                return None

            flights = data.get("data") or []
            if not flights:
                logger.info("no_flights_returned", flight_number=flight_number, provider=self.name)
                return None

            return self._normalize(flights[0], flight_number)

        except (AttributeError, TypeError, KeyError, ValueError) as e:
            logger.error("flight_parsing_error",
                flight_number=flight_number,
                provider=self.name,
                error=str(e),
                data_sample=str(data)[:200]
            )
            return None

    def _normalize(self, flight: Dict[str, Any], flight_number: str) -> Flight:
        flight_info = flight.get("flight") or {}
        airline = flight.get("airline") or {}
        raw_status = flight.get("flight_status")

        normalized = Flight(
            ident=flight_info.get("iata") or flight_number,
            status=normalize_status(raw_status),
            status_text=raw_status,
            flight_iata=flight_info.get("iata"),
            flight_icao=flight_info.get("icao"),
            flight_number=flight_info.get("number"),
            airline_name=airline.get("name"),
            airline_iata=airline.get("iata"),
            airline_icao=airline.get("icao"),
            flight_date=flight.get("flight_date"),
            departure=_endpoint(flight.get("departure") or {}),
            arrival=_endpoint(flight.get("arrival") or {}),
            provider=self.name,
        )

        aircraft = flight.get("aircraft")
        if aircraft:
            normalized.aircraft = Aircraft(
                registration=aircraft.get("registration"),
                type=aircraft.get("icao") or aircraft.get("iata"),
            )

        live = flight.get("live")
        if live:
            normalized.live = LivePosition(
                updated=parse_timestamp(live.get("updated")),
                latitude=live.get("latitude") or 0.0,
                longitude=live.get("longitude") or 0.0,
                altitude=live.get("altitude") or 0.0,
                direction=live.get("direction") or 0.0,
                speed_horizontal=live.get("speed_horizontal") or 0.0,
                speed_vertical=live.get("speed_vertical") or 0.0,
                is_ground=bool(live.get("is_ground", False)),
            )

        return normalized


def _endpoint(data: Dict[str, Any]) -> FlightEndpoint:
    return FlightEndpoint(
        iata=data.get("iata"),
        icao=data.get("icao"),
        airport=data.get("airport"),
        terminal=data.get("terminal"),
        gate=data.get("gate"),
        delay_minutes=int(data.get("delay") or 0),
        scheduled=parse_timestamp(data.get("scheduled")),
        estimated=parse_timestamp(data.get("estimated")),
        actual=parse_timestamp(data.get("actual")),
        timezone=data.get("timezone"),
    )
