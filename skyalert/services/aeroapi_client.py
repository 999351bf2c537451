# AeroAPI Flight Tracking Service
# Documentation: https://www.flightaware.com/commercial/aeroapi/

import os
import httpx
import structlog
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List

from ..models.flight import (
    Flight, FlightEndpoint, Aircraft, LivePosition,
    STATUS_CANCELLED, STATUS_DIVERTED, normalize_status, parse_timestamp
)
from ..utils.retry_logic import retry_async, RetryConfigs

logger = structlog.get_logger(__name__)


class AeroAPIClient:
    """
    Client for FlightAware AeroAPI v4.

    Returns normalized Flight objects, or None when the flight is unknown or
    the provider misbehaves. Never raises to the caller.

    Usage:
        client = AeroAPIClient()
        flight = await client.get_flight("AA1234", "2025-06-15")
    """

    name = "aeroapi"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        base_url: str = "https://aeroapi.flightaware.com/aeroapi",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else os.getenv("AERO_API_KEY")
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

        if not self.api_key:
            logger.warning("aero_api_key_missing",
                message="AERO_API_KEY not set - AeroAPI lookups disabled")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def get_flight(self, flight_number: str, departure_date: Optional[str] = None) -> Optional[Flight]:
        """
        Get current flight state from AeroAPI.

        Args:
            flight_number: Flight identifier (e.g., "AA1234", "LPE2464")
            departure_date: Optional departure date in YYYY-MM-DD format

        Returns:
            Normalized Flight, or None if not found/error
        """
        if not self.api_key:
            return None

        params: Dict[str, Any] = {"max_pages": 1}
        if departure_date:
            try:
                start_dt = datetime.strptime(departure_date, "%Y-%m-%d")
            except ValueError:
                logger.warning("aeroapi_invalid_departure_date",
                    flight_number=flight_number,
                    departure_date=departure_date
                )
                return None
            params["start"] = departure_date
            params["end"] = (start_dt + timedelta(days=1)).strftime("%Y-%m-%d")

        url = f"{self.base_url}/flights/{flight_number}"

        try:
            data = await retry_async(
                lambda: self._request(url, params),
                config=RetryConfigs.AERO_API,
                context=f"aeroapi_flights_{flight_number}"
            )
        except Exception as e:
            logger.error("aeroapi_request_failed",
                flight_number=flight_number,
                error_type=type(e).__name__,
                error=str(e)[:200]
            )
            return None

        if data is None:
            return None

        return self.parse_flights_response(data, flight_number, departure_date)

    async def _request(self, url: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        headers = {
            "x-apikey": self.api_key,
            "Accept": "application/json"
        }

        logger.info("aeroapi_request", url=url, params=params)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url, headers=headers, params=params)

            if response.status_code == 404:
                logger.info("flight_not_found", url=url, status_code=404)
                return None

            response.raise_for_status()
            return response.json()

    def parse_flights_response(
        self,
        data: Any,
        flight_number: str,
        departure_date: Optional[str] = None
    ) -> Optional[Flight]:
        """Pick the relevant flight out of a /flights/{ident} payload and normalize it"""
        try:
            flights = data.get("flights") or []

            if not flights:
                logger.info("no_flights_returned", flight_number=flight_number)
                return None

            flight_data = self._select_flight(flights, departure_date)
            if flight_data is None:
                logger.info("no_flight_for_date",
                    flight_number=flight_number,
                    departure_date=departure_date
                )
                return None

            return self._normalize(flight_data, flight_number, departure_date)

        except (AttributeError, TypeError, KeyError, ValueError) as e:
            logger.error("flight_parsing_error",
                flight_number=flight_number,
                error=str(e),
                data_sample=str(data)[:200]
            )
            return None

    def _select_flight(self, flights: List[Dict[str, Any]], departure_date: Optional[str]) -> Optional[Dict[str, Any]]:
        if departure_date:
            for flight in flights:
                scheduled = flight.get("scheduled_out") or flight.get("scheduled_off") or ""
                if scheduled.startswith(departure_date):
                    return flight
            return None

        # AeroAPI returns past and future legs; take the one scheduled closest to now
        now = datetime.now(timezone.utc)

        def distance(flight: Dict[str, Any]) -> float:
            scheduled = parse_timestamp(flight.get("scheduled_out") or flight.get("scheduled_off"))
            if scheduled is None:
                return float("inf")
            return abs((scheduled - now).total_seconds())

        return min(flights, key=distance)

    def _normalize(self, flight: Dict[str, Any], flight_number: str, departure_date: Optional[str]) -> Flight:
        origin = flight.get("origin") or {}
        destination = flight.get("destination") or {}

        raw_status = flight.get("status")
        if flight.get("cancelled"):
            status = STATUS_CANCELLED
        elif flight.get("diverted"):
            status = STATUS_DIVERTED
        else:
            status = normalize_status(raw_status)

        scheduled_out = parse_timestamp(flight.get("scheduled_out") or flight.get("scheduled_off"))

        normalized = Flight(
            ident=flight.get("ident_iata") or flight.get("ident") or flight_number,
            status=status,
            status_text=raw_status,
            flight_iata=flight.get("ident_iata"),
            flight_icao=flight.get("ident_icao"),
            flight_number=flight.get("flight_number"),
            airline_name=flight.get("operator"),
            airline_iata=flight.get("operator_iata"),
            airline_icao=flight.get("operator_icao"),
            flight_date=departure_date or (scheduled_out.strftime("%Y-%m-%d") if scheduled_out else None),
            departure=FlightEndpoint(
                iata=origin.get("code_iata"),
                icao=origin.get("code_icao"),
                airport=origin.get("name"),
                terminal=flight.get("terminal_origin"),
                gate=flight.get("gate_origin"),
                delay_minutes=_seconds_to_minutes(flight.get("departure_delay")),
                scheduled=scheduled_out,
                estimated=parse_timestamp(flight.get("estimated_out") or flight.get("estimated_off")),
                actual=parse_timestamp(flight.get("actual_out") or flight.get("actual_off")),
                timezone=origin.get("timezone"),
            ),
            arrival=FlightEndpoint(
                iata=destination.get("code_iata"),
                icao=destination.get("code_icao"),
                airport=destination.get("name"),
                terminal=flight.get("terminal_destination"),
                gate=flight.get("gate_destination"),
                delay_minutes=_seconds_to_minutes(flight.get("arrival_delay")),
                scheduled=parse_timestamp(flight.get("scheduled_in") or flight.get("scheduled_on")),
                estimated=parse_timestamp(flight.get("estimated_in") or flight.get("estimated_on")),
                actual=parse_timestamp(flight.get("actual_on") or flight.get("actual_in")),
                timezone=destination.get("timezone"),
            ),
            provider=self.name,
        )

        if flight.get("aircraft_type") or flight.get("registration"):
            normalized.aircraft = Aircraft(
                registration=flight.get("registration"),
                type=flight.get("aircraft_type"),
            )

        position = flight.get("last_position")
        if position:
            normalized.live = LivePosition(
                updated=parse_timestamp(position.get("timestamp")),
                latitude=position.get("latitude") or 0.0,
                longitude=position.get("longitude") or 0.0,
                altitude=position.get("altitude") or 0.0,
                direction=position.get("heading") or 0.0,
                speed_horizontal=position.get("groundspeed") or 0.0,
                speed_vertical=position.get("vertical_speed") or 0.0,
                is_ground=bool(position.get("is_ground", False)),
            )

        logger.info("flight_status_parsed",
            flight_number=flight_number,
            status=normalized.status,
            status_text=raw_status,
            provider=self.name
        )

        return normalized


def _seconds_to_minutes(value: Any) -> int:
    # AeroAPI reports delays in seconds
    try:
        return int(value or 0) // 60
    except (TypeError, ValueError):
        return 0
