"""Tests for AeroAPI and AviationStack normalization and failure handling."""

import httpx
import pytest
from datetime import datetime, timezone
from unittest.mock import patch

from skyalert.services.aeroapi_client import AeroAPIClient
from skyalert.services.aviationstack_client import AviationStackClient
from skyalert.utils.retry_logic import RetryConfig, RetryConfigs

FAST_RETRY = RetryConfig(max_attempts=2, base_delay=0.0, jitter=False)

AEROAPI_PAYLOAD = {
    "flights": [
        {
            "ident": "AAL100",
            "ident_icao": "AAL100",
            "ident_iata": "AA100",
            "flight_number": "100",
            "operator": "AAL",
            "operator_iata": "AA",
            "operator_icao": "AAL",
            "status": "En Route / On Time",
            "cancelled": False,
            "diverted": False,
            "departure_delay": 900,
            "arrival_delay": 0,
            "origin": {"code_iata": "JFK", "code_icao": "KJFK", "name": "John F Kennedy Intl", "timezone": "America/New_York"},
            "destination": {"code_iata": "LHR", "code_icao": "EGLL", "name": "London Heathrow", "timezone": "Europe/London"},
            "gate_origin": "B2",
            "terminal_origin": "8",
            "gate_destination": None,
            "terminal_destination": "3",
            "scheduled_out": "2025-06-15T18:00:00Z",
            "estimated_out": "2025-06-15T18:15:00Z",
            "actual_out": "2025-06-15T18:14:00Z",
            "scheduled_in": "2025-06-16T06:00:00Z",
            "estimated_in": "2025-06-16T06:05:00Z",
            "actual_in": None,
            "aircraft_type": "B77W",
            "registration": "N717AN",
            "last_position": {
                "latitude": 45.1,
                "longitude": -40.2,
                "altitude": 370,
                "groundspeed": 520,
                "heading": 71,
                "timestamp": "2025-06-15T21:00:00Z"
            }
        },
        {
            "ident_iata": "AA100",
            "status": "Scheduled",
            "scheduled_out": "2025-06-16T18:00:00Z"
        }
    ]
}


def transport_returning(status_code, json_body=None, text=None, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        if json_body is not None:
            return httpx.Response(status_code, json=json_body)
        return httpx.Response(status_code, text=text or "")
    return httpx.MockTransport(handler)


class TestAeroAPIClient:

    @pytest.mark.asyncio
    async def test_normalizes_flight_for_requested_date(self):
        seen = []
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(200, AEROAPI_PAYLOAD, seen=seen))

        flight = await client.get_flight("AA100", "2025-06-15")

        assert flight.status == "active"
        assert flight.status_text == "En Route / On Time"
        assert flight.flight_iata == "AA100"
        assert flight.departure.iata == "JFK"
        assert flight.departure.gate == "B2"
        assert flight.departure.terminal == "8"
        assert flight.departure.delay_minutes == 15
        assert flight.departure.scheduled == datetime(2025, 6, 15, 18, 0, tzinfo=timezone.utc)
        assert flight.arrival.iata == "LHR"
        assert flight.aircraft.type == "B77W"
        assert flight.live.speed_horizontal == 520
        assert flight.provider == "aeroapi"

        request = seen[0]
        assert request.headers["x-apikey"] == "test-key"
        assert request.url.path.endswith("/flights/AA100")
        assert request.url.params["start"] == "2025-06-15"
        assert request.url.params["end"] == "2025-06-16"

    @pytest.mark.asyncio
    async def test_no_flight_on_requested_date(self):
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(200, AEROAPI_PAYLOAD))
        assert await client.get_flight("AA100", "2025-06-20") is None

    @pytest.mark.asyncio
    async def test_cancelled_flag_wins_over_status_text(self):
        payload = {"flights": [{"ident_iata": "AA100", "status": "Scheduled", "cancelled": True,
                                "scheduled_out": "2025-06-15T18:00:00Z"}]}
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(200, payload))

        flight = await client.get_flight("AA100", "2025-06-15")

        assert flight.status == "cancelled"

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self):
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(404, {"title": "not found"}))
        assert await client.get_flight("ZZ999") is None

    @pytest.mark.asyncio
    async def test_server_error_returns_none_after_retries(self):
        seen = []
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(503, {"error": "busy"}, seen=seen))

        with patch.object(RetryConfigs, "AERO_API", FAST_RETRY):
            assert await client.get_flight("AA100") is None

        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        seen = []
        client = AeroAPIClient(api_key="bad-key", transport=transport_returning(401, {"title": "unauthorized"}, seen=seen))

        with patch.object(RetryConfigs, "AERO_API", FAST_RETRY):
            assert await client.get_flight("AA100") is None

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_returns_none(self):
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(200, text="<html>oops</html>"))
        assert await client.get_flight("AA100") is None

    @pytest.mark.asyncio
    async def test_unexpected_shape_returns_none(self):
        client = AeroAPIClient(api_key="test-key", transport=transport_returning(200, ["not", "a", "dict"]))
        assert await client.get_flight("AA100") is None

    @pytest.mark.asyncio
    async def test_missing_api_key_skips_request(self):
        seen = []
        with patch.dict("os.environ", {}, clear=True):
            client = AeroAPIClient(transport=transport_returning(200, AEROAPI_PAYLOAD, seen=seen))

        assert await client.get_flight("AA100") is None
        assert seen == []


class TestAviationStackClient:

    @pytest.mark.asyncio
    async def test_normalizes_first_result(self):
        seen = []
        payload = {
            "data": [{
                "flight_date": "2025-06-15",
                "flight_status": "scheduled",
                "departure": {"airport": "Kennedy", "iata": "JFK", "icao": "KJFK", "gate": "A1",
                              "terminal": "4", "delay": 20, "scheduled": "2025-06-15T18:00:00+00:00"},
                "arrival": {"airport": "Heathrow", "iata": "LHR", "scheduled": "2025-06-16T06:00:00+00:00"},
                "airline": {"name": "American Airlines", "iata": "AA", "icao": "AAL"},
                "flight": {"number": "100", "iata": "AA100", "icao": "AAL100"},
                "aircraft": None,
                "live": None
            }]
        }
        client = AviationStackClient(api_key="stack-key", transport=transport_returning(200, payload, seen=seen))

        flight = await client.get_flight("aa 100")

        assert flight.status == "scheduled"
        assert flight.departure.gate == "A1"
        assert flight.departure.delay_minutes == 20
        assert flight.airline_name == "American Airlines"
        assert flight.aircraft is None
        assert flight.provider == "aviationstack"
        assert seen[0].url.params["flight_iata"] == "AA100"
        assert seen[0].url.params["access_key"] == "stack-key"

    @pytest.mark.asyncio
    async def test_error_body_returns_none(self):
        payload = {"error": {"code": "usage_limit_reached", "message": "Monthly limit reached"}}
        client = AviationStackClient(api_key="stack-key", transport=transport_returning(200, payload))
        assert await client.get_flight("AA100") is None

    @pytest.mark.asyncio
    async def test_unconfigured_client_returns_none(self):
        with patch.dict("os.environ", {}, clear=True):
            client = AviationStackClient()
        assert await client.get_flight("AA100") is None
