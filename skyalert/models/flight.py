"""Canonical flight representation shared by every flight-data provider."""

from datetime import datetime, timezone
from typing import Optional, Any
from dataclasses import dataclass, field


# Canonical status vocabulary (lower-case). Raw provider text is kept in Flight.status_text.
STATUS_SCHEDULED = "scheduled"
STATUS_ACTIVE = "active"
STATUS_LANDED = "landed"
STATUS_CANCELLED = "cancelled"
STATUS_DIVERTED = "diverted"
STATUS_INCIDENT = "incident"
STATUS_UNKNOWN = "unknown"

AIRBORNE_KEYWORDS = ("active", "en route", "en-route", "airborne", "departed", "in air")
LANDED_KEYWORDS = ("landed", "arrived")


def normalize_status(raw_status: Optional[str]) -> str:
    """
    Map free-text provider status onto the canonical vocabulary.

    AeroAPI reports things like "En Route / Delayed" or "Arrived / Gate Arrival",
    AviationStack already uses the canonical words.
    """
    if not raw_status:
        return STATUS_UNKNOWN

    status_lower = raw_status.strip().lower()

    if "cancel" in status_lower:
        return STATUS_CANCELLED
    if "divert" in status_lower:
        return STATUS_DIVERTED
    if "incident" in status_lower:
        return STATUS_INCIDENT
    if any(keyword in status_lower for keyword in LANDED_KEYWORDS):
        return STATUS_LANDED
    if any(keyword in status_lower for keyword in AIRBORNE_KEYWORDS):
        return STATUS_ACTIVE
    if "scheduled" in status_lower or "delayed" in status_lower or "on time" in status_lower:
        return STATUS_SCHEDULED
    if status_lower == STATUS_UNKNOWN:
        return STATUS_UNKNOWN

    return status_lower


def is_airborne_status(status: Optional[str]) -> bool:
    if not status:
        return False
    status_lower = status.lower()
    return any(keyword in status_lower for keyword in AIRBORNE_KEYWORDS)


def is_landed_status(status: Optional[str]) -> bool:
    if not status:
        return False
    status_lower = status.lower()
    return any(keyword in status_lower for keyword in LANDED_KEYWORDS)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse provider timestamps (ISO strings, with or without 'Z') into aware UTC datetimes."""
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None

    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class FlightEndpoint:
    """Departure or arrival side of a flight"""
    iata: Optional[str] = None
    icao: Optional[str] = None
    airport: Optional[str] = None
    terminal: Optional[str] = None
    gate: Optional[str] = None
    delay_minutes: int = 0
    scheduled: Optional[datetime] = None
    estimated: Optional[datetime] = None
    actual: Optional[datetime] = None
    timezone: Optional[str] = None


@dataclass
class Aircraft:
    registration: Optional[str] = None
    type: Optional[str] = None


@dataclass
class LivePosition:
    updated: Optional[datetime] = None
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0
    direction: float = 0.0
    speed_horizontal: float = 0.0
    speed_vertical: float = 0.0
    is_ground: bool = False


@dataclass
class Flight:
    """Normalized flight data, whatever provider it came from"""
    ident: str
    status: str = STATUS_UNKNOWN
    status_text: Optional[str] = None
    flight_iata: Optional[str] = None
    flight_icao: Optional[str] = None
    flight_number: Optional[str] = None
    airline_name: Optional[str] = None
    airline_iata: Optional[str] = None
    airline_icao: Optional[str] = None
    flight_date: Optional[str] = None
    departure: FlightEndpoint = field(default_factory=FlightEndpoint)
    arrival: FlightEndpoint = field(default_factory=FlightEndpoint)
    aircraft: Optional[Aircraft] = None
    live: Optional[LivePosition] = None
    provider: Optional[str] = None


@dataclass(frozen=True)
class FlightSnapshot:
    """
    Comparable projection of a flight's state.

    Both a stored TrackedFlight and a freshly fetched Flight are reduced to this
    shape before diffing, so the change detector compares like with like.
    """
    status: Optional[str] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    gate: Optional[str] = None
    terminal: Optional[str] = None
    actual_departure: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None

    @classmethod
    def from_flight(cls, flight: Flight) -> "FlightSnapshot":
        return cls(
            status=flight.status,
            departure_time=flight.departure.scheduled,
            arrival_time=flight.arrival.scheduled,
            gate=flight.departure.gate,
            terminal=flight.departure.terminal,
            actual_departure=flight.departure.actual,
            actual_arrival=flight.arrival.actual,
        )

    @classmethod
    def from_tracked(cls, tracked: Any) -> "FlightSnapshot":
        return cls(
            status=getattr(tracked, "status", None),
            departure_time=parse_timestamp(getattr(tracked, "departure_time", None)),
            arrival_time=parse_timestamp(getattr(tracked, "arrival_time", None)),
            gate=getattr(tracked, "gate", None),
            terminal=getattr(tracked, "terminal", None),
        )
