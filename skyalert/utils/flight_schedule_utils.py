"""
Adaptive polling intervals for tracked flights.

POLLING STRATEGY:
- landed/arrived: stop tracking
- cancelled/diverted: every 60min (nothing useful expected soon)
- >48h to departure: every 12h
- 24-48h: every 6h
- 12-24h: every 2h
- 6-12h: every 1h
- 2-6h: every 30min
- <2h, airborne or past departure: every 5min
- changes detected this cycle: at most every 15min

Intervals are in milliseconds to match the poll schedule clock.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple
import structlog

from ..models.flight import Flight, STATUS_CANCELLED, STATUS_DIVERTED, is_landed_status

logger = structlog.get_logger()

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

CANCELLED_INTERVAL_MS = 60 * MINUTE_MS
CHANGES_MAX_INTERVAL_MS = 15 * MINUTE_MS
NO_DATA_RETRY_MS = 60 * MINUTE_MS
PERSISTENCE_FAILURE_RETRY_MS = 30 * MINUTE_MS
DEFAULT_RULE_INTERVAL_MS = 30 * MINUTE_MS

# (hours until departure strictly greater than, interval)
DEPARTURE_STEPS = (
    (48, 12 * HOUR_MS),
    (24, 6 * HOUR_MS),
    (12, 2 * HOUR_MS),
    (6, 1 * HOUR_MS),
    (2, 30 * MINUTE_MS),
)
IMMINENT_INTERVAL_MS = 5 * MINUTE_MS

# Departure-time buckets used by the tracked-flights trigger, in hours from now
TIME_RANGES = {
    "near-term": (0, 12),
    "mid-term": (12, 24),
    "long-term": (24, None),
}


@dataclass(frozen=True)
class PollingDecision:
    interval_ms: int
    stop_tracking: bool = False


def interval_for_departure(departure_time: Optional[datetime], now_ms: int) -> int:
    """Step function of hours until scheduled departure"""
    if departure_time is None:
        # No schedule to go by: poll as if departure were imminent
        return IMMINENT_INTERVAL_MS

    hours_until_departure = (departure_time.timestamp() * 1000 - now_ms) / HOUR_MS

    for threshold_hours, interval_ms in DEPARTURE_STEPS:
        if hours_until_departure > threshold_hours:
            return interval_ms

    return IMMINENT_INTERVAL_MS


def calculate_polling_interval(flight: Flight, now_ms: int, changes_detected: bool = False) -> PollingDecision:
    """
    Decide when a flight should be polled next.

    Args:
        flight: Freshly fetched flight
        now_ms: Current time in epoch milliseconds
        changes_detected: Whether this cycle produced any change events

    Returns:
        PollingDecision; stop_tracking is set once the flight has landed
    """
    status = (flight.status or "").lower()

    if is_landed_status(status) or is_landed_status(flight.status_text):
        logger.info("flight_landed_no_more_polling",
            flight=flight.ident,
            status=flight.status
        )
        return PollingDecision(interval_ms=0, stop_tracking=True)

    if status in (STATUS_CANCELLED, STATUS_DIVERTED):
        interval_ms = CANCELLED_INTERVAL_MS
    else:
        interval_ms = interval_for_departure(flight.departure.scheduled, now_ms)

    if changes_detected:
        interval_ms = min(interval_ms, CHANGES_MAX_INTERVAL_MS)

    return PollingDecision(interval_ms=interval_ms)


def departure_window(time_range: str, now_utc: datetime) -> Tuple[datetime, Optional[datetime]]:
    """
    Translate a named time range into a [start, end) departure window.

    Raises:
        ValueError: unknown time range name
    """
    if time_range not in TIME_RANGES:
        raise ValueError(f"Unknown time range: {time_range}")

    start_hours, end_hours = TIME_RANGES[time_range]
    start = now_utc + timedelta(hours=start_hours)
    end = now_utc + timedelta(hours=end_hours) if end_hours is not None else None
    return start, end


def epoch_ms(moment: Optional[datetime] = None) -> int:
    moment = moment or datetime.now(timezone.utc)
    return int(moment.timestamp() * 1000)
