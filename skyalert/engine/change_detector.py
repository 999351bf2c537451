"""
Change detection between a stored flight and freshly fetched provider data.

detect_changes is pure: it only looks at the two snapshots it is given.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..models.database import AlertType
from ..models.flight import FlightSnapshot, is_airborne_status, is_landed_status

# Schedule shifts that round to this many minutes or fewer are noise, not delays
DELAY_THRESHOLD_MINUTES = 10


@dataclass(frozen=True)
class ChangeEvent:
    type: AlertType
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    delay_minutes: Optional[int] = None
    timestamp: Optional[datetime] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def detect_changes(stored: FlightSnapshot, fresh: FlightSnapshot) -> List[ChangeEvent]:
    """
    Compare stored vs fresh state and return every change that applies, in order:
    STATUS_CHANGE, DELAY, GATE_CHANGE, DEPARTURE, ARRIVAL.
    """
    changes: List[ChangeEvent] = []

    if fresh.status and fresh.status.lower() != (stored.status or "").lower():
        changes.append(ChangeEvent(
            type=AlertType.STATUS_CHANGE,
            old_value=stored.status,
            new_value=fresh.status,
        ))

    if stored.departure_time and fresh.departure_time:
        delay_minutes = round_half_up((fresh.departure_time - stored.departure_time).total_seconds() / 60)
        if abs(delay_minutes) > DELAY_THRESHOLD_MINUTES:
            changes.append(ChangeEvent(
                type=AlertType.DELAY,
                old_value=_iso(stored.departure_time),
                new_value=_iso(fresh.departure_time),
                delay_minutes=delay_minutes,
            ))

    if fresh.gate and fresh.gate != stored.gate:
        changes.append(ChangeEvent(
            type=AlertType.GATE_CHANGE,
            old_value=stored.gate,
            new_value=fresh.gate,
        ))

    if is_airborne_status(fresh.status) and not is_airborne_status(stored.status):
        changes.append(ChangeEvent(
            type=AlertType.DEPARTURE,
            old_value=stored.status,
            new_value=fresh.status,
            timestamp=fresh.actual_departure,
        ))

    if is_landed_status(fresh.status) and not is_landed_status(stored.status):
        changes.append(ChangeEvent(
            type=AlertType.ARRIVAL,
            old_value=stored.status,
            new_value=fresh.status,
            timestamp=fresh.actual_arrival,
        ))

    return changes
