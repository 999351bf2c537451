"""
In-memory poll schedule for tracked flights and rules.

Nothing here is persisted: after a restart every entity is due on first sight.
One PollScheduler is created per process and handed to the monitor agent.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, TypeVar, Any
import structlog

from ..utils.flight_schedule_utils import epoch_ms

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DAY_MS = 24 * 60 * 60 * 1000

FLIGHTS = "flights"
RULES = "rules"
RULE_FLIGHTS = "rule_flights"


@dataclass
class PollSchedule:
    """Last and next poll times (epoch ms) per entity id"""
    last_poll: Dict[str, int] = field(default_factory=dict)
    next_poll: Dict[str, int] = field(default_factory=dict)

    def remove(self, entity_id: str) -> None:
        self.last_poll.pop(entity_id, None)
        self.next_poll.pop(entity_id, None)

    def __len__(self) -> int:
        return len(self.next_poll)


class PollScheduler:
    """
    Tracks when each flight and rule is due for another provider call.

    Usage:
        scheduler = PollScheduler()
        due = scheduler.filter_due(FLIGHTS, flights)
        scheduler.schedule(FLIGHTS, flight.id, decision.interval_ms)
    """

    KINDS = (FLIGHTS, RULES, RULE_FLIGHTS)

    def __init__(self, clock: Optional[Callable[[], int]] = None, retention_days: int = 7):
        self._clock = clock or epoch_ms
        self.retention_ms = retention_days * DAY_MS
        self._schedules: Dict[str, PollSchedule] = {kind: PollSchedule() for kind in self.KINDS}
        # flight id -> moment tracking stopped
        self._retired: Dict[str, int] = {}

    def now(self) -> int:
        return self._clock()

    def schedule_for(self, kind: str) -> PollSchedule:
        try:
            return self._schedules[kind]
        except KeyError:
            raise ValueError(f"Unknown schedule kind: {kind}")

    def is_due(self, kind: str, entity_id: str) -> bool:
        if kind != RULES and entity_id in self._retired:
            return False

        next_poll = self.schedule_for(kind).next_poll.get(entity_id)
        if next_poll is None:
            return True
        return self.now() >= next_poll

    def filter_due(self, kind: str, candidates: Iterable[T], key: Callable[[T], str] = lambda c: c.id) -> List[T]:
        due = [candidate for candidate in candidates if self.is_due(kind, key(candidate))]
        return due

    def schedule(self, kind: str, entity_id: str, interval_ms: int) -> int:
        """Record a poll now and set the next one interval_ms later; returns next poll time"""
        now = self.now()
        schedule = self.schedule_for(kind)
        schedule.last_poll[entity_id] = now
        schedule.next_poll[entity_id] = now + interval_ms
        return now + interval_ms

    def schedule_at(self, kind: str, entity_id: str, next_poll_ms: int) -> None:
        schedule = self.schedule_for(kind)
        schedule.last_poll[entity_id] = self.now()
        schedule.next_poll[entity_id] = next_poll_ms

    def next_poll(self, kind: str, entity_id: str) -> Optional[int]:
        return self.schedule_for(kind).next_poll.get(entity_id)

    def last_poll(self, kind: str, entity_id: str) -> Optional[int]:
        return self.schedule_for(kind).last_poll.get(entity_id)

    def retire(self, flight_id: str) -> bool:
        """
        Stop tracking a flight for good.

        Returns True only the first time, so callers can emit the
        tracking-ended notification exactly once.
        """
        for kind in (FLIGHTS, RULE_FLIGHTS):
            self._schedules[kind].remove(flight_id)

        if flight_id in self._retired:
            return False

        self._retired[flight_id] = self.now()
        logger.info("flight_tracking_stopped", flight_id=flight_id)
        return True

    def is_retired(self, flight_id: str) -> bool:
        return flight_id in self._retired

    def purge_stale(self) -> int:
        """Drop entries (and retired markers) last touched before the retention window"""
        cutoff = self.now() - self.retention_ms
        removed = 0

        for schedule in self._schedules.values():
            stale = [entity_id for entity_id, last in schedule.last_poll.items() if last < cutoff]
            for entity_id in stale:
                schedule.remove(entity_id)
            removed += len(stale)

        stale_retired = [flight_id for flight_id, retired_at in self._retired.items() if retired_at < cutoff]
        for flight_id in stale_retired:
            del self._retired[flight_id]
        removed += len(stale_retired)

        if removed:
            logger.info("poll_schedule_purged", removed_entries=removed)
        return removed

    def get_stats(self) -> Dict[str, Any]:
        stats = {kind: len(schedule) for kind, schedule in self._schedules.items()}
        stats["retired"] = len(self._retired)
        return stats
