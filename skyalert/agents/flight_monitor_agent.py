"""FlightMonitorAgent for SkyAlert - polls tracked flights and rules, fans out alerts."""

import asyncio
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Callable, Awaitable, Tuple
import structlog

from ..engine.change_detector import ChangeEvent, detect_changes
from ..engine.conditions import FlightContext
from ..engine.poll_scheduler import PollScheduler, FLIGHTS, RULES, RULE_FLIGHTS
from ..engine.rule_evaluator import resolve_direct_alerts, resolve_rule_alerts, rule_fires
from ..models.database import Rule, TrackedFlight
from ..models.flight import Flight, FlightSnapshot, is_landed_status, parse_timestamp
from ..services.batch_fetcher import batch_fetch, DEFAULT_BATCH_SIZE, DEFAULT_BATCH_DELAY_SECONDS
from ..services.notification_dispatcher import DispatchResult
from ..utils.flight_schedule_utils import (
    calculate_polling_interval, departure_window,
    NO_DATA_RETRY_MS, PERSISTENCE_FAILURE_RETRY_MS, DEFAULT_RULE_INTERVAL_MS
)

logger = structlog.get_logger()


@dataclass
class PassResult:
    """Counters for one engine pass, returned to the HTTP trigger as JSON."""
    skipped: bool = False
    flights_due: int = 0
    flights_fetched: int = 0
    flights_updated: int = 0
    changes_detected: int = 0
    rules_due: int = 0
    rules_fired: int = 0
    notifications_created: int = 0
    delivery_failures: int = 0
    tracking_ended: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FlightOutcome:
    """Fresh data and changes for one tracked flight, shared by both halves of a pass."""
    tracked: TrackedFlight
    previous: FlightSnapshot
    current: FlightSnapshot
    flight: Optional[Flight] = None
    changes: List[ChangeEvent] = field(default_factory=list)
    persisted: bool = True

    def context(self) -> FlightContext:
        return FlightContext(
            flight_id=self.tracked.id,
            flight_number=self.tracked.flight_number,
            previous=self.previous,
            current=self.current,
            changes=self.changes,
        )


def fetch_key(tracked: TrackedFlight) -> Tuple[str, Optional[str]]:
    """Flight number plus scheduled departure date, so a provider returning several legs picks the tracked one."""
    departure = parse_timestamp(tracked.departure_time)
    return tracked.flight_number, departure.date().isoformat() if departure else None


def merge_outcomes(older: FlightOutcome, newer: FlightOutcome) -> FlightOutcome:
    """Fold two refreshes of the same flight into one, diffed from the oldest state seen."""
    if newer.flight is None:
        return older

    return FlightOutcome(
        tracked=newer.tracked,
        previous=older.previous,
        current=newer.current,
        flight=newer.flight,
        changes=detect_changes(older.previous, newer.current),
        persisted=newer.persisted,
    )


class FlightMonitorAgent:
    """
    One engine pass: direct-alert flights first, then rules.

    Passes are single-flight. A call made while another pass is running returns
    PassResult(skipped=True) instead of starting a second fetch round.

    Usage:
        agent = FlightMonitorAgent(db_client, gateway, dispatcher, PollScheduler())
        result = await agent.run_pass()
    """

    def __init__(
        self,
        db_client,
        gateway,
        dispatcher,
        scheduler: PollScheduler,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.db_client = db_client
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self._sleep = sleep
        self._lock = asyncio.Lock()
        # Changes found by a direct-only pass, waiting for the next rule evaluation
        self._pending_rule_outcomes: Dict[str, Tuple[int, FlightOutcome]] = {}

        logger.info("flight_monitor_agent_initialized",
            batch_size=batch_size,
            batch_delay_seconds=batch_delay_seconds
        )

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_pass(self) -> PassResult:
        """Full pass: direct flights, then rules, reusing fetched data."""
        return await self._single_flight("full", self._full_pass)

    async def poll_tracked_flights(self, time_range: Optional[str] = None) -> PassResult:
        """
        Direct half only, optionally restricted to a departure bucket.

        Raises:
            ValueError: unknown time_range
        """
        window = None
        if time_range:
            window = departure_window(time_range, self._now_utc())

        async def direct_only(result: PassResult):
            self.scheduler.purge_stale()
            outcomes: Dict[str, FlightOutcome] = {}
            await self._poll_direct_flights(result, outcomes, window)
            self._hand_off_to_rules(outcomes)

        return await self._single_flight("tracked_flights", direct_only)

    async def process_rules(self) -> PassResult:
        """
        Rule half only.

        Changes picked up by an earlier direct-only pass are evaluated here, and
        direct alerts on flights this half refreshes are delivered here.
        """
        async def rules_only(result: PassResult):
            self.scheduler.purge_stale()
            await self._process_rules(result, self._take_pending_rule_outcomes())

        return await self._single_flight("rules", rules_only)

    async def _single_flight(self, pass_name: str, body) -> PassResult:
        if self._lock.locked():
            logger.warning("engine_pass_skipped_already_running", pass_name=pass_name)
            return PassResult(skipped=True)

        async with self._lock:
            result = PassResult()
            started = datetime.now(timezone.utc)
            logger.info("engine_pass_started", pass_name=pass_name)

            await body(result)

            logger.info("engine_pass_completed",
                pass_name=pass_name,
                duration_ms=int((datetime.now(timezone.utc) - started).total_seconds() * 1000),
                **result.to_dict()
            )
            return result

    async def _full_pass(self, result: PassResult):
        outcomes: Dict[str, FlightOutcome] = {}
        self.scheduler.purge_stale()
        await self._poll_direct_flights(result, outcomes)

        for flight_id, pending in self._take_pending_rule_outcomes().items():
            current = outcomes.get(flight_id)
            outcomes[flight_id] = merge_outcomes(pending, current) if current else pending

        await self._process_rules(result, outcomes)

    def _hand_off_to_rules(self, outcomes: Dict[str, FlightOutcome]):
        now = self.scheduler.now()
        for flight_id, outcome in outcomes.items():
            if not outcome.changes:
                continue
            queued = self._pending_rule_outcomes.get(flight_id)
            if queued:
                outcome = merge_outcomes(queued[1], outcome)
            self._pending_rule_outcomes[flight_id] = (now, outcome)

        if self._pending_rule_outcomes:
            logger.info("changes_queued_for_rules", flight_ids=list(self._pending_rule_outcomes))

    def _take_pending_rule_outcomes(self) -> Dict[str, FlightOutcome]:
        cutoff = self.scheduler.now() - self.scheduler.retention_ms
        pending = {
            flight_id: outcome
            for flight_id, (queued_at, outcome) in self._pending_rule_outcomes.items()
            if queued_at >= cutoff
        }
        self._pending_rule_outcomes = {}
        return pending

    def _now_utc(self) -> datetime:
        return datetime.fromtimestamp(self.scheduler.now() / 1000, tz=timezone.utc)

    async def _fetch(self, flights: List[TrackedFlight]) -> Dict[Tuple[str, Optional[str]], Flight]:
        fetched = await batch_fetch(
            self.gateway,
            [fetch_key(flight) for flight in flights],
            batch_size=self.batch_size,
            delay_seconds=self.batch_delay_seconds,
            sleep=self._sleep
        )
        return fetched

    # Direct alerts

    async def _poll_direct_flights(self, result: PassResult, outcomes: Dict[str, FlightOutcome], window=None):
        departure_from, departure_to = window if window else (None, None)

        candidates = await self.db_client.get_tracked_flights_with_direct_alerts(departure_from, departure_to)
        due = self.scheduler.filter_due(FLIGHTS, candidates)
        result.flights_due += len(due)

        if not due:
            logger.info("no_flights_due", candidates=len(candidates))
            return

        fetched = await self._fetch(due)

        for tracked in due:
            try:
                outcome = await self._refresh_flight(tracked, fetched.get(fetch_key(tracked)), result, outcomes)
                await self._dispatch_direct_alerts(tracked, outcome, result)
                await self._schedule_flight(FLIGHTS, outcome, result)

            except Exception as e:
                logger.error("flight_poll_failed",
                    flight_id=tracked.id,
                    flight_number=tracked.flight_number,
                    error_type=type(e).__name__,
                    error=str(e)
                )
                result.errors += 1
                self.scheduler.schedule(FLIGHTS, tracked.id, PERSISTENCE_FAILURE_RETRY_MS)

    # Rules

    async def _process_rules(self, result: PassResult, outcomes: Dict[str, FlightOutcome]):
        rules = await self.db_client.get_active_rules()

        candidates = []
        for rule in rules:
            if not rule.is_active:
                continue
            if not rule.flight_ids:
                logger.info("rule_skipped_no_flights", rule_id=rule.id, rule_name=rule.name)
                continue
            candidates.append(rule)

        due_rules = [rule for rule in candidates if self._rule_is_due(rule, outcomes)]
        result.rules_due += len(due_rules)

        if not due_rules:
            logger.info("no_rules_due", candidates=len(candidates))
            return

        flight_ids = list(dict.fromkeys(fid for rule in due_rules for fid in rule.flight_ids))
        tracked_by_id = {flight.id: flight for flight in await self.db_client.get_tracked_flights_by_ids(flight_ids)}

        to_fetch = [
            tracked for flight_id, tracked in tracked_by_id.items()
            if flight_id not in outcomes
            and self.scheduler.is_due(RULE_FLIGHTS, flight_id)
            and not is_landed_status(tracked.status)
        ]
        fetched = await self._fetch(to_fetch) if to_fetch else {}

        refreshed: List[FlightOutcome] = [outcomes[fid] for fid in tracked_by_id if fid in outcomes]
        refreshed_here: List[FlightOutcome] = []
        for tracked in to_fetch:
            try:
                outcome = await self._refresh_flight(tracked, fetched.get(fetch_key(tracked)), result, outcomes)
                refreshed.append(outcome)
                refreshed_here.append(outcome)
            except Exception as e:
                logger.error("rule_flight_refresh_failed",
                    flight_id=tracked.id,
                    flight_number=tracked.flight_number,
                    error=str(e)
                )
                result.errors += 1
                self.scheduler.schedule(RULE_FLIGHTS, tracked.id, PERSISTENCE_FAILURE_RETRY_MS)

        for rule in due_rules:
            try:
                await self._evaluate_rule(rule, tracked_by_id, outcomes, result)
            except Exception as e:
                logger.error("rule_evaluation_failed",
                    rule_id=rule.id,
                    rule_name=rule.name,
                    error_type=type(e).__name__,
                    error=str(e)
                )
                result.errors += 1

        # The store now holds this fresh state, so the direct half would see no change
        for outcome in refreshed_here:
            try:
                await self._dispatch_direct_alerts(outcome.tracked, outcome, result)
            except Exception as e:
                logger.error("rule_flight_direct_alerts_failed", flight_id=outcome.tracked.id, error=str(e))
                result.errors += 1

        # Scheduling last so tracking-ended notices follow the alerts
        next_polls: Dict[str, int] = {}
        for outcome in refreshed:
            try:
                next_poll = await self._schedule_flight(RULE_FLIGHTS, outcome, result)
            except Exception as e:
                logger.error("rule_flight_schedule_failed", flight_id=outcome.tracked.id, error=str(e))
                result.errors += 1
                continue
            if next_poll is not None:
                next_polls[outcome.tracked.id] = next_poll

        for rule in due_rules:
            rule_polls = [next_polls[fid] for fid in rule.flight_ids if fid in next_polls]
            if rule_polls:
                self.scheduler.schedule_at(RULES, rule.id, min(rule_polls))
            else:
                self.scheduler.schedule(RULES, rule.id, DEFAULT_RULE_INTERVAL_MS)

    def _rule_is_due(self, rule: Rule, outcomes: Dict[str, FlightOutcome]) -> bool:
        if self.scheduler.is_due(RULES, rule.id):
            return True
        # Changes already found by the direct half this pass must reach the rule too
        return any(fid in outcomes and outcomes[fid].changes for fid in rule.flight_ids)

    async def _evaluate_rule(
        self,
        rule: Rule,
        tracked_by_id: Dict[str, TrackedFlight],
        outcomes: Dict[str, FlightOutcome],
        result: PassResult
    ):
        contexts: Dict[str, FlightContext] = {}
        for flight_id in rule.flight_ids:
            if flight_id in outcomes:
                contexts[flight_id] = outcomes[flight_id].context()
            elif flight_id in tracked_by_id:
                tracked = tracked_by_id[flight_id]
                contexts[flight_id] = FlightContext.unchanged(
                    flight_id, tracked.flight_number, FlightSnapshot.from_tracked(tracked)
                )

        if not rule_fires(rule, contexts):
            logger.debug("rule_not_satisfied", rule_id=rule.id)
            return

        result.rules_fired += 1
        logger.info("rule_fired", rule_id=rule.id, rule_name=rule.name, operator=rule.operator.value)

        for firing in resolve_rule_alerts(rule, contexts):
            flight_number = contexts[firing.flight_id].flight_number or firing.flight_id
            dispatch_result = await self.dispatcher.dispatch_alert(firing, flight_number, rule=rule)
            self._count_dispatch(result, dispatch_result)

    # Shared flight handling

    async def _refresh_flight(
        self,
        tracked: TrackedFlight,
        fresh: Optional[Flight],
        result: PassResult,
        outcomes: Dict[str, FlightOutcome]
    ) -> FlightOutcome:
        """Diff fresh data against the stored row and write back what changed."""
        if tracked.id in outcomes:
            return outcomes[tracked.id]

        previous = FlightSnapshot.from_tracked(tracked)

        if fresh is None:
            logger.info("flight_no_fresh_data", flight_id=tracked.id, flight_number=tracked.flight_number)
            outcome = FlightOutcome(tracked=tracked, previous=previous, current=previous)
            outcomes[tracked.id] = outcome
            return outcome

        result.flights_fetched += 1
        current = FlightSnapshot.from_flight(fresh)
        changes = detect_changes(previous, current)
        result.changes_detected += len(changes)

        outcome = FlightOutcome(
            tracked=tracked,
            previous=previous,
            current=current,
            flight=fresh,
            changes=changes,
        )
        outcomes[tracked.id] = outcome

        update_data = self._build_update(tracked, fresh)
        if update_data:
            db_result = await self.db_client.update_tracked_flight(tracked.id, update_data)
            outcome.persisted = db_result.success
            if db_result.success:
                result.flights_updated += 1
            else:
                result.errors += 1

        if changes:
            logger.info("flight_changes_detected",
                flight_id=tracked.id,
                flight_number=tracked.flight_number,
                change_types=[change.type.value for change in changes]
            )

        return outcome

    async def _dispatch_direct_alerts(self, tracked: TrackedFlight, outcome: FlightOutcome, result: PassResult):
        for firing in resolve_direct_alerts(tracked.alerts, tracked.id, outcome.changes):
            dispatch_result = await self.dispatcher.dispatch_alert(firing, tracked.flight_number)
            self._count_dispatch(result, dispatch_result)

    def _build_update(self, tracked: TrackedFlight, fresh: Flight) -> Dict[str, Any]:
        update_data: Dict[str, Any] = {}

        if fresh.status and fresh.status != tracked.status:
            update_data["status"] = fresh.status
        if fresh.departure.gate and fresh.departure.gate != tracked.gate:
            update_data["gate"] = fresh.departure.gate
        if fresh.departure.terminal and fresh.departure.terminal != tracked.terminal:
            update_data["terminal"] = fresh.departure.terminal

        departure = fresh.departure.scheduled
        if departure and departure != parse_timestamp(tracked.departure_time):
            update_data["departure_time"] = departure
        arrival = fresh.arrival.scheduled
        if arrival and arrival != parse_timestamp(tracked.arrival_time):
            update_data["arrival_time"] = arrival

        return update_data

    async def _schedule_flight(self, kind: str, outcome: FlightOutcome, result: PassResult) -> Optional[int]:
        """Set the next poll for a flight; returns None once tracking has ended."""
        flight_id = outcome.tracked.id

        if outcome.flight is None:
            return self.scheduler.schedule(kind, flight_id, NO_DATA_RETRY_MS)

        decision = calculate_polling_interval(outcome.flight, self.scheduler.now(), bool(outcome.changes))

        if decision.stop_tracking:
            await self._end_tracking(outcome, result)
            return None

        interval_ms = decision.interval_ms if outcome.persisted else PERSISTENCE_FAILURE_RETRY_MS
        return self.scheduler.schedule(kind, flight_id, interval_ms)

    async def _end_tracking(self, outcome: FlightOutcome, result: PassResult):
        tracked = outcome.tracked
        if not self.scheduler.retire(tracked.id):
            return

        result.tracking_ended += 1
        status = outcome.flight.status if outcome.flight else (tracked.status or "landed")
        dispatch_result = await self.dispatcher.dispatch_tracking_ended(
            tracked.id, tracked.flight_number, tracked.user_id, status
        )
        self._count_dispatch(result, dispatch_result)

        logger.info("flight_tracking_ended",
            flight_id=tracked.id,
            flight_number=tracked.flight_number,
            status=status
        )

    def _count_dispatch(self, result: PassResult, dispatch_result: DispatchResult):
        if dispatch_result.persisted:
            result.notifications_created += 1
            if dispatch_result.errors:
                result.delivery_failures += 1
        else:
            result.errors += 1
