"""Shared fixtures: an in-memory store, a scripted flight gateway and a fake clock."""

from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

import pytest

from skyalert.config.settings import Settings
from skyalert.agents.flight_monitor_agent import FlightMonitorAgent
from skyalert.engine.poll_scheduler import PollScheduler
from skyalert.models.database import (
    Alert, AlertType, DatabaseResult, NotificationCreate, Rule, TrackedFlight, User
)
from skyalert.models.flight import Flight, FlightEndpoint, is_landed_status
from skyalert.services.email_client import SendResult
from skyalert.services.notification_dispatcher import NotificationDispatcher
from skyalert.utils.flight_schedule_utils import epoch_ms

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW):
        self.now_ms = epoch_ms(start)

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int):
        self.now_ms += ms


class InMemoryStore:
    """Stands in for SupabaseDBClient with the same async surface."""

    def __init__(self):
        self.tracked_flights: Dict[str, TrackedFlight] = {}
        self.rules: Dict[str, Rule] = {}
        self.users: Dict[str, User] = {}
        self.notifications: List[dict] = []
        self.update_calls: List[tuple] = []
        self.fail_updates = False
        self.fail_notifications = False

    def add_flight(self, flight: TrackedFlight) -> TrackedFlight:
        self.tracked_flights[flight.id] = flight
        return flight

    def add_rule(self, rule: Rule) -> Rule:
        self.rules[rule.id] = rule
        return rule

    def add_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    def notifications_of_type(self, notification_type: str) -> List[dict]:
        return [n for n in self.notifications if n["type"] == notification_type]

    async def get_tracked_flights_with_direct_alerts(self, departure_from=None, departure_to=None):
        flights = []
        for flight in self.tracked_flights.values():
            alerts = [alert for alert in flight.alerts if alert.is_active and alert.rule_id is None]
            if not alerts or is_landed_status(flight.status):
                continue
            if departure_from and (flight.departure_time is None or flight.departure_time < departure_from):
                continue
            if departure_to and (flight.departure_time is None or flight.departure_time >= departure_to):
                continue
            flights.append(flight.model_copy(update={"alerts": alerts}))
        return flights

    async def get_active_rules(self):
        return [rule for rule in self.rules.values() if rule.is_active]

    async def get_tracked_flights_by_ids(self, flight_ids):
        return [self.tracked_flights[fid].model_copy() for fid in flight_ids if fid in self.tracked_flights]

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def update_tracked_flight(self, flight_id, update_data):
        self.update_calls.append((flight_id, dict(update_data)))
        if self.fail_updates:
            return DatabaseResult(success=False, error="database unavailable")

        current = self.tracked_flights[flight_id]
        self.tracked_flights[flight_id] = current.model_copy(update=update_data)
        return DatabaseResult(success=True, data={"id": flight_id}, affected_rows=1)

    async def create_notification(self, notification: NotificationCreate):
        if self.fail_notifications:
            return DatabaseResult(success=False, error="database unavailable")

        record = notification.model_dump()
        record["id"] = f"notification-{len(self.notifications) + 1}"
        self.notifications.append(record)
        return DatabaseResult(success=True, data=record, affected_rows=1)


class FakeGateway:
    """Returns scripted flights by identifier, or by (identifier, date) for dated legs; identifiers in `errors` raise."""

    def __init__(self):
        self.flights: Dict[Any, Flight] = {}
        self.errors = set()
        self.calls: List[str] = []
        self.requests: List[tuple] = []

    async def fetch_flight(self, identifier: str, departure_date: Optional[str] = None):
        self.calls.append(identifier)
        self.requests.append((identifier, departure_date))
        if identifier in self.errors:
            raise RuntimeError(f"provider failed for {identifier}")
        if (identifier, departure_date) in self.flights:
            return self.flights[(identifier, departure_date)]
        return self.flights.get(identifier)


class RecordingTransport:
    name = "recording"
    requires_email = True

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[dict] = []

    async def send(self, to, subject, html, text):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        if self.succeed:
            return SendResult(success=True, message_id=f"msg-{len(self.sent)}")
        return SendResult(success=False, error="smtp down")


def make_flight(
    ident: str,
    status: str = "scheduled",
    departure: Optional[datetime] = None,
    gate: Optional[str] = None,
    terminal: Optional[str] = None,
    actual_departure: Optional[datetime] = None,
    actual_arrival: Optional[datetime] = None,
) -> Flight:
    return Flight(
        ident=ident,
        status=status,
        status_text=status,
        flight_iata=ident,
        departure=FlightEndpoint(
            iata="JFK",
            gate=gate,
            terminal=terminal,
            scheduled=departure,
            actual=actual_departure,
        ),
        arrival=FlightEndpoint(iata="LAX", actual=actual_arrival),
        provider="fake",
    )


def make_tracked(
    flight_id: str,
    flight_number: str,
    status: str = "scheduled",
    departure: Optional[datetime] = None,
    gate: Optional[str] = None,
    alerts: Optional[List[Alert]] = None,
    user_id: str = "user-1",
) -> TrackedFlight:
    return TrackedFlight(
        id=flight_id,
        flight_number=flight_number,
        departure_airport="JFK",
        arrival_airport="LAX",
        departure_time=departure,
        status=status,
        gate=gate,
        user_id=user_id,
        alerts=alerts or [],
    )


def make_alert(
    alert_id: str,
    alert_type: AlertType,
    flight_id: str,
    rule_id: Optional[str] = None,
    threshold: Optional[int] = None,
    is_active: bool = True,
    user_id: str = "user-1",
) -> Alert:
    return Alert(
        id=alert_id,
        type=alert_type,
        is_active=is_active,
        threshold=threshold,
        tracked_flight_id=flight_id,
        rule_id=rule_id,
        user_id=user_id,
    )


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="production",
        port=8000,
        aero_api_key=None,
        aviationstack_api_key=None,
        provider_timeout_seconds=15.0,
        supabase_url=None,
        supabase_service_key=None,
        resend_api_key=None,
        email_from="SkyAlert <alerts@skyalert.dev>",
        notification_webhook_url=None,
        cron_api_key=None,
        cron_signing_key=None,
        fetch_batch_size=5,
        fetch_batch_delay_seconds=0.0,
        flight_cache_enabled=True,
        poll_retention_days=7,
        engine_interval_minutes=5,
        scheduler_enabled=False,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def departure_in():
    """departure_in(hours) -> aware datetime relative to the fake clock's start"""
    return lambda hours: NOW + timedelta(hours=hours)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    db = InMemoryStore()
    db.add_user(User(id="user-1", email="traveler@example.com", name="Ada"))
    return db


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def scheduler(clock):
    return PollScheduler(clock=clock)


@pytest.fixture
def dispatcher(store, transport):
    return NotificationDispatcher(store, [transport])


@pytest.fixture
def agent(store, gateway, dispatcher, scheduler):
    return FlightMonitorAgent(
        db_client=store,
        gateway=gateway,
        dispatcher=dispatcher,
        scheduler=scheduler,
        batch_size=5,
        batch_delay_seconds=0
    )
