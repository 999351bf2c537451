"""Tests for the in-memory poll schedule and adaptive polling intervals."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from skyalert.engine.poll_scheduler import PollScheduler, FLIGHTS, RULES, RULE_FLIGHTS, DAY_MS
from skyalert.utils.flight_schedule_utils import (
    calculate_polling_interval, departure_window, interval_for_departure,
    MINUTE_MS, HOUR_MS
)

from conftest import FakeClock, NOW, make_flight


def candidates(*ids):
    return [SimpleNamespace(id=entity_id) for entity_id in ids]


class TestPollScheduler:

    def setup_method(self):
        self.clock = FakeClock()
        self.scheduler = PollScheduler(clock=self.clock)

    def test_unknown_entity_is_due_on_first_sight(self):
        assert self.scheduler.is_due(FLIGHTS, "f1")

    def test_entity_is_not_due_until_next_poll(self):
        self.scheduler.schedule(FLIGHTS, "f1", 30 * MINUTE_MS)

        assert not self.scheduler.is_due(FLIGHTS, "f1")
        self.clock.advance(30 * MINUTE_MS - 1)
        assert not self.scheduler.is_due(FLIGHTS, "f1")
        self.clock.advance(1)
        assert self.scheduler.is_due(FLIGHTS, "f1")

    def test_filter_due_keeps_only_due_candidates(self):
        self.scheduler.schedule(FLIGHTS, "f1", HOUR_MS)

        due = self.scheduler.filter_due(FLIGHTS, candidates("f1", "f2"))

        assert [c.id for c in due] == ["f2"]

    def test_schedules_are_independent_per_kind(self):
        self.scheduler.schedule(FLIGHTS, "f1", HOUR_MS)

        assert not self.scheduler.is_due(FLIGHTS, "f1")
        assert self.scheduler.is_due(RULE_FLIGHTS, "f1")

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValueError):
            self.scheduler.is_due("airports", "f1")

    def test_schedule_records_last_and_next_poll(self):
        next_poll = self.scheduler.schedule(RULES, "r1", 15 * MINUTE_MS)

        assert self.scheduler.last_poll(RULES, "r1") == self.clock()
        assert self.scheduler.next_poll(RULES, "r1") == next_poll == self.clock() + 15 * MINUTE_MS

    def test_retire_removes_flight_and_reports_only_once(self):
        self.scheduler.schedule(FLIGHTS, "f1", HOUR_MS)
        self.scheduler.schedule(RULE_FLIGHTS, "f1", HOUR_MS)

        assert self.scheduler.retire("f1") is True
        assert self.scheduler.retire("f1") is False

        assert self.scheduler.next_poll(FLIGHTS, "f1") is None
        assert self.scheduler.next_poll(RULE_FLIGHTS, "f1") is None
        assert not self.scheduler.is_due(FLIGHTS, "f1")
        assert not self.scheduler.is_due(RULE_FLIGHTS, "f1")

    def test_purge_drops_entries_older_than_retention(self):
        self.scheduler.schedule(FLIGHTS, "old", HOUR_MS)
        self.clock.advance(6 * DAY_MS)
        self.scheduler.schedule(FLIGHTS, "recent", HOUR_MS)
        self.clock.advance(DAY_MS + 1)

        removed = self.scheduler.purge_stale()

        assert removed == 1
        assert self.scheduler.next_poll(FLIGHTS, "old") is None
        assert self.scheduler.next_poll(FLIGHTS, "recent") is not None

    def test_purge_forgets_retired_flights_after_retention(self):
        self.scheduler.retire("f1")
        self.clock.advance(7 * DAY_MS + 1)

        self.scheduler.purge_stale()

        assert not self.scheduler.is_retired("f1")
        assert self.scheduler.is_due(FLIGHTS, "f1")

    def test_independent_instances_share_nothing(self):
        other = PollScheduler(clock=self.clock)
        self.scheduler.schedule(FLIGHTS, "f1", HOUR_MS)

        assert other.is_due(FLIGHTS, "f1")

    def test_stats(self):
        self.scheduler.schedule(FLIGHTS, "f1", HOUR_MS)
        self.scheduler.retire("f2")

        assert self.scheduler.get_stats() == {FLIGHTS: 1, RULES: 0, RULE_FLIGHTS: 0, "retired": 1}


class TestPollingInterval:

    def setup_method(self):
        self.now_ms = FakeClock()()

    @pytest.mark.parametrize("hours,expected", [
        (72, 12 * HOUR_MS),
        (49, 12 * HOUR_MS),
        (30, 6 * HOUR_MS),
        (13, 2 * HOUR_MS),
        (7, HOUR_MS),
        (3, 30 * MINUTE_MS),
        (1, 5 * MINUTE_MS),
        (-2, 5 * MINUTE_MS),
    ])
    def test_interval_shrinks_towards_departure(self, hours, expected):
        flight = make_flight("AA100", "scheduled", departure=NOW + timedelta(hours=hours))

        decision = calculate_polling_interval(flight, self.now_ms)

        assert decision.interval_ms == expected
        assert decision.stop_tracking is False

    def test_step_function_is_monotonic(self):
        hours = [100, 48.5, 48, 24.5, 12.5, 6.5, 2.5, 2, 0, -5]
        intervals = [interval_for_departure(NOW + timedelta(hours=h), self.now_ms) for h in hours]
        assert intervals == sorted(intervals, reverse=True)

    def test_unknown_departure_polls_at_shortest_interval(self):
        assert interval_for_departure(None, self.now_ms) == 5 * MINUTE_MS

    @pytest.mark.parametrize("status", ["landed", "arrived"])
    def test_landed_flight_stops_tracking(self, status):
        decision = calculate_polling_interval(make_flight("AA100", status), self.now_ms)
        assert decision.stop_tracking is True

    def test_landed_detected_from_provider_text(self):
        flight = make_flight("AA100", "unknown")
        flight.status_text = "Arrived / Gate Arrival"

        assert calculate_polling_interval(flight, self.now_ms).stop_tracking is True

    @pytest.mark.parametrize("status", ["cancelled", "diverted"])
    def test_cancelled_and_diverted_poll_hourly(self, status):
        flight = make_flight("AA100", status, departure=NOW + timedelta(hours=1))

        assert calculate_polling_interval(flight, self.now_ms).interval_ms == 60 * MINUTE_MS

    def test_changes_clamp_interval_to_fifteen_minutes(self):
        flight = make_flight("AA100", "scheduled", departure=NOW + timedelta(hours=72))

        decision = calculate_polling_interval(flight, self.now_ms, changes_detected=True)

        assert decision.interval_ms == 15 * MINUTE_MS

    def test_clamp_never_lengthens_a_short_interval(self):
        flight = make_flight("AA100", "active", departure=NOW - timedelta(minutes=20))

        decision = calculate_polling_interval(flight, self.now_ms, changes_detected=True)

        assert decision.interval_ms == 5 * MINUTE_MS


class TestDepartureWindow:

    def test_near_term_is_next_twelve_hours(self):
        start, end = departure_window("near-term", NOW)
        assert (start, end) == (NOW, NOW + timedelta(hours=12))

    def test_long_term_is_open_ended(self):
        start, end = departure_window("long-term", NOW)
        assert start == NOW + timedelta(hours=24)
        assert end is None

    def test_unknown_range_is_rejected(self):
        with pytest.raises(ValueError):
            departure_window("someday", NOW)
