"""
Rule condition predicates.

Every ConditionField maps to a typed accessor; condition values are coerced to
the same type before comparing. Datetime fields compare as datetimes, the rest
as case-insensitive strings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.database import AlertType, ConditionField, ConditionOperator, RuleCondition
from ..models.flight import FlightSnapshot, parse_timestamp
from .change_detector import ChangeEvent


class ConditionError(ValueError):
    """A condition cannot be evaluated against the data at hand"""
    pass


@dataclass
class FlightContext:
    """What the evaluator knows about one tracked flight this cycle"""
    flight_id: str
    flight_number: Optional[str]
    previous: FlightSnapshot
    current: FlightSnapshot
    changes: List[ChangeEvent] = field(default_factory=list)

    @classmethod
    def unchanged(cls, flight_id: str, flight_number: Optional[str], snapshot: FlightSnapshot) -> "FlightContext":
        return cls(flight_id=flight_id, flight_number=flight_number, previous=snapshot, current=snapshot)


Accessor = Callable[[FlightContext, FlightSnapshot], Any]

FIELD_ACCESSORS: Dict[ConditionField, Accessor] = {
    ConditionField.STATUS: lambda ctx, snap: snap.status,
    ConditionField.DEPARTURE_TIME: lambda ctx, snap: snap.departure_time,
    ConditionField.ARRIVAL_TIME: lambda ctx, snap: snap.arrival_time,
    ConditionField.GATE: lambda ctx, snap: snap.gate,
    ConditionField.TERMINAL: lambda ctx, snap: snap.terminal,
    ConditionField.FLIGHT_NUMBER: lambda ctx, snap: ctx.flight_number,
}

DATETIME_FIELDS = {ConditionField.DEPARTURE_TIME, ConditionField.ARRIVAL_TIME}

# Fields whose "changed" is answered by this cycle's change events
FIELD_CHANGE_TYPES = {
    ConditionField.STATUS: AlertType.STATUS_CHANGE,
    ConditionField.DEPARTURE_TIME: AlertType.DELAY,
    ConditionField.GATE: AlertType.GATE_CHANGE,
}


def _coerce(condition_field: ConditionField, raw: str) -> Any:
    raw = raw.strip()
    if condition_field in DATETIME_FIELDS:
        parsed = parse_timestamp(raw)
        if parsed is None:
            raise ConditionError(f"{condition_field.value} expects an ISO timestamp, got {raw!r}")
        return parsed
    return raw.lower()


def _normalize_actual(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    return str(value).lower()


def _has_changed(condition: RuleCondition, context: FlightContext) -> bool:
    change_type = FIELD_CHANGE_TYPES.get(condition.field)
    if change_type is not None:
        return any(change.type == change_type for change in context.changes)

    accessor = FIELD_ACCESSORS[condition.field]
    current = accessor(context, context.current)
    previous = accessor(context, context.previous)
    return current is not None and current != previous


def evaluate_condition(condition: RuleCondition, context: FlightContext) -> bool:
    """
    Evaluate one predicate against a flight's current state.

    A missing field value makes every operator except "changed" false.

    Raises:
        ConditionError: the condition value cannot be read as the field's type
    """
    if condition.operator == ConditionOperator.CHANGED:
        return _has_changed(condition, context)

    value = FIELD_ACCESSORS[condition.field](context, context.current)
    if value is None:
        return False

    actual = _normalize_actual(value)
    operator = condition.operator

    if operator == ConditionOperator.BETWEEN:
        parts = condition.value.split(",")
        if len(parts) != 2:
            raise ConditionError("between requires a 'min,max' value")
        low, high = (_coerce(condition.field, part) for part in parts)
        return low <= actual <= high

    expected = _coerce(condition.field, condition.value)

    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return actual != expected

    if operator in (ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS):
        if isinstance(actual, datetime):
            raise ConditionError(f"{operator.value} is not supported for {condition.field.value}")
        found = expected in actual
        return found if operator == ConditionOperator.CONTAINS else not found

    if operator == ConditionOperator.GREATER_THAN:
        return actual > expected
    if operator == ConditionOperator.LESS_THAN:
        return actual < expected
    if operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return actual >= expected
    if operator == ConditionOperator.LESS_THAN_OR_EQUAL:
        return actual <= expected

    raise ConditionError(f"Unsupported operator: {operator}")
