"""
Decides which alerts fire for a cycle's change events.

Direct alerts are matched against their flight's changes. A rule fires as a
whole first, then each of its active alerts is matched like a direct alert.

Rule firing:
- with conditions: each condition is evaluated against the flight it is
  scoped to (an unscoped condition holds if it holds for any referenced
  flight); AND needs every condition, OR at least one
- without conditions: a referenced flight counts when one of the rule's active
  alerts targeting it matches a change; AND needs every flight, OR at least one
- nothing to evaluate never fires
"""

from dataclasses import dataclass
from typing import Dict, List

from ..models.database import Alert, AlertType, Rule, RuleCondition, RuleOperator
from .change_detector import ChangeEvent
from .conditions import FlightContext, evaluate_condition


@dataclass(frozen=True)
class FiringAlert:
    alert: Alert
    change: ChangeEvent
    flight_id: str


def alert_matches(alert: Alert, change: ChangeEvent) -> bool:
    if not alert.is_active or alert.type != change.type:
        return False

    if alert.type == AlertType.DELAY and alert.threshold is not None:
        return change.delay_minutes is not None and change.delay_minutes >= alert.threshold

    return True


def match_alert_changes(alert: Alert, changes: List[ChangeEvent]) -> List[ChangeEvent]:
    return [change for change in changes if alert_matches(alert, change)]


def resolve_direct_alerts(alerts: List[Alert], flight_id: str, changes: List[ChangeEvent]) -> List[FiringAlert]:
    firing = []
    for alert in alerts:
        if not alert.is_direct:
            continue
        for change in match_alert_changes(alert, changes):
            firing.append(FiringAlert(alert=alert, change=change, flight_id=flight_id))
    return firing


def _combine(operator: RuleOperator, results: List[bool]) -> bool:
    if not results:
        return False
    if operator == RuleOperator.OR:
        return any(results)
    return all(results)


def _condition_holds(condition: RuleCondition, rule: Rule, contexts: Dict[str, FlightContext]) -> bool:
    if condition.flight_id:
        context = contexts.get(condition.flight_id)
        return context is not None and evaluate_condition(condition, context)

    return any(
        evaluate_condition(condition, contexts[flight_id])
        for flight_id in rule.flight_ids
        if flight_id in contexts
    )


def _flight_has_matching_change(rule: Rule, flight_id: str, contexts: Dict[str, FlightContext]) -> bool:
    context = contexts.get(flight_id)
    if context is None:
        return False

    return any(
        match_alert_changes(alert, context.changes)
        for alert in rule.alerts
        if alert.tracked_flight_id == flight_id
    )


def rule_fires(rule: Rule, contexts: Dict[str, FlightContext]) -> bool:
    """
    Raises:
        ConditionError: a condition could not be evaluated
    """
    if not rule.is_active:
        return False

    if rule.conditions:
        results = [_condition_holds(condition, rule, contexts) for condition in rule.conditions]
    else:
        results = [_flight_has_matching_change(rule, flight_id, contexts) for flight_id in rule.flight_ids]

    return _combine(rule.operator, results)


def resolve_rule_alerts(rule: Rule, contexts: Dict[str, FlightContext]) -> List[FiringAlert]:
    """Alerts of an already-fired rule that match their own flight's changes"""
    firing = []
    for alert in rule.alerts:
        context = contexts.get(alert.tracked_flight_id) if alert.tracked_flight_id else None
        if context is None:
            continue
        for change in match_alert_changes(alert, context.changes):
            firing.append(FiringAlert(alert=alert, change=change, flight_id=context.flight_id))
    return firing
