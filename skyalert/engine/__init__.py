from .change_detector import ChangeEvent, detect_changes
from .conditions import FlightContext, ConditionError, evaluate_condition
from .poll_scheduler import PollScheduler, FLIGHTS, RULES, RULE_FLIGHTS
from .rule_evaluator import FiringAlert, rule_fires, resolve_rule_alerts, resolve_direct_alerts

__all__ = [
    "ChangeEvent",
    "detect_changes",
    "FlightContext",
    "ConditionError",
    "evaluate_condition",
    "PollScheduler",
    "FLIGHTS",
    "RULES",
    "RULE_FLIGHTS",
    "FiringAlert",
    "rule_fires",
    "resolve_rule_alerts",
    "resolve_direct_alerts",
]
