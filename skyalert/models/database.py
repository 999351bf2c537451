"""Database models for SkyAlert."""

from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator, model_validator


class AlertType(str, Enum):
    """Change types a user can subscribe to."""
    STATUS_CHANGE = "STATUS_CHANGE"
    DELAY = "DELAY"
    GATE_CHANGE = "GATE_CHANGE"
    DEPARTURE = "DEPARTURE"
    ARRIVAL = "ARRIVAL"


class RuleOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ConditionField(str, Enum):
    """Flight fields a rule condition may reference."""
    STATUS = "status"
    DEPARTURE_TIME = "departureTime"
    ARRIVAL_TIME = "arrivalTime"
    GATE = "gate"
    TERMINAL = "terminal"
    FLIGHT_NUMBER = "flightNumber"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    BETWEEN = "between"
    CHANGED = "changed"


class User(BaseModel):
    """Model for users table records."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class Alert(BaseModel):
    """
    Model for alerts table records.

    An alert without rule_id is a direct alert, evaluated on its own.
    An alert with rule_id only fires when its rule fires.
    """
    id: str
    type: AlertType
    is_active: bool = True
    threshold: Optional[int] = None
    tracked_flight_id: Optional[str] = None
    rule_id: Optional[str] = None
    user_id: str

    @property
    def is_direct(self) -> bool:
        return self.rule_id is None


class TrackedFlight(BaseModel):
    """Model for tracked_flights table records."""
    id: str
    flight_number: str
    departure_airport: Optional[str] = None
    arrival_airport: Optional[str] = None
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    status: Optional[str] = None
    gate: Optional[str] = None
    terminal: Optional[str] = None
    user_id: str
    alerts: List[Alert] = Field(default_factory=list)


class RuleCondition(BaseModel):
    """
    Model for rule_conditions table records.

    field and operator are closed enums: an unknown field is rejected here,
    when the condition is created, rather than silently failing at evaluation.
    """
    id: Optional[str] = None
    rule_id: Optional[str] = None
    flight_id: Optional[str] = None
    field: ConditionField
    operator: ConditionOperator
    value: str = ""

    @model_validator(mode="after")
    def validate_between_value(self):
        if self.operator == ConditionOperator.BETWEEN:
            parts = [part.strip() for part in self.value.split(",")]
            if len(parts) != 2 or not all(parts):
                raise ValueError("between requires a 'min,max' value")
        return self


class Rule(BaseModel):
    """Model for rules table records."""
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    operator: RuleOperator = RuleOperator.AND
    schedule: Optional[str] = None
    user_id: str
    alerts: List[Alert] = Field(default_factory=list)
    conditions: List[RuleCondition] = Field(default_factory=list)

    @property
    def flight_ids(self) -> List[str]:
        """Unique tracked flight ids referenced by the rule, in first-seen order."""
        seen = []
        for alert in self.alerts:
            if alert.tracked_flight_id and alert.tracked_flight_id not in seen:
                seen.append(alert.tracked_flight_id)
        for condition in self.conditions:
            if condition.flight_id and condition.flight_id not in seen:
                seen.append(condition.flight_id)
        return seen


class RuleCreate(BaseModel):
    """Payload for creating a rule with its conditions."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    operator: RuleOperator = RuleOperator.AND
    schedule: Optional[str] = None
    conditions: List[RuleCondition] = Field(default_factory=list)
    alert_types: List[AlertType] = Field(..., min_length=1)
    flight_ids: List[str] = Field(..., min_length=1)

    @field_validator("flight_ids")
    @classmethod
    def validate_flight_ids(cls, v):
        if any(not flight_id for flight_id in v):
            raise ValueError("flight_ids must not contain empty values")
        return v


class NotificationCreate(BaseModel):
    """Payload for inserting a notification."""
    title: str
    message: str
    type: str
    read: bool = False
    user_id: str
    flight_id: Optional[str] = None
    rule_id: Optional[str] = None


class Notification(NotificationCreate):
    """Model for notifications table records."""
    id: str
    created_at: Optional[datetime] = None


class DatabaseResult(BaseModel):
    """Generic result wrapper for database operations."""
    success: bool
    data: Optional[dict] = None
    error: Optional[str] = None
    affected_rows: int = 0
