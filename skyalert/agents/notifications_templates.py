"""Notification and email template definitions for SkyAlert alerts."""

from typing import Dict, Any, Optional
from enum import Enum
from datetime import datetime
from html import escape

from ..models.database import AlertType
from ..engine.change_detector import ChangeEvent
from ..models.flight import parse_timestamp


class NotificationType(str, Enum):
    """Notification types stored in notifications.type."""
    STATUS_CHANGE = "STATUS_CHANGE"
    DELAY = "DELAY"
    GATE_CHANGE = "GATE_CHANGE"
    DEPARTURE = "DEPARTURE"
    ARRIVAL = "ARRIVAL"
    INFO = "INFO"


TRACKING_ENDED_TITLE = "Flight Tracking Ended"


def _format_time(value: Optional[Any]) -> Optional[str]:
    moment = value if isinstance(value, datetime) else parse_timestamp(value)
    if moment is None:
        return None
    return moment.strftime("%H:%M UTC")


class NotificationTemplates:
    """Centralized rendering of notification titles, messages and email bodies."""

    @classmethod
    def direct_alert_title(cls, flight_number: str) -> str:
        return f"Flight Alert: {flight_number}"

    @classmethod
    def rule_alert_title(cls, rule_name: str) -> str:
        return f"Rule Alert: {rule_name}"

    @classmethod
    def format_change_message(cls, flight_number: str, change: ChangeEvent) -> str:
        """Human-readable sentence describing one change event."""
        if change.type == AlertType.STATUS_CHANGE:
            if change.old_value:
                return f"Flight {flight_number} status changed from {change.old_value} to {change.new_value}."
            return f"Flight {flight_number} status changed to {change.new_value}."

        if change.type == AlertType.DELAY:
            minutes = change.delay_minutes or 0
            if minutes < 0:
                return f"Flight {flight_number} departure moved earlier by {abs(minutes)} minutes."
            return f"Flight {flight_number} has been delayed by {minutes} minutes."

        if change.type == AlertType.GATE_CHANGE:
            if change.old_value:
                return f"Flight {flight_number} gate changed from {change.old_value} to {change.new_value}."
            return f"Flight {flight_number} has been assigned gate {change.new_value}."

        if change.type == AlertType.DEPARTURE:
            departed_at = _format_time(change.timestamp)
            if departed_at:
                return f"Flight {flight_number} departed at {departed_at}."
            return f"Flight {flight_number} has departed."

        if change.type == AlertType.ARRIVAL:
            arrived_at = _format_time(change.timestamp)
            if arrived_at:
                return f"Flight {flight_number} arrived at {arrived_at}."
            return f"Flight {flight_number} has arrived."

        return f"Alert for flight {flight_number}: {change.type}"

    @classmethod
    def format_tracking_ended(cls, flight_number: str, status: str) -> Dict[str, str]:
        return {
            "title": TRACKING_ENDED_TITLE,
            "message": f"Tracking for {flight_number} has ended automatically as the flight has {status}.",
            "type": NotificationType.INFO.value,
        }

    @classmethod
    def render_email(
        cls,
        user_name: Optional[str],
        flight_number: str,
        alert_type: str,
        message: str,
        title: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Build subject, HTML and plain-text bodies for an alert email.

        Returns:
            Dict with subject, html and text keys
        """
        heading = title or cls.direct_alert_title(flight_number)
        greeting_name = user_name or "there"
        subject = f"{heading} - {alert_type}"

        html = (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<h2 style="color: #3b82f6;">{escape(heading)}</h2>'
            f"<p>Hello {escape(greeting_name)},</p>"
            f"<p>{escape(message)}</p>"
            '<div style="margin: 20px 0; padding: 15px; background-color: #f3f4f6; border-radius: 5px;">'
            f'<p style="margin: 0;"><strong>Flight:</strong> {escape(flight_number)}</p>'
            f'<p style="margin: 5px 0;"><strong>Alert Type:</strong> {escape(alert_type)}</p>'
            "</div>"
            "<p>Safe travels!</p>"
            "<p>- The SkyAlert Team</p>"
            "</div>"
        )

        text = "\n".join([
            heading,
            "",
            f"Hello {greeting_name},",
            "",
            message,
            "",
            f"Flight: {flight_number}",
            f"Alert Type: {alert_type}",
            "",
            "Safe travels!",
            "- The SkyAlert Team",
        ])

        return {"subject": subject, "html": html, "text": text}
