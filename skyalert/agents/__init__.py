# Agents module for SkyAlert
# FlightMonitorAgent is imported from .flight_monitor_agent directly: the
# notification dispatcher depends on the templates below.
from .notifications_templates import NotificationType, NotificationTemplates, TRACKING_ENDED_TITLE

__all__ = ["NotificationType", "NotificationTemplates", "TRACKING_ENDED_TITLE"]
