"""
Persists notifications and hands them to the delivery transports.

A notification row is written first and never rolled back: transport failures
are reported as soft errors on the DispatchResult.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import structlog

from ..models.database import NotificationCreate, Rule, User
from ..agents.notifications_templates import NotificationTemplates
from ..engine.rule_evaluator import FiringAlert

logger = structlog.get_logger()


@dataclass
class DispatchResult:
    persisted: bool
    notification_id: Optional[str] = None
    delivered: bool = False
    errors: List[str] = field(default_factory=list)


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(db_client, [ResendEmailClient()])
        result = await dispatcher.dispatch_alert(firing, "AA100")
    """

    def __init__(self, db_client, transports: Optional[List] = None):
        self.db_client = db_client
        self.transports = transports or []

    async def dispatch_alert(self, firing: FiringAlert, flight_number: str, rule: Optional[Rule] = None) -> DispatchResult:
        """Render, persist and send one (alert, change) pair."""
        message = NotificationTemplates.format_change_message(flight_number, firing.change)
        if rule is not None:
            title = NotificationTemplates.rule_alert_title(rule.name)
        else:
            title = NotificationTemplates.direct_alert_title(flight_number)

        notification = NotificationCreate(
            title=title,
            message=message,
            type=firing.alert.type.value,
            user_id=firing.alert.user_id,
            flight_id=firing.flight_id,
            rule_id=rule.id if rule is not None else None,
        )
        return await self.dispatch(notification, flight_number)

    async def dispatch_tracking_ended(self, flight_id: str, flight_number: str, user_id: str, status: str) -> DispatchResult:
        content = NotificationTemplates.format_tracking_ended(flight_number, status)
        notification = NotificationCreate(
            title=content["title"],
            message=content["message"],
            type=content["type"],
            user_id=user_id,
            flight_id=flight_id,
        )
        return await self.dispatch(notification, flight_number)

    async def dispatch(self, notification: NotificationCreate, flight_number: str) -> DispatchResult:
        db_result = await self.db_client.create_notification(notification)

        if not db_result.success:
            logger.error("notification_persist_failed",
                user_id=notification.user_id,
                flight_id=notification.flight_id,
                type=notification.type,
                error=db_result.error
            )
            return DispatchResult(persisted=False, errors=[db_result.error or "persist failed"])

        result = DispatchResult(
            persisted=True,
            notification_id=(db_result.data or {}).get("id")
        )

        if not self.transports:
            return result

        user = await self._get_user(notification.user_id)
        address = user.email if user else None
        transports = [t for t in self.transports if address or not getattr(t, "requires_email", True)]
        if len(transports) < len(self.transports):
            logger.info("notification_email_skipped_no_address",
                user_id=notification.user_id,
                notification_id=result.notification_id
            )
        if not transports:
            return result

        email = NotificationTemplates.render_email(
            user_name=user.name if user else None,
            flight_number=flight_number,
            alert_type=notification.type,
            message=notification.message,
            title=notification.title
        )

        for transport in transports:
            transport_name = getattr(transport, "name", type(transport).__name__)
            try:
                send_result = await transport.send(address, email["subject"], email["html"], email["text"])
            except Exception as e:
                logger.error("notification_transport_exception",
                    transport=transport_name,
                    notification_id=result.notification_id,
                    error=str(e)
                )
                result.errors.append(f"{transport_name}: {e}")
                continue

            if send_result.success:
                result.delivered = True
            else:
                logger.warning("notification_delivery_failed",
                    transport=transport_name,
                    notification_id=result.notification_id,
                    error=send_result.error
                )
                result.errors.append(f"{transport_name}: {send_result.error}")

        return result

    async def _get_user(self, user_id: str) -> Optional[User]:
        try:
            return await self.db_client.get_user(user_id)
        except Exception as e:
            logger.error("notification_user_lookup_failed", user_id=user_id, error=str(e))
            return None
