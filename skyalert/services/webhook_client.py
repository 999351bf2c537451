"""JSON webhook transport for alert notifications (Slack-style relays, automation hooks)."""

import httpx
import structlog
from datetime import datetime, timezone
from typing import Optional

from .email_client import SendResult

logger = structlog.get_logger()


class WebhookClient:
    name = "webhook"
    # Delivers without a recipient address
    requires_email = False

    def __init__(self, url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, to: Optional[str], subject: str, html: str, text: str) -> SendResult:
        webhook_data = {
            "to": to,
            "subject": subject,
            "html": html,
            "text": text,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=webhook_data)
                response.raise_for_status()

            logger.info("webhook_notification_sent", to=to, status_code=response.status_code)
            return SendResult(success=True)

        except Exception as e:
            logger.error("webhook_notification_failed", to=to, error=str(e))
            return SendResult(success=False, error=str(e))
