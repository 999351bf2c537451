"""
Async Resend email client over httpx.

Never raises: every outcome comes back as a SendResult so a delivery failure
can't interrupt the polling loop.
"""

import os
import httpx
import structlog
from typing import Optional
from dataclasses import dataclass

from ..utils.retry_logic import retry_async, RetryConfigs

logger = structlog.get_logger()


@dataclass
class SendResult:
    """Result of a transport send."""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class ResendEmailClient:
    """
    Usage:
        client = ResendEmailClient(api_key, "SkyAlert <alerts@skyalert.dev>")
        result = await client.send(to, subject, html, text)
    """

    name = "email"
    requires_email = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        base_url: str = "https://api.resend.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY")
        self.from_address = from_address or os.getenv("EMAIL_FROM", "SkyAlert <alerts@skyalert.dev>")
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        if not self.api_key:
            logger.warning("email_not_configured", to=to, subject=subject)
            return SendResult(success=False, error="RESEND_API_KEY not configured")

        payload = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }

        logger.info("sending_email", to=to, subject=subject)

        try:
            response_data = await retry_async(
                lambda: self._post(payload),
                config=RetryConfigs.RESEND_API,
                context="resend_send_email"
            )
        except httpx.HTTPStatusError as e:
            logger.error("email_send_failed",
                to=to,
                status_code=e.response.status_code,
                error=e.response.text[:200]
            )
            return SendResult(success=False, error=f"HTTP {e.response.status_code}")
        except Exception as e:
            logger.error("email_send_exception", to=to, error=str(e))
            return SendResult(success=False, error=str(e))

        message_id = response_data.get("id") if isinstance(response_data, dict) else None
        logger.info("email_sent_successfully", to=to, message_id=message_id)
        return SendResult(success=True, message_id=message_id)

    async def _post(self, payload: dict) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}/emails", headers=headers, json=payload)
            response.raise_for_status()
            return response.json()
