# campus_helpdesk/backend/app/workers/channels.py
"""
Outbound notification channels.

Every channel exposes `async send(message) -> DeliveryResult`. A channel
never raises for a delivery problem; it reports it in the result and the
caller decides whether that is worth a retry.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import time
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Dict, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

SLACK = "slack"
EMAIL = "email"


@dataclass
class NotificationMessage:
    recipient: str
    subject: str
    text: str
    ticket_id: Optional[int] = None


@dataclass
class DeliveryResult:
    """Result of one delivery attempt."""
    success: bool
    channel: str
    recipient: str
    error: Optional[str] = None
    delivery_time: float = field(default_factory=time.time)


class LogChannel:
    """Dry-run channel used when the real one is not configured."""

    def __init__(self, name: str):
        self.name = name

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        logger.info(
            "[NOTIFY] (dry run) %s -> %s: %s",
            self.name, message.recipient, message.subject,
        )
        return DeliveryResult(success=True, channel=self.name, recipient=message.recipient)


class SlackWebhookChannel:
    name = SLACK

    def __init__(self, webhook_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = client

    async def _post(self, client: httpx.AsyncClient, body: dict) -> httpx.Response:
        response = await client.post(self.webhook_url, json=body)
        response.raise_for_status()
        return response

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        body = {"text": f"*{message.subject}*\n{message.text}"}
        try:
            if self._client is not None:
                await self._post(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await self._post(client, body)
        except httpx.HTTPError as exc:
            logger.error("[NOTIFY] Slack delivery failed: %s", type(exc).__name__)
            return DeliveryResult(
                success=False, channel=self.name, recipient=message.recipient, error=str(exc)
            )
        return DeliveryResult(success=True, channel=self.name, recipient=message.recipient)


class EmailChannel:
    name = EMAIL

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "noreply@campus-helpdesk.local",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _send_sync(self, message: NotificationMessage) -> None:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = message.recipient
        msg.set_content(message.text)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[NOTIFY] Email delivery failed: %s", type(exc).__name__)
            return DeliveryResult(
                success=False, channel=self.name, recipient=message.recipient, error=str(exc)
            )
        return DeliveryResult(success=True, channel=self.name, recipient=message.recipient)


def build_default_channels() -> Dict[str, object]:
    """Channels from configuration; unconfigured ones fall back to dry run."""
    channels: Dict[str, object] = {}

    if config.SLACK_WEBHOOK_URL:
        channels[SLACK] = SlackWebhookChannel(config.SLACK_WEBHOOK_URL)
    else:
        logger.warning("[NOTIFY] SLACK_WEBHOOK_URL not set - Slack messages will be logged only")
        channels[SLACK] = LogChannel(SLACK)

    if config.SMTP_HOST:
        channels[EMAIL] = EmailChannel(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            sender=config.SMTP_FROM,
        )
    else:
        logger.warning("[NOTIFY] SMTP_HOST not set - emails will be logged only")
        channels[EMAIL] = LogChannel(EMAIL)

    return channels
