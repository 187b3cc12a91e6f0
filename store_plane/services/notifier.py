"""
Customer Notification Sender
============================

Delivers free-text messages to a customer identifier (chat id).

- WebhookNotifier: POSTs ``{"to": ..., "message": ...}`` to a messaging
  gateway (the chat bot) over HTTP
- LogNotifier: logs the message only, used when no gateway is configured

Delivery failures are logged and reported as False, never raised.
"""

import logging
from typing import Optional

import httpx

from ..config import NotifierConfig

logger = logging.getLogger(__name__)


class Notifier:
    """Send text to a customer."""

    async def send(self, recipient: str, text: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class LogNotifier(Notifier):

    async def send(self, recipient: str, text: str) -> bool:
        logger.info(f"Notification for {recipient}: {text}")
        return True


class WebhookNotifier(Notifier):

    def __init__(self, config: NotifierConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        headers = {"Content-Type": "application/json"}
        if config.webhook_token:
            headers["Authorization"] = f"Bearer {config.webhook_token}"
        self.client = httpx.AsyncClient(headers=headers, timeout=config.timeout, transport=transport)

    async def send(self, recipient: str, text: str) -> bool:
        if not recipient:
            logger.warning("No recipient for notification, skipping")
            return False

        try:
            resp = await self.client.post(
                self.config.webhook_url,
                json={"to": recipient, "message": text},
            )
            resp.raise_for_status()
            logger.info(f"Notification sent to {recipient}")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Notification gateway error: {e.response.status_code} - {e.response.text}")
        except Exception as e:
            logger.error(f"Failed to send notification to {recipient}: {e}")
        return False

    async def close(self) -> None:
        await self.client.aclose()


def build_notifier(config: NotifierConfig) -> Notifier:
    if config.is_configured:
        return WebhookNotifier(config)
    logger.warning("No notification gateway configured, notifications will only be logged")
    return LogNotifier()
