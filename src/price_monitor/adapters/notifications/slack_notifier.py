"""Slack notification adapter."""

import json
import logging
from typing import Optional

import httpx

from price_monitor.core import NotificationService, OutboundMessage


logger = logging.getLogger(__name__)


class SlackNotifier(NotificationService):
    """Send notifications to Slack via incoming webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 15.0) -> None:
        """Initialize Slack notifier.

        Args:
            webhook_url: Slack webhook URL. If None, every send is reported as failed.
            timeout: Request timeout in seconds
        """
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def send(self, message: OutboundMessage) -> bool:
        """Post a message to the webhook.

        Returns:
            True if Slack acknowledged the message
        """
        if not self.webhook_url:
            logger.warning("Slack webhook not configured, dropping message: %s", message.text)
            return False

        payload = message.payload()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.warning(
                    "Slack error %s: %s | payload: %s",
                    e.response.status_code,
                    " ".join(e.response.text[:500].split()),
                    json.dumps(payload, ensure_ascii=False)[:300],
                )
                return False
            except httpx.HTTPError as e:
                logger.warning("Slack send failed: %s", e)
                return False

        logger.debug("Slack ok: %s", message.text)
        return True


class LogNotifier(NotificationService):
    """Write messages to the log instead of posting them (dry runs)."""

    async def send(self, message: OutboundMessage) -> bool:
        logger.info("[dry-run] %s (%d blocks)", message.text, len(message.blocks))
        return True
