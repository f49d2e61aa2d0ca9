import logging
from typing import Any, Dict

import httpx

from ..config.config import settings
from ..services.errors import NotificationError

logger = logging.getLogger(__name__)


async def notify(channel: str, recipient: str, payload: Dict[str, Any]) -> None:
    """
    Hands a notification to the delivery webhook (email/SMS gateway).

    Delivery itself happens on the other side of the webhook. When no webhook
    is configured the notification is only logged.

    Raises:
        NotificationError: The webhook was unreachable or answered 4xx/5xx.
    """
    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.info(f"Notification webhook not configured; {channel} notification to '{recipient}' only logged: {payload}")
        return

    body = {"channel": channel, "recipient": recipient, "payload": payload}

    async with httpx.AsyncClient(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS) as client:
        try:
            response = await client.post(settings.NOTIFICATION_WEBHOOK_URL, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(f"Notification webhook error: {e.response.status_code} - {e.response.text}") from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Notification webhook unreachable: {e}") from e

    logger.info(f"{channel} notification sent to '{recipient}'.")
