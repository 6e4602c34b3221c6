"""
Log-only webhook sender for local development.
"""

import logging

from ..models import DeliveryResult, Notification
from .base import WebhookSender

logger = logging.getLogger(__name__)

LOGGED_RESPONSE_BODY = '{"status":"logged"}'


class LoggingWebhookSender(WebhookSender):
    """Logs the notification instead of sending it; always succeeds"""

    async def send(self, notification: Notification) -> DeliveryResult:
        headers = (
            ", ".join(f"{key}: {value}" for key, value in notification.headers.items())
            if notification.headers
            else "(none)"
        )

        logger.info(
            "\n========== WEBHOOK NOTIFICATION ==========\n"
            "ID: %s\n"
            "URL: %s\n"
            "Method: %s\n"
            "Content-Type: %s\n"
            "Headers: %s\n"
            "Secret: %s\n"
            "Timeout: %ss\n"
            "Max Retries: %s\n"
            "\n"
            "Payload:\n"
            "%s\n"
            "==========================================",
            notification.id,
            notification.url.value,
            notification.method.value,
            notification.payload.content_type,
            headers,
            "***" if notification.secret else "(none)",
            notification.timeout_seconds,
            notification.max_retries,
            notification.payload.content,
        )

        return DeliveryResult(
            success=True,
            status_code=200,
            response_body=LOGGED_RESPONSE_BODY,
            duration=0.001,
            attempts=1,
        )
