"""
Dispatch loop: turns a queue message into a delivered webhook.
"""

import logging

from .logging import NotificationLogContext
from .models import DeliveryResult, NotificationMessage
from .senders.base import WebhookSender

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Message handler that validates a notification and delivers it.

    Validation errors propagate so the consumer requeues the message. A
    delivery that failed after all retries is returned, not raised, so the
    message is still acknowledged. No retries happen at this level.
    """

    def __init__(self, sender: WebhookSender):
        self.sender = sender

    async def __call__(self, message: NotificationMessage) -> DeliveryResult:
        return await self.handle(message)

    async def handle(self, message: NotificationMessage) -> DeliveryResult:
        with NotificationLogContext(message.notification_id, message.webhook_url):
            logger.info(
                "Processing webhook notification %s to %s",
                message.notification_id,
                message.webhook_url,
            )

            notification = message.to_notification()
            result = await self.sender.send(notification)

            if result.success:
                logger.info(
                    "Webhook %s sent successfully. Status: %s, Duration: %.1fms, Attempts: %s",
                    notification.id,
                    result.status_code,
                    result.duration_ms,
                    result.attempts,
                )
            else:
                logger.error(
                    "Failed to send webhook %s. Status: %s, Error: %s",
                    notification.id,
                    result.status_code,
                    result.error_message,
                )

            return result
