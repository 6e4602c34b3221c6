"""
Webhook sender interface.
"""

from abc import ABC, abstractmethod

from ..models import DeliveryResult, Notification


class WebhookSender(ABC):
    """Delivers a notification and reports the outcome.

    ``send`` must not raise for delivery failures; those are reported in the
    returned ``DeliveryResult``. Task cancellation propagates to the caller.
    """

    @classmethod
    def from_settings(cls, settings) -> "WebhookSender":
        """Build the sender from WebhookQSettings"""
        return cls()

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Deliver one notification"""

    async def close(self) -> None:
        """Release any resources held by the sender"""

    async def __aenter__(self) -> "WebhookSender":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
