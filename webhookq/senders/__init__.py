"""
Webhook senders.

The sender is chosen once at startup from ``WebhookQSettings.sender``.
"""

from typing import Dict, Optional, Type

from ..errors import ConfigurationError
from ..settings import SenderKind, WebhookQSettings, get_settings
from .base import WebhookSender
from .console import LoggingWebhookSender
from .http import HttpWebhookSender, build_request_headers

SENDERS: Dict[SenderKind, Type[WebhookSender]] = {
    SenderKind.HTTP: HttpWebhookSender,
    SenderKind.CONSOLE: LoggingWebhookSender,
}


def create_sender(settings: Optional[WebhookQSettings] = None) -> WebhookSender:
    """Build the sender configured in settings"""
    settings = settings or get_settings()

    sender_cls = SENDERS.get(settings.sender)
    if sender_cls is None:
        raise ConfigurationError(f"Unknown webhook sender: {settings.sender}")

    return sender_cls.from_settings(settings)


__all__ = [
    "WebhookSender",
    "HttpWebhookSender",
    "LoggingWebhookSender",
    "build_request_headers",
    "create_sender",
    "SENDERS",
]
