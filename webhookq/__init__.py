"""
webhookq - queue-driven webhook delivery for Python

Consumes webhook notification messages from a queue (PostgreSQL, Redis or
in-process) and delivers them over HTTP with HMAC signing and exponential
backoff retries.

Usage:
    import webhookq

    webhookq.configure(transport="redis", concurrency=4)
    await webhookq.run_worker()
"""

__version__ = "0.1.0"

from . import errors
from .core.signing import compute_signature, verify_signature
from .dispatch import NotificationDispatcher
from .models import (
    DeliveryResult,
    HttpMethod,
    Notification,
    NotificationMessage,
    WebhookPayload,
    WebhookUrl,
)
from .senders import HttpWebhookSender, LoggingWebhookSender, create_sender
from .settings import configure, get_settings
from .transports import create_consumer
from .worker import Worker, run_worker

__all__ = [
    "__version__",
    "errors",
    "compute_signature",
    "verify_signature",
    "NotificationDispatcher",
    "DeliveryResult",
    "HttpMethod",
    "Notification",
    "NotificationMessage",
    "WebhookPayload",
    "WebhookUrl",
    "HttpWebhookSender",
    "LoggingWebhookSender",
    "create_sender",
    "configure",
    "get_settings",
    "create_consumer",
    "Worker",
    "run_worker",
]
