"""
Queue transports.

The transport is chosen once at startup from ``WebhookQSettings.transport``.
"""

from typing import Dict, Optional, Type

from ..errors import ConfigurationError
from ..settings import TransportKind, WebhookQSettings, get_settings
from .base import MessageConsumer, MessageHandler, MessageState, QueueMessage
from .memory import MemoryBroker, MemoryConsumer
from .postgres import PostgresConsumer
from .redis import RedisConsumer

TRANSPORTS: Dict[TransportKind, Type[MessageConsumer]] = {
    TransportKind.POSTGRES: PostgresConsumer,
    TransportKind.REDIS: RedisConsumer,
    TransportKind.MEMORY: MemoryConsumer,
}


def create_consumer(
    settings: Optional[WebhookQSettings] = None, name: Optional[str] = None
) -> MessageConsumer:
    """Build a consumer for the transport configured in settings"""
    settings = settings or get_settings()

    consumer_cls = TRANSPORTS.get(settings.transport)
    if consumer_cls is None:
        raise ConfigurationError(f"Unknown queue transport: {settings.transport}")

    return consumer_cls.from_settings(settings, name=name)


__all__ = [
    "MessageConsumer",
    "MessageHandler",
    "MessageState",
    "QueueMessage",
    "MemoryBroker",
    "MemoryConsumer",
    "PostgresConsumer",
    "RedisConsumer",
    "create_consumer",
    "TRANSPORTS",
]
