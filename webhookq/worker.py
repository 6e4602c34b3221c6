"""
Webhook worker.

Wires queue consumers to the delivery engine. Each consumer instance handles
one message at a time; ``concurrency`` consumers run side by side and share a
single webhook sender (and its HTTP connection pool).
"""

import asyncio
import logging
from typing import List, Optional

from .dispatch import NotificationDispatcher
from .senders import WebhookSender, create_sender
from .settings import WebhookQSettings, get_settings
from .transports import MessageConsumer, create_consumer
from .utils.signals import GracefulSignalHandler

logger = logging.getLogger(__name__)


class Worker:
    """
    Webhook notification worker.

    Examples:
        worker = Worker()
        await worker.run()  # until SIGINT/SIGTERM

        # Explicit lifecycle
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        settings: Optional[WebhookQSettings] = None,
        *,
        sender: Optional[WebhookSender] = None,
        consumers: Optional[List[MessageConsumer]] = None,
    ):
        self.settings = settings or get_settings()
        self.sender = sender or create_sender(self.settings)
        self.consumers = consumers if consumers is not None else self._build_consumers()
        self.dispatcher = NotificationDispatcher(self.sender)
        self._started = False

    def _build_consumers(self) -> List[MessageConsumer]:
        count = self.settings.concurrency
        base_name = self.settings.consumer_name

        if base_name is None:
            names = [None] * count
        elif count == 1:
            names = [base_name]
        else:
            names = [f"{base_name}-{i}" for i in range(count)]

        return [create_consumer(self.settings, name=name) for name in names]

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return

        self._started = True
        for consumer in self.consumers:
            await consumer.start(self.dispatcher.handle)

        logger.info(
            f"Webhook worker started - transport: {self.settings.transport.value}, "
            f"sender: {self.settings.sender.value}, consumers: {len(self.consumers)}, "
            f"queue: {self.settings.queue_name}"
        )

    async def stop(self) -> None:
        """Stop all consumers (draining in-flight messages), then close the sender"""
        logger.info("Webhook worker stopping...")

        results = await asyncio.gather(
            *(consumer.stop() for consumer in self.consumers), return_exceptions=True
        )
        for consumer, result in zip(self.consumers, results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping consumer {consumer.name}: {result}")

        await self.sender.close()
        self._started = False
        logger.info("Webhook worker stopped")

    async def run(self, shutdown_event: Optional[asyncio.Event] = None) -> None:
        """Run until the shutdown event is set or a termination signal arrives"""
        shutdown_event = shutdown_event or asyncio.Event()
        signal_handler = GracefulSignalHandler()
        signal_handler.setup_signal_handlers(shutdown_event)

        try:
            await self.start()
            await shutdown_event.wait()
        finally:
            signal_handler.restore_signal_handlers()
            await self.stop()


async def run_worker(settings: Optional[WebhookQSettings] = None) -> None:
    """Run a webhook worker with the given (or global) settings"""
    await Worker(settings).run()
