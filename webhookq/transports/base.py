"""
Queue consumer contract.

A ``MessageConsumer`` receives one message at a time, hands the decoded
notification message to a handler and acknowledges it only when the handler
returns. Any error raised while handling negatively acknowledges the message
with requeue, so the transport redelivers it (at-least-once processing).

Per message::

    RECEIVED -> PROCESSING -> ACKNOWLEDGED | REQUEUED
"""

import asyncio
import logging
import os
import socket
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import TransportError
from ..models import NotificationMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[NotificationMessage], Awaitable[Any]]


class MessageState(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    ACKNOWLEDGED = "acknowledged"
    REQUEUED = "requeued"


@dataclass
class QueueMessage:
    """Transport envelope: raw body plus whatever the transport needs to settle it"""

    body: bytes
    delivery_tag: Any = None
    delivery_count: Optional[int] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: MessageState = MessageState.RECEIVED


def default_consumer_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class MessageConsumer(ABC):
    """
    Base class for queue transports.

    Subclasses implement the broker specific hooks (``_connect``,
    ``_receive``, ``_ack``, ``_nack``, ``_publish``, ``_close``); the receive
    loop, the acknowledgment state machine and shutdown live here.

    Args:
        queue_name: Queue to consume from and publish to.
        name: Consumer name, unique per running instance.
        poll_interval: Longest time a single receive call may block (seconds).
        error_retry_delay: Pause after a failed receive (seconds).
        shutdown_timeout: How long ``stop`` waits for an in-flight message.

    Transports whose claims expire set ``lock_renewal_interval``; the claim on
    the message being handled is then refreshed through ``_renew`` at that
    interval until the message is settled.
    """

    transport_name = "base"
    lock_renewal_interval: Optional[float] = None

    def __init__(
        self,
        queue_name: str,
        *,
        name: Optional[str] = None,
        poll_interval: float = 5.0,
        error_retry_delay: float = 5.0,
        shutdown_timeout: float = 30.0,
    ):
        self.queue_name = queue_name
        self.name = name or default_consumer_name()
        self.poll_interval = poll_interval
        self.error_retry_delay = error_retry_delay
        self.shutdown_timeout = shutdown_timeout

        self.processed_count = 0
        self.requeued_count = 0

        self._handler: Optional[MessageHandler] = None
        self._consume_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[QueueMessage] = None
        self._running = False
        self._connected = False

    @classmethod
    def options_from_settings(cls, settings, name: Optional[str] = None) -> Dict[str, Any]:
        """Constructor keyword arguments taken from WebhookQSettings"""
        return {
            "name": name or settings.consumer_name,
            "poll_interval": settings.poll_interval,
            "error_retry_delay": settings.error_retry_delay,
            "shutdown_timeout": settings.shutdown_timeout,
        }

    @classmethod
    def from_settings(cls, settings, name: Optional[str] = None) -> "MessageConsumer":
        """Build the consumer from WebhookQSettings"""
        return cls(settings.queue_name, **cls.options_from_settings(settings, name))

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_stopping(self) -> bool:
        """True while stop() is waiting for the consume loop to exit"""
        return self._consume_task is not None and not self._running

    @property
    def in_flight(self) -> Optional[QueueMessage]:
        """Message currently being handled, if any"""
        return self._in_flight

    # Transport hooks

    @abstractmethod
    async def _connect(self) -> None:
        ...

    @abstractmethod
    async def _receive(self, timeout: float) -> Optional[QueueMessage]:
        """Wait up to ``timeout`` seconds for the next message"""

    @abstractmethod
    async def _ack(self, message: QueueMessage) -> None:
        ...

    @abstractmethod
    async def _nack(self, message: QueueMessage, requeue: bool = True) -> None:
        ...

    @abstractmethod
    async def _publish(self, body: bytes) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    async def _renew(self, message: QueueMessage) -> None:
        """Extend the claim on a message that is still being handled"""

    def _wakeup(self) -> None:
        """Interrupt a blocking receive so the consume loop notices ``stop``"""

    # Public API

    async def connect(self) -> None:
        if not self._connected:
            await self._connect()
            self._connected = True

    async def close(self) -> None:
        if self._connected:
            await self._close()
            self._connected = False

    async def publish(self, message: NotificationMessage) -> None:
        """Put a notification message on the queue"""
        await self.connect()
        await self._publish(message.encode())
        logger.debug(
            f"Published notification {message.notification_id} to {self.queue_name}"
        )

    async def start(self, handler: MessageHandler) -> None:
        """
        Begin consuming messages in a background task.

        Exactly one message is handled at a time; the next one is received
        only after the current one has been acknowledged or requeued.
        """
        if self._running:
            raise TransportError(f"Consumer {self.name} is already running")

        await self.connect()
        self._handler = handler
        self._running = True
        self._consume_task = asyncio.create_task(
            self._consume_loop(), name=f"webhookq-consumer-{self.name}"
        )
        logger.info(
            f"{self.transport_name} consumer {self.name} started. "
            f"Listening on queue: {self.queue_name}"
        )

    async def stop(self) -> None:
        """
        Stop receiving and close the transport.

        A receive already in progress is allowed to complete (it is bounded by
        ``poll_interval``) and whatever it returned is requeued unhandled. A
        message already being handled gets up to ``shutdown_timeout`` seconds
        to finish; after that it is cancelled and requeued.
        """
        if not self._running and self._consume_task is None:
            await self.close()
            return

        self._running = False
        task = self._consume_task

        if task is not None and not task.done():
            self._wakeup()
            if self._in_flight is not None:
                logger.info(
                    f"Waiting up to {self.shutdown_timeout}s for in-flight message on {self.queue_name}"
                )

            timeout = self.poll_interval + self.shutdown_timeout
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning(
                    f"Consumer {self.name} did not stop within {timeout}s, cancelling"
                )
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._consume_task = None
        await self.close()
        logger.info(f"{self.transport_name} consumer {self.name} stopped")

    async def wait(self) -> None:
        """Wait until the consume loop exits"""
        if self._consume_task is not None:
            await asyncio.gather(self._consume_task, return_exceptions=True)

    # Consume loop

    async def _consume_loop(self) -> None:
        while self._running:
            try:
                message = await self._receive(self.poll_interval)
            except Exception as e:
                logger.exception(f"Error receiving from queue {self.queue_name}: {e}")
                await asyncio.sleep(self.error_retry_delay)
                continue

            if message is None:
                continue

            if not self._running:
                # Claimed while stop() was in progress
                await self._settle(message, acknowledge=False)
                break

            self._in_flight = message
            try:
                await self.handle_message(message)
            finally:
                self._in_flight = None

    async def handle_message(self, message: QueueMessage) -> bool:
        """
        Run the handler for one message and settle it.

        Returns True when the message was acknowledged. Cancellation requeues
        the message and propagates.
        """
        if self._handler is None:
            raise TransportError("No handler registered; call start() first")

        message.state = MessageState.PROCESSING
        renewal = self._start_renewal(message)
        try:
            try:
                decoded = NotificationMessage.decode(message.body)
                await self._handler(decoded)
            finally:
                await self._stop_renewal(renewal)
        except asyncio.CancelledError:
            await self._settle(message, acknowledge=False)
            raise
        except Exception as e:
            redelivery = (
                f" (delivery {message.delivery_count})"
                if message.delivery_count is not None
                else ""
            )
            logger.error(
                f"Error processing message from {self.queue_name}{redelivery}: {e}",
                exc_info=True,
            )
            await self._settle(message, acknowledge=False)
            return False

        await self._settle(message, acknowledge=True)
        return True

    def _start_renewal(self, message: QueueMessage) -> Optional[asyncio.Task]:
        if not self.lock_renewal_interval:
            return None
        return asyncio.create_task(
            self._renewal_loop(message), name=f"webhookq-renew-{self.name}"
        )

    async def _stop_renewal(self, renewal: Optional[asyncio.Task]) -> None:
        if renewal is None:
            return
        renewal.cancel()
        await asyncio.gather(renewal, return_exceptions=True)

    async def _renewal_loop(self, message: QueueMessage) -> None:
        while True:
            await asyncio.sleep(self.lock_renewal_interval)
            try:
                await self._renew(message)
            except Exception as e:
                logger.warning(
                    f"Failed to renew claim on message from {self.queue_name}: {e}"
                )

    async def _settle(self, message: QueueMessage, acknowledge: bool) -> None:
        try:
            if acknowledge:
                await self._ack(message)
                message.state = MessageState.ACKNOWLEDGED
                self.processed_count += 1
            else:
                await self._nack(message, requeue=True)
                message.state = MessageState.REQUEUED
                self.requeued_count += 1
        except Exception as e:
            # Unsettled messages are redelivered by the transport
            logger.error(
                f"Failed to {'ack' if acknowledge else 'requeue'} message on {self.queue_name}: {e}"
            )
