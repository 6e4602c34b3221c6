"""
In-process queue transport.

Backed by an ``asyncio.Queue``; useful for local runs and tests. Consumers
that share a ``MemoryBroker`` share its queues.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from .base import MessageConsumer, QueueMessage

logger = logging.getLogger(__name__)


class MemoryBroker:
    """Named in-memory queues plus a record of settled messages"""

    def __init__(self):
        self.queues: Dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)
        self.signals: Dict[str, asyncio.Event] = defaultdict(asyncio.Event)
        self.delivery_counts: Dict[int, int] = defaultdict(int)
        self.acknowledged: List[bytes] = []
        self.requeued: List[bytes] = []
        self._next_id = 0

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def put(self, queue_name: str, item: Tuple[int, bytes]) -> None:
        self.queues[queue_name].put_nowait(item)
        self.signals[queue_name].set()

    def take(self, queue_name: str) -> Optional[Tuple[int, bytes]]:
        try:
            return self.queues[queue_name].get_nowait()
        except asyncio.QueueEmpty:
            return None


_default_broker = MemoryBroker()


def get_default_broker() -> MemoryBroker:
    return _default_broker


class MemoryConsumer(MessageConsumer):
    """Queue consumer backed by an in-process broker"""

    transport_name = "memory"

    def __init__(self, queue_name: str, *, broker: Optional[MemoryBroker] = None, **kwargs):
        super().__init__(queue_name, **kwargs)
        self.broker = broker or get_default_broker()

    @property
    def queue(self) -> asyncio.Queue:
        return self.broker.queues[self.queue_name]

    async def _connect(self) -> None:
        logger.debug(f"Using in-memory queue {self.queue_name}")

    def _wakeup(self) -> None:
        self.broker.signals[self.queue_name].set()

    async def _receive(self, timeout: float) -> Optional[QueueMessage]:
        # Let other tasks run between messages
        await asyncio.sleep(0)

        item = self.broker.take(self.queue_name)
        if item is None:
            signal = self.broker.signals[self.queue_name]
            signal.clear()
            if self.is_stopping:
                return None
            try:
                await asyncio.wait_for(signal.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
            item = self.broker.take(self.queue_name)
            if item is None:
                return None

        message_id, body = item
        self.broker.delivery_counts[message_id] += 1
        return QueueMessage(
            body=body,
            delivery_tag=message_id,
            delivery_count=self.broker.delivery_counts[message_id],
        )

    async def _ack(self, message: QueueMessage) -> None:
        self.broker.acknowledged.append(message.body)
        self.broker.delivery_counts.pop(message.delivery_tag, None)

    async def _nack(self, message: QueueMessage, requeue: bool = True) -> None:
        self.broker.requeued.append(message.body)
        if requeue:
            self.broker.put(self.queue_name, (message.delivery_tag, message.body))

    async def _publish(self, body: bytes) -> None:
        self.broker.put(self.queue_name, (self.broker.next_id(), body))

    async def _close(self) -> None:
        pass
