"""
Redis queue transport.

Reliable-queue pattern on Redis lists: publishers ``LPUSH`` onto the queue,
a consumer atomically moves the next message into its own processing list
with ``BLMOVE``, acknowledging removes it from there and requeueing moves it
back to the consuming end of the queue.

Every consumer keeps a heartbeat key alive while it runs. Processing lists
whose owner has no heartbeat (the process died or was killed) are moved back
onto the queue by any other consumer of that queue, on connect and on every
heartbeat.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import MessageConsumer, QueueMessage

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "*?[]\\"


def _glob_escape(value: str) -> str:
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in value)


def processing_key(queue_name: str, consumer_name: str) -> str:
    return f"{queue_name}:processing:{consumer_name}"


def heartbeat_key(queue_name: str, consumer_name: str) -> str:
    return f"{queue_name}:consumer:{consumer_name}"


class RedisConsumer(MessageConsumer):
    """
    Queue consumer backed by Redis lists.

    Args:
        queue_name: Redis list holding queued messages.
        redis_url: Redis URL, used when no client is given.
        client: Existing ``redis.asyncio.Redis`` client; not closed by the consumer.
        visibility_timeout: Heartbeat lifetime in seconds; messages held by a
            consumer whose heartbeat expired are requeued.
    """

    transport_name = "redis"

    def __init__(
        self,
        queue_name: str,
        *,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional[Redis] = None,
        visibility_timeout: float = 300.0,
        **kwargs,
    ):
        super().__init__(queue_name, **kwargs)
        self.redis_url = redis_url
        self.visibility_timeout = visibility_timeout
        self.processing_key = processing_key(queue_name, self.name)
        self.heartbeat_key = heartbeat_key(queue_name, self.name)
        self._client = client
        self._owns_client = client is None
        self._heartbeat_task: Optional[asyncio.Task] = None

    @classmethod
    def options_from_settings(cls, settings, name: Optional[str] = None) -> Dict[str, Any]:
        options = super().options_from_settings(settings, name)
        options.update(
            redis_url=settings.redis_url,
            visibility_timeout=settings.visibility_timeout,
        )
        return options

    async def _connect(self) -> None:
        if self._client is None:
            self._client = Redis.from_url(self.redis_url)
            self._owns_client = True

        await self._client.ping()
        await self._beat()

        recovered = await self._recover(self.processing_key)
        if recovered:
            logger.warning(
                f"Requeued {recovered} unacknowledged message(s) from {self.processing_key}"
            )
        await self._recover_orphans()

        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(), name=f"webhookq-heartbeat-{self.name}"
        )

    async def _beat(self) -> None:
        await self._client.set(
            self.heartbeat_key, self.name, ex=max(1, int(self.visibility_timeout))
        )

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.visibility_timeout / 3)
            try:
                await self._beat()
                await self._recover_orphans()
            except RedisError as e:
                logger.warning(f"Heartbeat failed for consumer {self.name}: {e}")

    async def _recover(self, source: str) -> int:
        recovered = 0
        while True:
            body = await self._client.lmove(source, self.queue_name, "RIGHT", "RIGHT")
            if body is None:
                return recovered
            recovered += 1

    async def _recover_orphans(self) -> int:
        """Requeue processing lists of consumers whose heartbeat expired"""
        prefix = processing_key(self.queue_name, "")
        total = 0

        async for key in self._client.scan_iter(match=_glob_escape(prefix) + "*"):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            if key == self.processing_key:
                continue

            owner = key[len(prefix):]
            if await self._client.exists(heartbeat_key(self.queue_name, owner)):
                continue

            recovered = await self._recover(key)
            if recovered:
                logger.warning(
                    f"Requeued {recovered} message(s) abandoned by consumer {owner}"
                )
            total += recovered

        return total

    async def _receive(self, timeout: float) -> Optional[QueueMessage]:
        body = await self._client.blmove(
            self.queue_name, self.processing_key, timeout, "RIGHT", "LEFT"
        )
        if body is None:
            return None

        if isinstance(body, str):
            body = body.encode("utf-8")
        return QueueMessage(body=body, delivery_tag=body)

    async def _ack(self, message: QueueMessage) -> None:
        await self._client.lrem(self.processing_key, 1, message.delivery_tag)

    async def _nack(self, message: QueueMessage, requeue: bool = True) -> None:
        if not requeue:
            await self._client.lrem(self.processing_key, 1, message.delivery_tag)
            return

        async with self._client.pipeline(transaction=True) as pipe:
            await (
                pipe.lrem(self.processing_key, 1, message.delivery_tag)
                .rpush(self.queue_name, message.delivery_tag)
                .execute()
            )

    async def _publish(self, body: bytes) -> None:
        await self._client.lpush(self.queue_name, body)

    async def _close(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)
            self._heartbeat_task = None

        if self._client is None:
            return

        # Anything still in the processing list becomes recoverable at once
        await self._client.delete(self.heartbeat_key)

        if self._owns_client:
            await self._client.aclose()
            self._client = None
