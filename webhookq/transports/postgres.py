"""
PostgreSQL queue transport.

Messages are rows in ``webhookq_messages``. A consumer claims the oldest
queued row with ``FOR UPDATE SKIP LOCKED`` so several consumers can share a
queue, and sleeps on LISTEN/NOTIFY while the queue is empty. Rows claimed by
a consumer that died are redelivered once their lock is older than the
visibility timeout; a live consumer refreshes the lock on the row it is
handling every third of that timeout.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import asyncpg
import asyncpg.exceptions

from ..db.schema import MESSAGES_TABLE, ensure_schema, notify_channel
from .base import MessageConsumer, QueueMessage

logger = logging.getLogger(__name__)

CLAIM_SQL = f"""
    UPDATE {MESSAGES_TABLE}
    SET status = 'processing',
        delivery_count = delivery_count + 1,
        locked_at = NOW(),
        locked_by = $2
    WHERE id = (
        SELECT id FROM {MESSAGES_TABLE}
        WHERE queue = $1
          AND (
            status = 'queued'
            OR (status = 'processing' AND locked_at < NOW() - make_interval(secs => $3))
          )
        ORDER BY id
        FOR UPDATE SKIP LOCKED
        LIMIT 1
    )
    RETURNING id, body, delivery_count
"""

ACK_SQL = f"DELETE FROM {MESSAGES_TABLE} WHERE id = $1 AND delivery_count = $2"

RENEW_SQL = f"""
    UPDATE {MESSAGES_TABLE}
    SET locked_at = NOW()
    WHERE id = $1 AND delivery_count = $2 AND status = 'processing'
"""

REQUEUE_SQL = f"""
    UPDATE {MESSAGES_TABLE}
    SET status = 'queued', locked_at = NULL, locked_by = NULL
    WHERE id = $1 AND delivery_count = $2
"""

PUBLISH_SQL = f"INSERT INTO {MESSAGES_TABLE} (queue, body) VALUES ($1, $2) RETURNING id"


class PostgresConsumer(MessageConsumer):
    """
    Queue consumer backed by a PostgreSQL table.

    Args:
        queue_name: Queue to consume from.
        database_url: PostgreSQL URL, used when no pool is given.
        pool: Existing asyncpg pool; not closed by the consumer.
        pool_min_size / pool_max_size: Size of the pool the consumer creates.
        visibility_timeout: Seconds after which a message whose claim was
            not renewed is delivered again.
        auto_setup: Create the queue table on connect.
    """

    transport_name = "postgres"

    def __init__(
        self,
        queue_name: str,
        *,
        database_url: Optional[str] = None,
        pool: Optional[asyncpg.Pool] = None,
        pool_min_size: int = 1,
        pool_max_size: int = 10,
        visibility_timeout: float = 300.0,
        auto_setup: bool = True,
        **kwargs,
    ):
        super().__init__(queue_name, **kwargs)
        self.database_url = database_url
        self.pool_min_size = pool_min_size
        self.pool_max_size = pool_max_size
        self.visibility_timeout = visibility_timeout
        self.lock_renewal_interval = visibility_timeout / 3
        self.auto_setup = auto_setup
        self.channel = notify_channel(queue_name)

        self._pool = pool
        self._owns_pool = pool is None
        self._listen_conn: Optional[asyncpg.Connection] = None
        self._notified = asyncio.Event()

    @classmethod
    def options_from_settings(cls, settings, name: Optional[str] = None) -> Dict[str, Any]:
        options = super().options_from_settings(settings, name)
        options.update(
            database_url=settings.database_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            visibility_timeout=settings.visibility_timeout,
        )
        return options

    def _wakeup(self) -> None:
        self._notified.set()

    def _on_notify(self, connection, pid, channel, payload):
        logger.debug(f"Received notification on {channel}: {payload}")
        self._notified.set()

    async def _connect(self) -> None:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.pool_min_size,
                max_size=self.pool_max_size,
            )
            self._owns_pool = True
            logger.debug(
                f"Created database pool (min: {self.pool_min_size}, max: {self.pool_max_size})"
            )

        if self.auto_setup:
            async with self._pool.acquire() as conn:
                await ensure_schema(conn)

        # Dedicated connection for LISTEN so waiting never blocks claims
        self._listen_conn = await self._pool.acquire()
        await self._listen_conn.add_listener(self.channel, self._on_notify)

    async def _claim(self) -> Optional[QueueMessage]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                CLAIM_SQL, self.queue_name, self.name, float(self.visibility_timeout)
            )

        if row is None:
            return None

        return QueueMessage(
            body=row["body"].encode("utf-8"),
            delivery_tag=(row["id"], row["delivery_count"]),
            delivery_count=row["delivery_count"],
        )

    async def _receive(self, timeout: float) -> Optional[QueueMessage]:
        self._notified.clear()
        message = await self._claim()
        if message is not None:
            return message

        try:
            await asyncio.wait_for(self._notified.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            # Timeout is normal - also picks up messages whose lock expired
            return None

        if self.is_stopping:
            return None

        return await self._claim()

    async def _ack(self, message: QueueMessage) -> None:
        message_id, delivery_count = message.delivery_tag
        async with self._pool.acquire() as conn:
            await conn.execute(ACK_SQL, message_id, delivery_count)

    async def _renew(self, message: QueueMessage) -> None:
        message_id, delivery_count = message.delivery_tag
        async with self._pool.acquire() as conn:
            await conn.execute(RENEW_SQL, message_id, delivery_count)

    async def _nack(self, message: QueueMessage, requeue: bool = True) -> None:
        message_id, delivery_count = message.delivery_tag
        async with self._pool.acquire() as conn:
            if requeue:
                await conn.execute(REQUEUE_SQL, message_id, delivery_count)
            else:
                await conn.execute(ACK_SQL, message_id, delivery_count)

    async def _publish(self, body: bytes) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.fetchval(PUBLISH_SQL, self.queue_name, body.decode("utf-8"))
                await conn.execute("SELECT pg_notify($1, $2)", self.channel, self.queue_name)

    async def _close(self) -> None:
        if self._listen_conn is not None:
            try:
                await self._listen_conn.remove_listener(self.channel, self._on_notify)
            except asyncpg.exceptions.InterfaceError as e:
                logger.debug(f"Failed to remove listener (pool closing): {e}")

            try:
                await self._pool.release(self._listen_conn)
            except asyncpg.exceptions.InterfaceError as e:
                logger.debug(f"Failed to release connection (pool closing): {e}")
            self._listen_conn = None

        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None
            logger.debug("Closed database pool")
