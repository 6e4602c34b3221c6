"""
Unit tests for the PostgreSQL transport with a stub asyncpg pool.
"""

import asyncio
import uuid

import pytest

from webhookq.db.schema import SCHEMA_SQL, notify_channel
from webhookq.models import NotificationMessage
from webhookq.settings import build_settings
from webhookq.transports import PostgresConsumer, create_consumer
from webhookq.transports.postgres import (
    ACK_SQL,
    CLAIM_SQL,
    PUBLISH_SQL,
    RENEW_SQL,
    REQUEUE_SQL,
)


class DummyConn:
    """Connection stub recording every statement."""

    def __init__(self, rows=None):
        self.rows = list(rows or [])
        self.executed = []
        self.fetched = []
        self.listeners = {}
        self.transactions = 0

    async def execute(self, sql, *args):
        self.executed.append((sql, args))
        return "OK"

    async def fetchrow(self, sql, *args):
        self.fetched.append((sql, args))
        return self.rows.pop(0) if self.rows else None

    async def fetchval(self, sql, *args):
        self.fetched.append((sql, args))
        return 1

    async def add_listener(self, channel, callback):
        self.listeners[channel] = callback

    async def remove_listener(self, channel, callback):
        self.listeners.pop(channel, None)

    def transaction(self):
        conn = self

        class _Transaction:
            async def __aenter__(self):
                conn.transactions += 1
                return self

            async def __aexit__(self, exc_type, exc, tb):
                return False

        return _Transaction()


class DummyPool:
    """Pool stub whose acquire() works with both ``await`` and ``async with``."""

    class Acquire:
        def __init__(self, conn):
            self.conn = conn

        def __await__(self):
            return self._get().__await__()

        async def _get(self):
            return self.conn

        async def __aenter__(self):
            return self.conn

        async def __aexit__(self, exc_type, exc, tb):
            return False

    def __init__(self, conn):
        self.conn = conn
        self.released = []
        self.closed = False

    def acquire(self):
        return DummyPool.Acquire(self.conn)

    async def release(self, conn):
        self.released.append(conn)

    async def close(self):
        self.closed = True


def _row(body: bytes, message_id: int = 7, delivery_count: int = 1):
    return {"id": message_id, "body": body.decode("utf-8"), "delivery_count": delivery_count}


def _message() -> NotificationMessage:
    return NotificationMessage(
        notification_id=uuid.uuid4(),
        webhook_url="https://example.com/hook",
        payload="{}",
    )


def _consumer(conn, **kwargs) -> PostgresConsumer:
    return PostgresConsumer(
        "test.webhooks",
        pool=DummyPool(conn),
        name="pg-1",
        visibility_timeout=60,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_connect_creates_schema_and_listens():
    conn = DummyConn()
    consumer = _consumer(conn)

    await consumer.connect()

    assert conn.executed[0] == (SCHEMA_SQL, ())
    assert "webhookq_test_webhooks" in conn.listeners
    assert consumer.channel == notify_channel("test.webhooks")


@pytest.mark.asyncio
async def test_connect_without_auto_setup():
    conn = DummyConn()
    consumer = _consumer(conn, auto_setup=False)

    await consumer.connect()

    assert conn.executed == []


@pytest.mark.asyncio
async def test_receive_claims_next_message():
    body = _message().encode()
    conn = DummyConn(rows=[_row(body, message_id=7, delivery_count=2)])
    consumer = _consumer(conn)
    await consumer.connect()

    message = await consumer._receive(0.1)

    assert message.body == body
    assert message.delivery_tag == (7, 2)
    assert message.delivery_count == 2
    assert conn.fetched[0] == (CLAIM_SQL, ("test.webhooks", "pg-1", 60.0))


@pytest.mark.asyncio
async def test_receive_waits_for_notification():
    body = _message().encode()
    conn = DummyConn(rows=[None, _row(body)])
    consumer = _consumer(conn)
    await consumer.connect()

    loop = asyncio.get_running_loop()
    loop.call_later(
        0.05, consumer._on_notify, conn, 1234, consumer.channel, "test.webhooks"
    )
    message = await consumer._receive(5.0)

    assert message is not None
    assert message.body == body
    assert len(conn.fetched) == 2


@pytest.mark.asyncio
async def test_receive_times_out_when_queue_is_empty():
    conn = DummyConn()
    consumer = _consumer(conn)
    await consumer.connect()

    assert await consumer._receive(0.05) is None


@pytest.mark.asyncio
async def test_ack_deletes_and_nack_releases_claim():
    body = _message().encode()
    conn = DummyConn(rows=[_row(body, message_id=3, delivery_count=4)])
    consumer = _consumer(conn, auto_setup=False)
    await consumer.connect()
    message = await consumer._receive(0.1)

    await consumer._ack(message)
    await consumer._nack(message, requeue=True)
    await consumer._nack(message, requeue=False)

    assert conn.executed == [
        (ACK_SQL, (3, 4)),
        (REQUEUE_SQL, (3, 4)),
        (ACK_SQL, (3, 4)),
    ]


@pytest.mark.asyncio
async def test_publish_inserts_and_notifies_in_one_transaction():
    conn = DummyConn()
    consumer = _consumer(conn, auto_setup=False)
    message = _message()

    await consumer.publish(message)

    assert conn.transactions == 1
    assert conn.fetched == [
        (PUBLISH_SQL, ("test.webhooks", message.encode().decode("utf-8")))
    ]
    assert conn.executed == [
        ("SELECT pg_notify($1, $2)", ("webhookq_test_webhooks", "test.webhooks"))
    ]


@pytest.mark.asyncio
async def test_close_releases_listener_but_not_external_pool():
    conn = DummyConn()
    consumer = _consumer(conn)
    await consumer.connect()

    await consumer.close()

    assert conn.listeners == {}
    assert consumer._pool.released == [conn]
    assert not consumer._pool.closed


@pytest.mark.asyncio
async def test_handled_message_is_acknowledged():
    message = _message()
    conn = DummyConn(rows=[_row(message.encode(), message_id=9)])
    consumer = _consumer(conn, auto_setup=False, poll_interval=0.05)
    handled = asyncio.Event()

    async def handler(decoded):
        assert decoded == message
        handled.set()

    await consumer.start(handler)
    await asyncio.wait_for(handled.wait(), timeout=2)
    await consumer.stop()

    assert (ACK_SQL, (9, 1)) in conn.executed
    assert consumer.processed_count == 1


@pytest.mark.asyncio
async def test_claim_is_renewed_while_message_is_handled():
    message = _message()
    conn = DummyConn(rows=[_row(message.encode(), message_id=11, delivery_count=2)])
    consumer = PostgresConsumer(
        "test.webhooks",
        pool=DummyPool(conn),
        name="pg-1",
        visibility_timeout=0.06,
        auto_setup=False,
        poll_interval=0.05,
    )
    handled = asyncio.Event()

    async def handler(decoded):
        await asyncio.sleep(0.1)
        handled.set()

    assert consumer.lock_renewal_interval == pytest.approx(0.02)

    await consumer.start(handler)
    await asyncio.wait_for(handled.wait(), timeout=2)
    await consumer.stop()

    renewals = [args for sql, args in conn.executed if sql == RENEW_SQL]
    assert len(renewals) >= 2
    assert set(renewals) == {(11, 2)}
    ack_index = conn.executed.index((ACK_SQL, (11, 2)))
    assert all(sql != RENEW_SQL for sql, _ in conn.executed[ack_index:])


@pytest.mark.asyncio
async def test_stop_wakes_idle_consumer_without_claiming():
    conn = DummyConn()
    consumer = _consumer(conn, auto_setup=False, poll_interval=5.0)

    async def handler(decoded):
        pass

    await consumer.start(handler)
    await asyncio.sleep(0.05)
    claims_before_stop = len(conn.fetched)

    await asyncio.wait_for(consumer.stop(), timeout=1)

    assert len(conn.fetched) == claims_before_stop
    assert conn.executed == []


def test_create_consumer_from_settings():
    settings = build_settings(
        transport="postgres",
        queue_name="orders.webhooks",
        database_url="postgresql://app@db/app",
        db_pool_max_size=5,
        visibility_timeout=120,
    )

    consumer = create_consumer(settings, name="worker-a")

    assert isinstance(consumer, PostgresConsumer)
    assert consumer.queue_name == "orders.webhooks"
    assert consumer.name == "worker-a"
    assert consumer.database_url == "postgresql://app@db/app"
    assert consumer.pool_max_size == 5
    assert consumer.visibility_timeout == 120
