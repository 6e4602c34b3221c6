"""
Queue table for the postgres transport.

Rows live only while a message is queued or being processed; an
acknowledged message is deleted (no delivery history is kept).
"""

import logging
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "webhookq_messages"

SCHEMA_SQL = f"""
    CREATE TABLE IF NOT EXISTS {MESSAGES_TABLE} (
        id BIGSERIAL PRIMARY KEY,
        queue TEXT NOT NULL,
        body TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'queued',
        delivery_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        locked_at TIMESTAMP WITH TIME ZONE,
        locked_by TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_{MESSAGES_TABLE}_queue_status
        ON {MESSAGES_TABLE}(queue, status, id);
"""


def notify_channel(queue_name: str) -> str:
    """LISTEN/NOTIFY channel used to wake consumers of a queue"""
    return "webhookq_" + "".join(c if c.isalnum() else "_" for c in queue_name)


async def ensure_schema(conn: asyncpg.Connection) -> None:
    """Create the queue table and index if they do not exist"""
    await conn.execute(SCHEMA_SQL)


async def setup_database(database_url: Optional[str] = None) -> None:
    """Connect to the configured database and create the queue schema"""
    if database_url is None:
        from ..settings import get_settings

        database_url = get_settings().database_url

    conn = await asyncpg.connect(database_url)
    try:
        await ensure_schema(conn)
        logger.info(f"Ensured {MESSAGES_TABLE} schema")
    finally:
        await conn.close()
