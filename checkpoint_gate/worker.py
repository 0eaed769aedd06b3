"""
Drains the scan audit outbox (a Redis stream) into the scan_logs table.

Delivery is at least once: a message is deleted only after its row is
committed, and rows are keyed by the entry id so a redelivered message is
skipped instead of duplicated.
"""

import asyncio
import logging
from typing import Optional

from redis.asyncio import Redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from fastapi.concurrency import run_in_threadpool

from .audit import AUDIT_STREAM, ScanLogEntry, write_entry
from .config import get_settings
from .db import init_db, make_engine, make_session_factory

logger = logging.getLogger(__name__)

LAST_ID_KEY = "worker:scan_audit:last_id"


def process_one(session_factory: sessionmaker, data: dict) -> bool:
    """Returns False when the entry was already delivered."""
    entry = ScanLogEntry.from_stream_fields(data)
    try:
        write_entry(session_factory, entry)
    except IntegrityError:
        logger.info("[worker] duplicate scan audit entry id=%s skipped", entry.id)
        return False

    logger.info("[worker] synced scan id=%s outcome=%s event_id=%s", entry.id, entry.outcome, entry.event_id)
    return True


async def drain_once(redis: Redis, session_factory: sessionmaker, count: int = 50, block_ms: Optional[int] = None) -> int:
    """Moves one batch from the outbox into the database. Returns the number of messages handled."""
    last_id = await redis.get(LAST_ID_KEY) or "0-0"

    resp = await redis.xread({AUDIT_STREAM: last_id}, block=block_ms, count=count)
    if not resp:
        return 0

    _, messages = resp[0]
    for msg_id, data in messages:
        await run_in_threadpool(process_one, session_factory, data)
        await redis.xdel(AUDIT_STREAM, msg_id)
        # persist progress
        await redis.set(LAST_ID_KEY, msg_id)
    return len(messages)


async def main():
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    engine = make_engine(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    init_db(engine)
    session_factory = make_session_factory(engine)
    redis = Redis.from_url(settings.redis_url, decode_responses=True)

    logger.info("[worker] draining %s", AUDIT_STREAM)
    while True:
        try:
            await drain_once(redis, session_factory, block_ms=5000)
        except Exception:
            logger.exception("[worker] drain failed, retrying")
            await asyncio.sleep(1.0)


if __name__ == "__main__":
    asyncio.run(main())
