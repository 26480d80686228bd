import asyncio
from collections.abc import Iterator
from contextlib import contextmanager

import redis
from redis.exceptions import LockError, RedisError

from tradeguard.common.logging import get_logger
from tradeguard.config import settings
from tradeguard.tasks.celery_app import app

logger = get_logger("tasks.dispute")

NEGOTIATION_SCAN_LOCK = "lock:dispute:check-expired-negotiations"
ARBITRATION_SCAN_LOCK = "lock:dispute:check-expired-arbitrations"


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        from tradeguard.db.session import engine

        # Pooled connections are bound to this loop; drop them before it goes away
        loop.run_until_complete(engine.dispose())
        loop.close()


@contextmanager
def _single_active(lock_name: str) -> Iterator[bool]:
    """Yield True when this worker holds ``lock_name``, False when another one does."""
    client = redis.Redis.from_url(settings.REDIS_URL)
    lock = client.lock(lock_name, timeout=settings.SCHEDULER_LOCK_TIMEOUT_SECONDS)
    try:
        acquired = lock.acquire(blocking=False)
    except RedisError as e:
        logger.error("Could not acquire %s: %s", lock_name, e)
        acquired = False

    if not acquired:
        yield False
        return

    try:
        yield True
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("Lock %s expired before the scan finished", lock_name)


@app.task(name="tradeguard.tasks.dispute_tasks.check_expired_negotiations")
def check_expired_negotiations():
    """Celery Beat task: escalate disputes whose negotiation window has closed."""
    with _single_active(NEGOTIATION_SCAN_LOCK) as acquired:
        if not acquired:
            logger.info("Negotiation expiry scan is running elsewhere, skipping")
            return []

        async def _scan():
            from tradeguard.core.expiry.scheduler import ExpiryScheduler

            return await ExpiryScheduler().mark_expired_negotiations()

        escalated = _run_async(_scan())
        logger.info("Negotiation expiry scan escalated %d dispute(s)", len(escalated))
        return [str(dispute_id) for dispute_id in escalated]


@app.task(name="tradeguard.tasks.dispute_tasks.check_expired_arbitrations")
def check_expired_arbitrations():
    """Celery Beat task: close disputes whose arbitrator missed the deadline."""
    with _single_active(ARBITRATION_SCAN_LOCK) as acquired:
        if not acquired:
            logger.info("Arbitration expiry scan is running elsewhere, skipping")
            return []

        async def _scan():
            from tradeguard.core.expiry.scheduler import ExpiryScheduler

            return await ExpiryScheduler().mark_expired_arbitrations()

        closed = _run_async(_scan())
        logger.info("Arbitration expiry scan closed %d dispute(s)", len(closed))
        return [str(dispute_id) for dispute_id in closed]


@app.task(name="tradeguard.tasks.dispute_tasks.dispatch_dispute_events")
def dispatch_dispute_events():
    async def _dispatch():
        from tradeguard.core.notifications.service import NotificationDispatcher
        from tradeguard.db.session import unit_of_work

        try:
            async with unit_of_work() as db:
                return await NotificationDispatcher().dispatch_pending(db)
        except Exception as e:
            logger.error("Dispute event dispatch failed: %s", e)
            raise

    return _run_async(_dispatch())
