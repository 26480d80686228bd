"""Delivery of recorded dispute facts to the notifier."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.logging import get_logger
from tradeguard.config import settings
from tradeguard.core.disputes.workflow import utcnow
from tradeguard.db.models.event import DisputeEvent
from tradeguard.integrations.notifier import DisputeFact, DisputeNotifier, Notifier

logger = get_logger("notifications.service")


def to_fact(event: DisputeEvent) -> DisputeFact:
    return DisputeFact(
        event_id=event.id,
        dispute_id=event.dispute_id,
        event=event.event,
        actor_id=event.actor_id,
        occurred_at=event.occurred_at,
        dedupe_key=event.dedupe_key,
        payload=event.payload or {},
    )


class NotificationDispatcher:
    """Drains the dispute event outbox.

    Delivery is at-least-once: a crash between the notifier call and the
    commit re-sends the fact on the next run, and the receiver drops the
    duplicate by ``dedupe_key``.

    A failed fact is retried with exponential backoff so it cannot hold up
    newer facts, and is parked (``failed_at``) after ``max_attempts`` tries.
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
        retry_base: timedelta | None = None,
        retry_max: timedelta | None = None,
    ):
        self.notifier = notifier or DisputeNotifier()
        self.clock = clock
        self.max_attempts = max_attempts or settings.EVENT_MAX_ATTEMPTS
        self.retry_base = retry_base or timedelta(seconds=settings.EVENT_RETRY_BASE_SECONDS)
        self.retry_max = retry_max or timedelta(seconds=settings.EVENT_RETRY_MAX_SECONDS)

    def retry_delay(self, attempts: int) -> timedelta:
        return min(self.retry_base * (2 ** max(attempts - 1, 0)), self.retry_max)

    async def dispatch_pending(self, db: AsyncSession, limit: int | None = None) -> int:
        limit = limit or settings.EVENT_DISPATCH_BATCH_SIZE
        now = self.clock()
        result = await db.execute(
            select(DisputeEvent)
            .where(
                DisputeEvent.delivered_at.is_(None),
                DisputeEvent.failed_at.is_(None),
                or_(DisputeEvent.next_attempt_at.is_(None), DisputeEvent.next_attempt_at <= now),
            )
            .order_by(DisputeEvent.occurred_at.asc(), DisputeEvent.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        events = result.scalars().all()

        delivered = 0
        for event in events:
            event.attempts = (event.attempts or 0) + 1
            try:
                await self.notifier.notify(to_fact(event))
            except Exception as e:
                self._defer(event, now, e)
                continue
            event.delivered_at = self.clock()
            event.next_attempt_at = None
            event.last_error = None
            delivered += 1

        await db.flush()
        if events:
            logger.info("Dispatched %d of %d pending dispute event(s)", delivered, len(events))
        return delivered

    def _defer(self, event: DisputeEvent, now: datetime, error: Exception) -> None:
        event.last_error = str(error)[:1000]
        if event.attempts >= self.max_attempts:
            event.failed_at = now
            event.next_attempt_at = None
            logger.error(
                "Giving up on %s for dispute %s after %d attempts: %s",
                event.dedupe_key,
                event.dispute_id,
                event.attempts,
                error,
            )
            return
        event.next_attempt_at = now + self.retry_delay(event.attempts)
        logger.warning(
            "Delivery of %s for dispute %s failed (attempt %d), retrying at %s: %s",
            event.dedupe_key,
            event.dispute_id,
            event.attempts,
            event.next_attempt_at.isoformat(),
            error,
        )
