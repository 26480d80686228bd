"""Deadline enforcement for disputes nobody is moving forward.

Candidates are selected by comparing deadlines in SQL, then each one is
re-checked and transitioned in its own unit of work. A failure on one dispute
is logged and left for the next scan; it never aborts the rest of the batch.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy import Select, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeguard.common.actors import SYSTEM_ACTOR
from tradeguard.common.enums import DisputeStatus
from tradeguard.common.exceptions import DisputeEngineError
from tradeguard.common.logging import get_logger
from tradeguard.core.disputes.lifecycle import DisputeLifecycleManager
from tradeguard.core.disputes.repository import find_arbitration_for_dispute, get_dispute
from tradeguard.core.disputes.workflow import ARBITRATION_TIMEOUT_REASON, utcnow
from tradeguard.db.models.arbitration import Arbitration
from tradeguard.db.models.dispute import Dispute
from tradeguard.db.session import async_session_factory, unit_of_work

logger = get_logger("expiry.scheduler")


class ExpiryScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        lifecycle: DisputeLifecycleManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory or async_session_factory
        self.clock = clock or (lifecycle.clock if lifecycle else utcnow)
        self.lifecycle = lifecycle or DisputeLifecycleManager(clock=self.clock)

    async def mark_expired_negotiations(self) -> list[uuid.UUID]:
        """Escalate every negotiating dispute whose negotiation deadline has passed."""
        now = self.clock()
        query = select(Dispute.id).where(
            Dispute.status == DisputeStatus.NEGOTIATING.value,
            Dispute.negotiation_deadline < now,
            Dispute.is_deleted.is_(False),
        )

        async def escalate(dispute_id: uuid.UUID, db: AsyncSession) -> bool:
            dispute = await get_dispute(db, dispute_id, for_update=True)
            if dispute.status != DisputeStatus.NEGOTIATING:
                return False
            await self.lifecycle.escalate_to_arbitration(SYSTEM_ACTOR, dispute_id, db)
            return True

        escalated = await self._sweep("negotiation", query, escalate)
        if escalated:
            logger.info("Escalated %d dispute(s) with expired negotiations", len(escalated))
        return escalated

    async def mark_expired_arbitrations(self) -> list[uuid.UUID]:
        """Close every arbitrating dispute whose arbitrator missed the deadline."""
        now = self.clock()
        query = select(Dispute.id).where(
            Dispute.status == DisputeStatus.ARBITRATING.value,
            Dispute.arbitration_deadline < now,
            Dispute.is_deleted.is_(False),
            ~exists().where(Arbitration.dispute_id == Dispute.id),
        )

        async def close(dispute_id: uuid.UUID, db: AsyncSession) -> bool:
            dispute = await get_dispute(db, dispute_id, for_update=True)
            if dispute.status != DisputeStatus.ARBITRATING:
                return False
            if await find_arbitration_for_dispute(db, dispute_id):
                return False
            await self.lifecycle.close_dispute(SYSTEM_ACTOR, dispute_id, ARBITRATION_TIMEOUT_REASON, db)
            return True

        closed = await self._sweep("arbitration", query, close)
        if closed:
            logger.info("Closed %d dispute(s) with expired arbitrations", len(closed))
        return closed

    async def _sweep(
        self,
        label: str,
        query: Select,
        transition: Callable[[uuid.UUID, AsyncSession], Awaitable[bool]],
    ) -> list[uuid.UUID]:
        async with self.session_factory() as db:
            candidates = list((await db.execute(query)).scalars().all())
        logger.debug("Found %d expired %s candidate(s)", len(candidates), label)

        transitioned: list[uuid.UUID] = []
        for dispute_id in candidates:
            try:
                async with unit_of_work(self.session_factory) as db:
                    changed = await transition(dispute_id, db)
            except DisputeEngineError as e:
                logger.warning("Skipping expired %s on dispute %s: %s", label, dispute_id, e.detail)
                continue
            except SQLAlchemyError:
                logger.exception("Database error handling expired %s on dispute %s", label, dispute_id)
                continue

            if changed:
                transitioned.append(dispute_id)
            else:
                logger.debug("Dispute %s moved on before its %s expired", dispute_id, label)
        return transitioned
