import uuid
from collections.abc import Callable, Iterable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.actors import Actor, require_role
from tradeguard.common.enums import ActorRole, ArbitrationResult, DisputeStatus
from tradeguard.common.exceptions import (
    ConflictError,
    DisputeEngineError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)
from tradeguard.common.logging import get_logger
from tradeguard.core.disputes.lifecycle import DisputeLifecycleManager
from tradeguard.core.disputes.repository import (
    find_arbitration_for_dispute,
    get_arbitration,
    get_dispute,
)
from tradeguard.core.disputes.schemas import ArbitrationRead, BatchAssignResult, DisputeRead
from tradeguard.core.disputes.workflow import normalize_amount, require_text, utcnow
from tradeguard.db.models.arbitration import Arbitration

logger = get_logger("arbitration.service")


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def validate_compensation(result: ArbitrationResult, amount: Decimal) -> None:
    if result == ArbitrationResult.PARTIAL and amount <= 0:
        raise ValidationError("A partial decision requires a compensation amount greater than zero")
    if result == ArbitrationResult.DISMISS and amount != 0:
        raise ValidationError("A dismissed dispute cannot carry compensation")


class ArbitrationCoordinator:
    def __init__(
        self,
        lifecycle: DisputeLifecycleManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lifecycle = lifecycle or DisputeLifecycleManager(clock=clock)
        self.clock = clock

    async def assign_arbitrator(
        self, actor: Actor, dispute_id: uuid.UUID, arbitrator_id: uuid.UUID, db: AsyncSession
    ) -> DisputeRead:
        """Assign (or reassign) an arbitrator.

        Admins may assign anyone. An arbitrator may only claim a dispute for
        themselves, and cannot take over one another arbitrator already holds.
        """
        claiming = actor.has_role(ActorRole.ARBITRATOR) and actor.actor_id == arbitrator_id
        if not (actor.is_admin or claiming):
            raise PermissionDeniedError("Only an administrator can assign another arbitrator")

        if not actor.is_admin:
            dispute = await get_dispute(db, dispute_id, for_update=True)
            if dispute.status == DisputeStatus.ARBITRATING and dispute.arbitrator_id != arbitrator_id:
                raise ConflictError("Dispute has already been claimed by another arbitrator")

        return await self.lifecycle.begin_arbitration(actor, dispute_id, arbitrator_id, db)

    async def batch_assign(
        self,
        actor: Actor,
        dispute_ids: Iterable[uuid.UUID],
        arbitrator_id: uuid.UUID,
        db: AsyncSession,
    ) -> BatchAssignResult:
        require_role(actor, ActorRole.ADMIN)

        assigned: list[uuid.UUID] = []
        failed: dict[uuid.UUID, str] = {}
        for dispute_id in dict.fromkeys(dispute_ids):
            try:
                await self.lifecycle.begin_arbitration(actor, dispute_id, arbitrator_id, db)
            except DisputeEngineError as e:
                # Guards raise before mutating, so a failure leaves nothing to undo
                logger.warning("Batch assignment of dispute %s failed: %s", dispute_id, e.detail)
                failed[dispute_id] = e.detail
            else:
                assigned.append(dispute_id)

        logger.info(
            "Batch assigned %d dispute(s) to %s, %d failed", len(assigned), arbitrator_id, len(failed)
        )
        return BatchAssignResult(assigned=assigned, failed=failed)

    async def submit_arbitration(
        self,
        actor: Actor,
        dispute_id: uuid.UUID,
        result: ArbitrationResult | str,
        compensation_amount: Decimal | str | float,
        reason: str,
        db: AsyncSession,
        *,
        initiator_evidence_analysis: str | None = None,
        counterparty_evidence_analysis: str | None = None,
    ) -> ArbitrationRead:
        """Record the arbitrator's decision and resolve the dispute.

        The two evidence analyses are the arbitrator's free-text assessment of
        what each side submitted; both are optional.
        """
        try:
            decision = ArbitrationResult(result)
        except ValueError:
            raise ValidationError(f"Unknown arbitration result: {result}")
        amount = normalize_amount(compensation_amount, "compensation amount")
        validate_compensation(decision, amount)
        reason = require_text(reason, "reason")

        dispute = await get_dispute(db, dispute_id, for_update=True)
        if await find_arbitration_for_dispute(db, dispute_id):
            logger.warning("Dispute %s already has an arbitration decision", dispute_id)
            raise ConflictError("An arbitration decision has already been submitted for this dispute")
        if dispute.status != DisputeStatus.ARBITRATING:
            raise InvalidStateError(
                f"Decisions can only be submitted while arbitrating (status '{DisputeStatus(dispute.status).value}')"
            )
        if dispute.arbitrator_id != actor.actor_id:
            logger.warning(
                "User %s is not the arbitrator of dispute %s (assigned: %s)",
                actor.actor_id,
                dispute_id,
                dispute.arbitrator_id,
            )
            raise PermissionDeniedError("Only the assigned arbitrator can submit a decision")

        now = self.clock()
        arbitration = Arbitration(
            dispute_id=dispute_id,
            arbitrator_id=actor.actor_id,
            result=decision.value,
            compensation_amount=amount,
            reason=reason,
            initiator_evidence_analysis=_optional_text(initiator_evidence_analysis),
            counterparty_evidence_analysis=_optional_text(counterparty_evidence_analysis),
            executed=False,
            submitted_at=now,
            created_at=now,
        )
        db.add(arbitration)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError("An arbitration decision has already been submitted for this dispute") from e

        await self.lifecycle.mark_resolved(actor, dispute_id, "arbitration", db)
        logger.info(
            "Arbitration %s submitted for dispute %s: %s (compensation %s)",
            arbitration.id,
            dispute_id,
            decision.value,
            amount,
        )
        return ArbitrationRead.model_validate(arbitration)

    async def mark_executed(
        self, actor: Actor, arbitration_id: uuid.UUID, execution_note: str | None, db: AsyncSession
    ) -> ArbitrationRead:
        """Record that the compensation was paid out by the payment subsystem."""
        require_role(actor, ActorRole.ADMIN, ActorRole.SYSTEM)

        arbitration = await get_arbitration(db, arbitration_id, for_update=True)
        if arbitration.executed:
            logger.info("Arbitration %s already executed, nothing to do", arbitration_id)
            return ArbitrationRead.model_validate(arbitration)

        arbitration.executed = True
        arbitration.execution_note = execution_note
        arbitration.executed_at = self.clock()
        await db.flush()

        logger.info("Arbitration %s marked executed by %s", arbitration_id, actor.actor_id)
        return ArbitrationRead.model_validate(arbitration)

    async def get_pending_executions(self, db: AsyncSession) -> list[ArbitrationRead]:
        result = await db.execute(
            select(Arbitration)
            .where(
                Arbitration.executed.is_(False),
                Arbitration.compensation_amount > 0,
                Arbitration.is_deleted.is_(False),
            )
            .order_by(Arbitration.submitted_at.asc())
        )
        return [ArbitrationRead.model_validate(a) for a in result.scalars().all()]

    async def get_arbitrator_cases(
        self, arbitrator_id: uuid.UUID, db: AsyncSession
    ) -> list[ArbitrationRead]:
        result = await db.execute(
            select(Arbitration)
            .where(Arbitration.arbitrator_id == arbitrator_id, Arbitration.is_deleted.is_(False))
            .order_by(Arbitration.submitted_at.desc())
        )
        return [ArbitrationRead.model_validate(a) for a in result.scalars().all()]

    async def get_arbitration(self, dispute_id: uuid.UUID, db: AsyncSession) -> ArbitrationRead | None:
        arbitration = await find_arbitration_for_dispute(db, dispute_id)
        return ArbitrationRead.model_validate(arbitration) if arbitration else None
