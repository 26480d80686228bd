import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.actors import Actor
from tradeguard.common.enums import DisputeEventType, DisputeStatus, DisputeType, OrderRole
from tradeguard.common.events import record_event
from tradeguard.common.exceptions import ConflictError, InvalidStateError, PermissionDeniedError, ValidationError
from tradeguard.common.logging import get_logger
from tradeguard.common.pagination import Page, PageParams, paginate
from tradeguard.config import settings
from tradeguard.core.disputes.repository import (
    find_arbitration_for_dispute,
    find_open_dispute_for_order,
    get_dispute,
)
from tradeguard.core.disputes.schemas import (
    ArbitrationRead,
    DisputeDetail,
    DisputeFilter,
    DisputeRead,
    EvidenceRead,
    EvidenceSummary,
    NegotiationMessageRead,
)
from tradeguard.core.disputes.workflow import (
    arbitration_deadline,
    assert_transition,
    generate_dispute_code,
    negotiation_deadline,
    require_text,
    utcnow,
)
from tradeguard.db.models.dispute import Dispute
from tradeguard.db.models.evidence import Evidence
from tradeguard.db.models.negotiation import NegotiationMessage
from tradeguard.integrations.orders import OrderClient, OrderDirectory

logger = get_logger("disputes.lifecycle")


class DisputeLifecycleManager:
    """Owns the Dispute record and every change to its status.

    Other coordinators ask this class for transitions (``mark_resolved``,
    ``begin_arbitration``) instead of writing to the dispute themselves.
    Each transition locks the dispute row, re-checks the status precondition
    and records a notification fact in the caller's unit of work.
    """

    def __init__(
        self,
        orders: OrderDirectory | None = None,
        negotiation_window: timedelta | None = None,
        arbitration_window: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.orders = orders or OrderClient()
        self.negotiation_window = negotiation_window or settings.negotiation_window
        self.arbitration_window = arbitration_window or settings.arbitration_window
        self.clock = clock

    # ------------------------------------------------------------------
    # Submission & queries
    # ------------------------------------------------------------------

    async def submit_dispute(
        self,
        actor: Actor,
        order_id: uuid.UUID,
        dispute_type: DisputeType | str,
        reason: str,
        db: AsyncSession,
    ) -> DisputeRead:
        reason = require_text(reason, "reason")
        try:
            dtype = DisputeType(dispute_type)
        except ValueError:
            raise ValidationError(f"Unknown dispute type: {dispute_type}")

        participants = await self.orders.get_order_participants(order_id)
        if actor.actor_id == participants.buyer_id:
            initiator_role, counterparty_id = OrderRole.BUYER, participants.seller_id
        elif actor.actor_id == participants.seller_id:
            initiator_role, counterparty_id = OrderRole.SELLER, participants.buyer_id
        else:
            logger.warning("User %s is not a participant of order %s", actor.actor_id, order_id)
            raise PermissionDeniedError("Only the buyer or seller of an order can open a dispute")

        existing = await find_open_dispute_for_order(db, order_id)
        if existing:
            logger.warning("Order %s already has open dispute %s", order_id, existing.id)
            raise ConflictError(f"Order '{order_id}' already has an open dispute")

        now = self.clock()
        dispute = Dispute(
            dispute_code=generate_dispute_code(now),
            order_id=order_id,
            initiator_id=actor.actor_id,
            initiator_role=initiator_role.value,
            counterparty_id=counterparty_id,
            dispute_type=dtype.value,
            reason=reason,
            status=DisputeStatus.NEGOTIATING.value,
            negotiation_deadline=negotiation_deadline(now, self.negotiation_window),
            created_at=now,
        )
        db.add(dispute)
        try:
            await db.flush()
        except IntegrityError as e:
            # Lost the race against a concurrent submission for the same order
            raise ConflictError(f"Order '{order_id}' already has an open dispute") from e

        await record_event(
            db,
            dispute.id,
            DisputeEventType.SUBMITTED,
            actor.audit_id,
            now,
            payload={
                "order_id": str(order_id),
                "counterparty_id": str(counterparty_id),
                "dispute_type": dtype.value,
            },
        )
        logger.info(
            "Dispute %s (%s) submitted for order %s by %s",
            dispute.id,
            dispute.dispute_code,
            order_id,
            actor.actor_id,
        )
        return DisputeRead.model_validate(dispute)

    async def get_dispute(self, actor: Actor, dispute_id: uuid.UUID, db: AsyncSession) -> DisputeRead:
        dispute = await get_dispute(db, dispute_id)
        self._require_viewer(actor, dispute)
        return DisputeRead.model_validate(dispute)

    async def get_dispute_detail(
        self, actor: Actor, dispute_id: uuid.UUID, db: AsyncSession
    ) -> DisputeDetail:
        dispute = await get_dispute(db, dispute_id)
        self._require_viewer(actor, dispute)

        evidence_rows = (
            await db.execute(
                select(Evidence)
                .where(Evidence.dispute_id == dispute_id, Evidence.is_deleted.is_(False))
                .order_by(Evidence.created_at.asc())
            )
        ).scalars().all()
        messages = (
            await db.execute(
                select(NegotiationMessage)
                .where(
                    NegotiationMessage.dispute_id == dispute_id,
                    NegotiationMessage.is_deleted.is_(False),
                )
                .order_by(NegotiationMessage.created_at.asc())
            )
        ).scalars().all()
        arbitration = await find_arbitration_for_dispute(db, dispute_id)

        return DisputeDetail(
            dispute=DisputeRead.model_validate(dispute),
            evidence=[EvidenceRead.model_validate(e) for e in evidence_rows],
            evidence_summary=EvidenceSummary.from_rows(dispute_id, list(evidence_rows)),
            negotiation_history=[NegotiationMessageRead.model_validate(m) for m in messages],
            arbitration=ArbitrationRead.model_validate(arbitration) if arbitration else None,
        )

    async def list_disputes(
        self,
        actor: Actor,
        filters: DisputeFilter | None,
        paging: PageParams | None,
        db: AsyncSession,
    ) -> Page[DisputeRead]:
        filters = filters or DisputeFilter()
        paging = paging or PageParams()

        query = select(Dispute).where(Dispute.is_deleted.is_(False))
        if not (actor.is_admin or actor.is_system):
            query = query.where(
                or_(
                    Dispute.initiator_id == actor.actor_id,
                    Dispute.counterparty_id == actor.actor_id,
                    Dispute.arbitrator_id == actor.actor_id,
                )
            )
        if filters.participant_id:
            query = query.where(
                or_(
                    Dispute.initiator_id == filters.participant_id,
                    Dispute.counterparty_id == filters.participant_id,
                )
            )
        if filters.arbitrator_id:
            query = query.where(Dispute.arbitrator_id == filters.arbitrator_id)
        if filters.status:
            query = query.where(Dispute.status == filters.status.value)
        if filters.order_id:
            query = query.where(Dispute.order_id == filters.order_id)

        items, total = await paginate(db, query, paging, sort_column=Dispute.created_at)
        return Page[DisputeRead].build([DisputeRead.model_validate(d) for d in items], total, paging)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def escalate_to_arbitration(
        self, actor: Actor, dispute_id: uuid.UUID, db: AsyncSession
    ) -> DisputeRead:
        dispute = await get_dispute(db, dispute_id, for_update=True)
        if not (actor.is_admin or actor.is_system or dispute.is_participant(actor.actor_id)):
            raise PermissionDeniedError("Only dispute participants can escalate a dispute")

        if dispute.status == DisputeStatus.PENDING_ARBITRATION:
            logger.info("Dispute %s already pending arbitration, nothing to do", dispute_id)
            return DisputeRead.model_validate(dispute)
        if dispute.status != DisputeStatus.NEGOTIATING:
            raise InvalidStateError(
                f"Dispute cannot be escalated from status '{DisputeStatus(dispute.status).value}'"
            )

        now = self.clock()
        dispute.status = DisputeStatus.PENDING_ARBITRATION.value
        dispute.arbitration_deadline = arbitration_deadline(now, self.arbitration_window)
        await db.flush()

        await record_event(
            db,
            dispute.id,
            DisputeEventType.ESCALATED,
            actor.audit_id,
            now,
            payload={"trigger": "timeout" if actor.is_system else "manual"},
        )
        logger.info(
            "Dispute %s escalated to arbitration (deadline %s)",
            dispute_id,
            dispute.arbitration_deadline,
        )
        return DisputeRead.model_validate(dispute)

    async def close_dispute(
        self, actor: Actor, dispute_id: uuid.UUID, reason: str, db: AsyncSession
    ) -> DisputeRead:
        reason = require_text(reason, "reason")
        dispute = await get_dispute(db, dispute_id, for_update=True)
        if not (actor.is_admin or actor.is_system or actor.actor_id == dispute.initiator_id):
            raise PermissionDeniedError("Only the initiator or an administrator can close a dispute")

        if dispute.status == DisputeStatus.CLOSED:
            logger.info("Dispute %s already closed, nothing to do", dispute_id)
            return DisputeRead.model_validate(dispute)
        assert_transition(dispute.status, DisputeStatus.CLOSED)

        now = self.clock()
        old_status = dispute.status
        dispute.status = DisputeStatus.CLOSED.value
        dispute.close_reason = reason
        dispute.closed_at = now
        await db.flush()

        await record_event(
            db,
            dispute.id,
            DisputeEventType.CLOSED,
            actor.audit_id,
            now,
            payload={"from": DisputeStatus(old_status).value, "reason": reason},
        )
        logger.info("Dispute %s closed from %s: %s", dispute_id, old_status, reason)
        return DisputeRead.model_validate(dispute)

    async def mark_resolved(
        self, actor: Actor, dispute_id: uuid.UUID, via: str, db: AsyncSession
    ) -> DisputeRead:
        """Resolve a dispute on behalf of the negotiation or arbitration flow."""
        dispute = await get_dispute(db, dispute_id, for_update=True)
        assert_transition(dispute.status, DisputeStatus.RESOLVED)

        now = self.clock()
        dispute.status = DisputeStatus.RESOLVED.value
        dispute.resolved_at = now
        await db.flush()

        await record_event(
            db, dispute.id, DisputeEventType.RESOLVED, actor.audit_id, now, payload={"via": via}
        )
        logger.info("Dispute %s resolved via %s", dispute_id, via)
        return DisputeRead.model_validate(dispute)

    async def begin_arbitration(
        self, actor: Actor, dispute_id: uuid.UUID, arbitrator_id: uuid.UUID, db: AsyncSession
    ) -> DisputeRead:
        """Put a dispute in front of an arbitrator (first assignment or reassignment)."""
        dispute = await get_dispute(db, dispute_id, for_update=True)
        if dispute.status not in (DisputeStatus.PENDING_ARBITRATION, DisputeStatus.ARBITRATING):
            raise InvalidStateError(
                f"Cannot assign an arbitrator while dispute is '{DisputeStatus(dispute.status).value}'"
            )
        if dispute.is_participant(arbitrator_id):
            raise ValidationError("A dispute participant cannot arbitrate their own dispute")

        if dispute.status == DisputeStatus.ARBITRATING and dispute.arbitrator_id == arbitrator_id:
            logger.info("Arbitrator %s already assigned to dispute %s", arbitrator_id, dispute_id)
            return DisputeRead.model_validate(dispute)

        now = self.clock()
        previous = dispute.arbitrator_id
        dispute.status = DisputeStatus.ARBITRATING.value
        dispute.arbitrator_id = arbitrator_id
        dispute.assigned_at = now
        if dispute.arbitration_deadline is None:
            dispute.arbitration_deadline = arbitration_deadline(now, self.arbitration_window)
        await db.flush()

        await record_event(
            db,
            dispute.id,
            DisputeEventType.ARBITRATOR_ASSIGNED,
            actor.audit_id,
            now,
            payload={
                "arbitrator_id": str(arbitrator_id),
                "previous_arbitrator_id": str(previous) if previous else None,
            },
            discriminator=uuid.uuid4().hex,
        )
        logger.info(
            "Arbitrator %s assigned to dispute %s (previous: %s)", arbitrator_id, dispute_id, previous
        )
        return DisputeRead.model_validate(dispute)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_viewer(actor: Actor, dispute: Dispute) -> None:
        if actor.is_admin or actor.is_system:
            return
        if dispute.is_participant(actor.actor_id) or dispute.arbitrator_id == actor.actor_id:
            return
        raise PermissionDeniedError("You do not have access to this dispute")
