import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.actors import Actor
from tradeguard.common.enums import DisputeEventType, DisputeStatus, MessageKind, ProposalStatus
from tradeguard.common.events import record_event
from tradeguard.common.exceptions import ConflictError, InvalidStateError, PermissionDeniedError
from tradeguard.common.logging import get_logger
from tradeguard.core.disputes.lifecycle import DisputeLifecycleManager
from tradeguard.core.disputes.repository import get_dispute, get_message
from tradeguard.core.disputes.schemas import NegotiationMessageRead
from tradeguard.core.disputes.workflow import normalize_amount, require_text, utcnow
from tradeguard.db.models.dispute import Dispute
from tradeguard.db.models.negotiation import NegotiationMessage

logger = get_logger("negotiation.service")

# Trailing context is still allowed once a dispute has been escalated
TEXT_MESSAGE_STATUSES = (DisputeStatus.NEGOTIATING, DisputeStatus.PENDING_ARBITRATION)


class NegotiationCoordinator:
    """Messages and refund proposals exchanged between the two parties."""

    def __init__(
        self,
        lifecycle: DisputeLifecycleManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lifecycle = lifecycle or DisputeLifecycleManager(clock=clock)
        self.clock = clock

    async def send_text_message(
        self, actor: Actor, dispute_id: uuid.UUID, text: str, db: AsyncSession
    ) -> NegotiationMessageRead:
        text = require_text(text, "text")
        dispute = await get_dispute(db, dispute_id)
        self._require_participant(actor, dispute)
        if dispute.status not in TEXT_MESSAGE_STATUSES:
            raise InvalidStateError(
                f"Messages cannot be sent while dispute is '{DisputeStatus(dispute.status).value}'"
            )

        message = NegotiationMessage(
            dispute_id=dispute_id,
            sender_id=actor.actor_id,
            sender_role=dispute.party_role(actor.actor_id).value,
            kind=MessageKind.TEXT.value,
            text_content=text,
            created_at=self.clock(),
        )
        db.add(message)
        await db.flush()
        await self._record(db, DisputeEventType.MESSAGE_SENT, actor, dispute, message)

        logger.info("Message %s sent on dispute %s by %s", message.id, dispute_id, actor.actor_id)
        return NegotiationMessageRead.model_validate(message)

    async def propose_resolution(
        self,
        actor: Actor,
        dispute_id: uuid.UUID,
        amount: Decimal | str | float,
        note: str | None,
        db: AsyncSession,
    ) -> NegotiationMessageRead:
        refund = normalize_amount(amount, "proposed refund amount")

        # Locking the dispute serialises concurrent proposals on it
        dispute = await get_dispute(db, dispute_id, for_update=True)
        self._require_participant(actor, dispute)
        if dispute.status != DisputeStatus.NEGOTIATING:
            raise InvalidStateError(
                f"Proposals can only be made while negotiating (status '{DisputeStatus(dispute.status).value}')"
            )

        pending = await self._find_proposal(db, dispute_id, ProposalStatus.PENDING)
        if pending:
            logger.warning("Dispute %s already has pending proposal %s", dispute_id, pending.id)
            raise ConflictError("A proposal is already awaiting a response on this dispute")

        proposal = NegotiationMessage(
            dispute_id=dispute_id,
            sender_id=actor.actor_id,
            sender_role=dispute.party_role(actor.actor_id).value,
            kind=MessageKind.PROPOSAL.value,
            text_content=note.strip() if note else None,
            proposed_refund_amount=refund,
            proposal_status=ProposalStatus.PENDING.value,
            created_at=self.clock(),
        )
        db.add(proposal)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError("A proposal is already awaiting a response on this dispute") from e
        await self._record(
            db,
            DisputeEventType.PROPOSED,
            actor,
            dispute,
            proposal,
            proposed_refund_amount=str(refund),
        )

        logger.info(
            "Proposal %s (refund %s) made on dispute %s by %s",
            proposal.id,
            refund,
            dispute_id,
            actor.actor_id,
        )
        return NegotiationMessageRead.model_validate(proposal)

    async def respond_to_proposal(
        self,
        actor: Actor,
        proposal_id: uuid.UUID,
        accept: bool,
        note: str | None,
        db: AsyncSession,
    ) -> NegotiationMessageRead:
        proposal = await get_message(db, proposal_id, for_update=True)
        if proposal.kind != MessageKind.PROPOSAL:
            raise InvalidStateError("Only proposals can be accepted or rejected")

        dispute = await get_dispute(db, proposal.dispute_id, for_update=True)
        self._require_participant(actor, dispute)
        if proposal.sender_id == actor.actor_id:
            raise PermissionDeniedError("You cannot respond to your own proposal")
        if proposal.proposal_status != ProposalStatus.PENDING:
            raise ConflictError(
                f"Proposal has already been {ProposalStatus(proposal.proposal_status).value}"
            )
        if accept and dispute.status != DisputeStatus.NEGOTIATING:
            raise InvalidStateError(
                f"Proposals can only be accepted while negotiating (status '{DisputeStatus(dispute.status).value}')"
            )

        proposal.responder_id = actor.actor_id
        proposal.response_note = note
        proposal.responded_at = self.clock()

        if accept:
            proposal.proposal_status = ProposalStatus.ACCEPTED.value
            await db.flush()
            # Same unit of work: the dispute resolves iff the acceptance commits
            await self.lifecycle.mark_resolved(actor, dispute.id, "negotiation", db)
            logger.info("Proposal %s accepted, dispute %s resolved", proposal_id, dispute.id)
        else:
            proposal.proposal_status = ProposalStatus.REJECTED.value
            await db.flush()
            await self._record(db, DisputeEventType.PROPOSAL_REJECTED, actor, dispute, proposal)
            logger.info("Proposal %s rejected on dispute %s", proposal_id, dispute.id)

        return NegotiationMessageRead.model_validate(proposal)

    async def get_negotiation_history(
        self, dispute_id: uuid.UUID, db: AsyncSession
    ) -> list[NegotiationMessageRead]:
        await get_dispute(db, dispute_id)
        result = await db.execute(
            select(NegotiationMessage)
            .where(
                NegotiationMessage.dispute_id == dispute_id,
                NegotiationMessage.is_deleted.is_(False),
            )
            .order_by(NegotiationMessage.created_at.asc())
        )
        return [NegotiationMessageRead.model_validate(m) for m in result.scalars().all()]

    async def get_pending_proposal(
        self, dispute_id: uuid.UUID, db: AsyncSession
    ) -> NegotiationMessageRead | None:
        proposal = await self._find_proposal(db, dispute_id, ProposalStatus.PENDING)
        return NegotiationMessageRead.model_validate(proposal) if proposal else None

    async def get_accepted_proposal(
        self, dispute_id: uuid.UUID, db: AsyncSession
    ) -> NegotiationMessageRead | None:
        proposal = await self._find_proposal(db, dispute_id, ProposalStatus.ACCEPTED)
        return NegotiationMessageRead.model_validate(proposal) if proposal else None

    async def _find_proposal(
        self, db: AsyncSession, dispute_id: uuid.UUID, status: ProposalStatus
    ) -> NegotiationMessage | None:
        result = await db.execute(
            select(NegotiationMessage)
            .where(
                NegotiationMessage.dispute_id == dispute_id,
                NegotiationMessage.kind == MessageKind.PROPOSAL.value,
                NegotiationMessage.proposal_status == status.value,
                NegotiationMessage.is_deleted.is_(False),
            )
            .order_by(NegotiationMessage.created_at.desc())
        )
        return result.scalars().first()

    async def _record(
        self,
        db: AsyncSession,
        event: DisputeEventType,
        actor: Actor,
        dispute: Dispute,
        message: NegotiationMessage,
        **extra: str,
    ) -> None:
        # One fact per message; the recipient is whoever did not act
        await record_event(
            db,
            dispute.id,
            event,
            actor.actor_id,
            self.clock(),
            payload={
                "message_id": str(message.id),
                "recipient_id": str(dispute.counterpart_of(actor.actor_id)),
                **extra,
            },
            discriminator=str(message.id),
        )

    @staticmethod
    def _require_participant(actor: Actor, dispute: Dispute) -> None:
        if not dispute.is_participant(actor.actor_id):
            logger.warning("User %s is not a participant of dispute %s", actor.actor_id, dispute.id)
            raise PermissionDeniedError("You are not a participant of this dispute")
