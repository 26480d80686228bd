import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from tradeguard.common.enums import DisputeEventType, DisputeStatus, MessageKind, PartyRole, ProposalStatus
from tradeguard.common.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tradeguard.db.models.event import DisputeEvent
from tradeguard.db.models.negotiation import NegotiationMessage


async def _pending_count(db, dispute_id):
    result = await db.execute(
        select(func.count(NegotiationMessage.id)).where(
            NegotiationMessage.dispute_id == dispute_id,
            NegotiationMessage.kind == MessageKind.PROPOSAL.value,
            NegotiationMessage.proposal_status == ProposalStatus.PENDING.value,
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_send_text_message(negotiation, dispute, seller, db_session):
    message = await negotiation.send_text_message(seller, dispute.id, "  Please return it first  ", db_session)
    assert message.kind == MessageKind.TEXT
    assert message.text_content == "Please return it first"
    assert message.sender_role == PartyRole.COUNTERPARTY
    assert message.proposal_status is None


@pytest.mark.asyncio
async def test_text_message_validation_and_access(negotiation, dispute, outsider, buyer, db_session):
    with pytest.raises(ValidationError):
        await negotiation.send_text_message(buyer, dispute.id, "   ", db_session)
    with pytest.raises(PermissionDeniedError):
        await negotiation.send_text_message(outsider, dispute.id, "hello", db_session)
    with pytest.raises(NotFoundError):
        await negotiation.send_text_message(buyer, uuid.uuid4(), "hello", db_session)


@pytest.mark.asyncio
async def test_text_messages_allowed_while_pending_arbitration(negotiation, lifecycle, dispute, buyer, db_session):
    await lifecycle.escalate_to_arbitration(buyer, dispute.id, db_session)
    message = await negotiation.send_text_message(buyer, dispute.id, "Adding context for the arbitrator", db_session)
    assert message.dispute_id == dispute.id


@pytest.mark.asyncio
async def test_text_messages_rejected_once_closed(negotiation, lifecycle, dispute, buyer, db_session):
    await lifecycle.close_dispute(buyer, dispute.id, "Withdrawn", db_session)
    with pytest.raises(InvalidStateError):
        await negotiation.send_text_message(buyer, dispute.id, "Anyone there?", db_session)


@pytest.mark.asyncio
async def test_reject_then_accept_resolves_dispute(negotiation, lifecycle, dispute, buyer, seller, clock, db_session):
    first = await negotiation.propose_resolution(buyer, dispute.id, Decimal("50.00"), "Half back", db_session)
    assert first.proposal_status == ProposalStatus.PENDING
    assert first.proposed_refund_amount == Decimal("50.00")

    clock.advance(hours=1)
    rejected = await negotiation.respond_to_proposal(seller, first.id, False, "Too much", db_session)
    assert rejected.proposal_status == ProposalStatus.REJECTED
    assert rejected.responder_id == seller.actor_id
    assert (await lifecycle.get_dispute(buyer, dispute.id, db_session)).status == DisputeStatus.NEGOTIATING

    clock.advance(hours=1)
    second = await negotiation.propose_resolution(buyer, dispute.id, "30.00", None, db_session)
    clock.advance(hours=1)
    accepted = await negotiation.respond_to_proposal(seller, second.id, True, "Deal", db_session)
    assert accepted.proposal_status == ProposalStatus.ACCEPTED

    resolved = await lifecycle.get_dispute(buyer, dispute.id, db_session)
    assert resolved.status == DisputeStatus.RESOLVED
    assert resolved.resolved_at is not None

    final = await negotiation.get_accepted_proposal(dispute.id, db_session)
    assert final.id == second.id
    assert final.proposed_refund_amount == Decimal("30.00")
    assert await negotiation.get_pending_proposal(dispute.id, db_session) is None

    events = (
        await db_session.execute(select(DisputeEvent).where(DisputeEvent.dispute_id == dispute.id))
    ).scalars().all()
    resolved_events = [e for e in events if e.event == DisputeEventType.RESOLVED.value]
    assert len(resolved_events) == 1
    assert resolved_events[0].payload == {"via": "negotiation"}


@pytest.mark.asyncio
async def test_only_one_pending_proposal(negotiation, dispute, buyer, seller, db_session):
    await negotiation.propose_resolution(buyer, dispute.id, "40", None, db_session)
    with pytest.raises(ConflictError):
        await negotiation.propose_resolution(seller, dispute.id, "20", None, db_session)
    assert await _pending_count(db_session, dispute.id) == 1


@pytest.mark.asyncio
async def test_pending_proposal_index_backs_up_the_check(negotiation, dispute, buyer, db_session, monkeypatch):
    await negotiation.propose_resolution(buyer, dispute.id, "40", None, db_session)

    async def nothing_pending(db, dispute_id, status):
        return None

    monkeypatch.setattr(negotiation, "_find_proposal", nothing_pending)
    with pytest.raises(ConflictError):
        await negotiation.propose_resolution(buyer, dispute.id, "35", None, db_session)


@pytest.mark.asyncio
async def test_no_proposals_after_acceptance(negotiation, dispute, buyer, seller, db_session):
    proposal = await negotiation.propose_resolution(seller, dispute.id, "15", None, db_session)
    await negotiation.respond_to_proposal(buyer, proposal.id, True, None, db_session)
    with pytest.raises(InvalidStateError):
        await negotiation.propose_resolution(buyer, dispute.id, "20", None, db_session)


@pytest.mark.asyncio
async def test_proposal_requires_negotiating(negotiation, lifecycle, dispute, buyer, db_session):
    await lifecycle.escalate_to_arbitration(buyer, dispute.id, db_session)
    with pytest.raises(InvalidStateError):
        await negotiation.propose_resolution(buyer, dispute.id, "10", None, db_session)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["-5", "12.345", "lots"])
async def test_proposal_amount_validation(negotiation, dispute, buyer, amount, db_session):
    with pytest.raises(ValidationError):
        await negotiation.propose_resolution(buyer, dispute.id, amount, None, db_session)


@pytest.mark.asyncio
async def test_zero_refund_is_allowed(negotiation, dispute, seller, db_session):
    proposal = await negotiation.propose_resolution(seller, dispute.id, "0", "No refund, keep it", db_session)
    assert proposal.proposed_refund_amount == Decimal("0.00")


@pytest.mark.asyncio
async def test_outsider_cannot_propose(negotiation, dispute, outsider, db_session):
    with pytest.raises(PermissionDeniedError):
        await negotiation.propose_resolution(outsider, dispute.id, "10", None, db_session)


@pytest.mark.asyncio
async def test_proposer_cannot_respond_to_own_proposal(negotiation, dispute, buyer, db_session):
    proposal = await negotiation.propose_resolution(buyer, dispute.id, "10", None, db_session)
    with pytest.raises(PermissionDeniedError):
        await negotiation.respond_to_proposal(buyer, proposal.id, True, None, db_session)


@pytest.mark.asyncio
async def test_outsider_cannot_respond(negotiation, dispute, buyer, outsider, db_session):
    proposal = await negotiation.propose_resolution(buyer, dispute.id, "10", None, db_session)
    with pytest.raises(PermissionDeniedError):
        await negotiation.respond_to_proposal(outsider, proposal.id, True, None, db_session)


@pytest.mark.asyncio
async def test_responding_twice_conflicts(negotiation, dispute, buyer, seller, db_session):
    proposal = await negotiation.propose_resolution(buyer, dispute.id, "10", None, db_session)
    await negotiation.respond_to_proposal(seller, proposal.id, False, None, db_session)
    with pytest.raises(ConflictError):
        await negotiation.respond_to_proposal(seller, proposal.id, True, None, db_session)


@pytest.mark.asyncio
async def test_unknown_proposal(negotiation, seller, db_session):
    with pytest.raises(NotFoundError):
        await negotiation.respond_to_proposal(seller, uuid.uuid4(), True, None, db_session)


@pytest.mark.asyncio
async def test_text_message_cannot_be_accepted(negotiation, dispute, buyer, seller, db_session):
    message = await negotiation.send_text_message(buyer, dispute.id, "hi", db_session)
    with pytest.raises(InvalidStateError):
        await negotiation.respond_to_proposal(seller, message.id, True, None, db_session)


@pytest.mark.asyncio
async def test_cannot_accept_after_escalation(negotiation, lifecycle, dispute, buyer, seller, db_session):
    proposal = await negotiation.propose_resolution(buyer, dispute.id, "10", None, db_session)
    await lifecycle.escalate_to_arbitration(seller, dispute.id, db_session)
    with pytest.raises(InvalidStateError):
        await negotiation.respond_to_proposal(seller, proposal.id, True, None, db_session)
    assert (await negotiation.get_pending_proposal(dispute.id, db_session)).id == proposal.id


@pytest.mark.asyncio
async def test_history_is_chronological(negotiation, dispute, buyer, seller, clock, db_session):
    await negotiation.send_text_message(buyer, dispute.id, "first", db_session)
    clock.advance(minutes=5)
    await negotiation.propose_resolution(seller, dispute.id, "12.50", "second", db_session)
    clock.advance(minutes=5)
    await negotiation.send_text_message(buyer, dispute.id, "third", db_session)

    history = await negotiation.get_negotiation_history(dispute.id, db_session)
    assert [m.text_content for m in history] == ["first", "second", "third"]
    assert [m.kind for m in history] == [MessageKind.TEXT, MessageKind.PROPOSAL, MessageKind.TEXT]
