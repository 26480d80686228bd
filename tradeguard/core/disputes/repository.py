"""Keyed-by-id reads shared by the dispute coordinators.

Locked reads (``for_update=True``) re-read the row inside the caller's
transaction, so a status precondition is checked against committed state
rather than whatever happens to be cached in the session.
"""

import uuid

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.exceptions import NotFoundError
from tradeguard.core.disputes.workflow import OPEN_STATUSES
from tradeguard.db.base import BaseModel
from tradeguard.db.models.arbitration import Arbitration
from tradeguard.db.models.dispute import Dispute
from tradeguard.db.models.evidence import Evidence
from tradeguard.db.models.negotiation import NegotiationMessage


def _locked(query: Select, for_update: bool) -> Select:
    if for_update:
        return query.with_for_update().execution_options(populate_existing=True)
    return query


async def _get(
    db: AsyncSession, model: type[BaseModel], label: str, entity_id: uuid.UUID, for_update: bool
):
    query = select(model).where(model.id == entity_id, model.is_deleted.is_(False))
    result = await db.execute(_locked(query, for_update))
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(label, str(entity_id))
    return row


async def get_dispute(db: AsyncSession, dispute_id: uuid.UUID, for_update: bool = False) -> Dispute:
    return await _get(db, Dispute, "Dispute", dispute_id, for_update)


async def get_message(
    db: AsyncSession, message_id: uuid.UUID, for_update: bool = False
) -> NegotiationMessage:
    return await _get(db, NegotiationMessage, "Proposal", message_id, for_update)


async def get_evidence(db: AsyncSession, evidence_id: uuid.UUID, for_update: bool = False) -> Evidence:
    return await _get(db, Evidence, "Evidence", evidence_id, for_update)


async def get_arbitration(
    db: AsyncSession, arbitration_id: uuid.UUID, for_update: bool = False
) -> Arbitration:
    return await _get(db, Arbitration, "Arbitration", arbitration_id, for_update)


async def find_arbitration_for_dispute(db: AsyncSession, dispute_id: uuid.UUID) -> Arbitration | None:
    result = await db.execute(
        select(Arbitration).where(
            Arbitration.dispute_id == dispute_id,
            Arbitration.is_deleted.is_(False),
        )
    )
    return result.scalar_one_or_none()


async def find_open_dispute_for_order(db: AsyncSession, order_id: uuid.UUID) -> Dispute | None:
    result = await db.execute(
        select(Dispute).where(
            Dispute.order_id == order_id,
            Dispute.status.in_([s.value for s in OPEN_STATUSES]),
            Dispute.is_deleted.is_(False),
        )
    )
    return result.scalars().first()
