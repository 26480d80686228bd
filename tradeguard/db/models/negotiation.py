import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from tradeguard.common.enums import MessageKind, PartyRole, ProposalStatus
from tradeguard.db.base import BaseModel

PENDING_PROPOSAL_SQL = "proposal_status = 'pending'"


class NegotiationMessage(BaseModel):
    __tablename__ = "negotiation_messages"
    __table_args__ = (
        # At most one pending proposal per dispute
        Index(
            "uq_negotiation_pending_proposal",
            "dispute_id",
            unique=True,
            postgresql_where=text(PENDING_PROPOSAL_SQL),
            sqlite_where=text(PENDING_PROPOSAL_SQL),
        ),
    )

    dispute_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("disputes.id"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    sender_role: Mapped[PartyRole] = mapped_column(String(20), nullable=False)
    kind: Mapped[MessageKind] = mapped_column(String(20), nullable=False)
    text_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    proposed_refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    proposal_status: Mapped[ProposalStatus | None] = mapped_column(String(20), nullable=True)
    responder_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    response_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
