import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from tradeguard.common.enums import DisputeStatus, DisputeType, OrderRole, PartyRole
from tradeguard.db.base import BaseModel

OPEN_STATUS_SQL = "status IN ('negotiating', 'pending_arbitration', 'arbitrating')"


class Dispute(BaseModel):
    __tablename__ = "disputes"
    __table_args__ = (
        # At most one non-terminal dispute per order
        Index(
            "uq_disputes_open_order",
            "order_id",
            unique=True,
            postgresql_where=text(OPEN_STATUS_SQL),
            sqlite_where=text(OPEN_STATUS_SQL),
        ),
        Index("ix_disputes_status_negotiation_deadline", "status", "negotiation_deadline"),
        Index("ix_disputes_status_arbitration_deadline", "status", "arbitration_deadline"),
    )

    dispute_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    initiator_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    initiator_role: Mapped[OrderRole] = mapped_column(String(20), nullable=False)
    counterparty_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    dispute_type: Mapped[DisputeType] = mapped_column(String(30), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(
        String(30), nullable=False, default=DisputeStatus.NEGOTIATING.value
    )
    arbitrator_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    negotiation_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    arbitration_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    close_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.initiator_id, self.counterparty_id)

    def party_role(self, user_id: uuid.UUID) -> PartyRole | None:
        if user_id == self.initiator_id:
            return PartyRole.INITIATOR
        if user_id == self.counterparty_id:
            return PartyRole.COUNTERPARTY
        return None

    def counterpart_of(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.counterparty_id if user_id == self.initiator_id else self.initiator_id
