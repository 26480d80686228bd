"""Initial schema - disputes, negotiation, evidence, arbitration, event outbox

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

OPEN_STATUS_SQL = "status IN ('negotiating', 'pending_arbitration', 'arbitrating')"


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # Disputes
    op.create_table(
        "disputes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("dispute_code", sa.String(32), unique=True, nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("initiator_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("initiator_role", sa.String(20), nullable=False),
        sa.Column("counterparty_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("dispute_type", sa.String(30), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="negotiating"),
        sa.Column("arbitrator_id", postgresql.UUID(as_uuid=True), nullable=True, index=True),
        sa.Column("negotiation_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("arbitration_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("close_reason", sa.Text, nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
    )
    op.create_index(
        "uq_disputes_open_order",
        "disputes",
        ["order_id"],
        unique=True,
        postgresql_where=sa.text(OPEN_STATUS_SQL),
    )
    op.create_index(
        "ix_disputes_status_negotiation_deadline", "disputes", ["status", "negotiation_deadline"]
    )
    op.create_index(
        "ix_disputes_status_arbitration_deadline", "disputes", ["status", "arbitration_deadline"]
    )

    # Negotiation messages and proposals
    op.create_table(
        "negotiation_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "dispute_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("disputes.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_role", sa.String(20), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("text_content", sa.Text, nullable=True),
        sa.Column("proposed_refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("proposal_status", sa.String(20), nullable=True),
        sa.Column("responder_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("response_note", sa.Text, nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
    )
    op.create_index(
        "uq_negotiation_pending_proposal",
        "negotiation_messages",
        ["dispute_id"],
        unique=True,
        postgresql_where=sa.text("proposal_status = 'pending'"),
    )

    # Evidence
    op.create_table(
        "dispute_evidence",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "dispute_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("disputes.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("uploader_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("media_type", sa.String(100), nullable=False),
        sa.Column("url", sa.String(1000), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("validity", sa.String(20), nullable=False, server_default="unevaluated"),
        sa.Column("evaluator_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("evaluation_reason", sa.Text, nullable=True),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
    )

    # Arbitration decisions
    op.create_table(
        "arbitrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "dispute_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("disputes.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("arbitrator_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("result", sa.String(30), nullable=False),
        sa.Column("compensation_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("executed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("initiator_evidence_analysis", sa.Text, nullable=True),
        sa.Column("counterparty_evidence_analysis", sa.Text, nullable=True),
        sa.Column("execution_note", sa.Text, nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
    )

    # Notification outbox
    op.create_table(
        "dispute_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "dispute_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("disputes.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("event", sa.String(30), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column("dedupe_key", sa.String(200), unique=True, nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
    )
    op.create_index(
        "ix_dispute_events_undelivered",
        "dispute_events",
        ["occurred_at"],
        postgresql_where=sa.text("delivered_at IS NULL AND failed_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("ix_dispute_events_undelivered", table_name="dispute_events")
    op.drop_table("dispute_events")
    op.drop_table("arbitrations")
    op.drop_table("dispute_evidence")
    op.drop_index("uq_negotiation_pending_proposal", table_name="negotiation_messages")
    op.drop_table("negotiation_messages")
    op.drop_index("ix_disputes_status_arbitration_deadline", table_name="disputes")
    op.drop_index("ix_disputes_status_negotiation_deadline", table_name="disputes")
    op.drop_index("uq_disputes_open_order", table_name="disputes")
    op.drop_table("disputes")
