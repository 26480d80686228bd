from decimal import Decimal

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.enums import (
    ArbitrationResult,
    DisputeStatus,
    DisputeType,
    MessageKind,
    ProposalStatus,
)
from tradeguard.common.logging import get_logger
from tradeguard.core.disputes.schemas import DisputeStatistics
from tradeguard.core.disputes.workflow import MONEY_QUANTUM, TERMINAL_STATUSES
from tradeguard.db.models.arbitration import Arbitration
from tradeguard.db.models.dispute import Dispute
from tradeguard.db.models.negotiation import NegotiationMessage

logger = get_logger("disputes.statistics")


class DisputeStatisticsService:
    """Admin dashboard figures, computed with aggregate queries."""

    async def get_statistics(self, db: AsyncSession) -> DisputeStatistics:
        by_status = {status: 0 for status in DisputeStatus}
        rows = await db.execute(
            select(Dispute.status, func.count(Dispute.id))
            .where(Dispute.is_deleted.is_(False))
            .group_by(Dispute.status)
        )
        for status, count in rows.all():
            by_status[DisputeStatus(status)] = count

        by_type = {dispute_type: 0 for dispute_type in DisputeType}
        rows = await db.execute(
            select(Dispute.dispute_type, func.count(Dispute.id))
            .where(Dispute.is_deleted.is_(False))
            .group_by(Dispute.dispute_type)
        )
        for dispute_type, count in rows.all():
            by_type[DisputeType(dispute_type)] = count

        arbitration_results = {result: 0 for result in ArbitrationResult}
        rows = await db.execute(
            select(Arbitration.result, func.count(Arbitration.id))
            .where(Arbitration.is_deleted.is_(False))
            .group_by(Arbitration.result)
        )
        for result, count in rows.all():
            arbitration_results[ArbitrationResult(result)] = count

        negotiated = (
            await db.execute(
                select(func.count(distinct(NegotiationMessage.dispute_id))).where(
                    NegotiationMessage.kind == MessageKind.PROPOSAL.value,
                    NegotiationMessage.proposal_status == ProposalStatus.ACCEPTED.value,
                    NegotiationMessage.is_deleted.is_(False),
                )
            )
        ).scalar_one()
        terminal = sum(by_status[status] for status in TERMINAL_STATUSES)
        success_rate = round(negotiated / terminal, 4) if terminal else 0.0

        pending_count, pending_amount = (
            await db.execute(
                select(
                    func.count(Arbitration.id),
                    func.coalesce(func.sum(Arbitration.compensation_amount), 0),
                ).where(
                    Arbitration.executed.is_(False),
                    Arbitration.compensation_amount > 0,
                    Arbitration.is_deleted.is_(False),
                )
            )
        ).one()

        stats = DisputeStatistics(
            total=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            arbitration_results=arbitration_results,
            negotiation_success_rate=success_rate,
            pending_execution_count=pending_count,
            pending_execution_amount=Decimal(str(pending_amount)).quantize(MONEY_QUANTUM),
        )
        logger.debug("Computed dispute statistics: %d disputes, %d terminal", stats.total, terminal)
        return stats
