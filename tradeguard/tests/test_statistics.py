from decimal import Decimal

import pytest

from tradeguard.common.enums import ArbitrationResult, DisputeStatus, DisputeType
from tradeguard.core.disputes.statistics import DisputeStatisticsService


@pytest.mark.asyncio
async def test_empty_statistics(db_session):
    stats = await DisputeStatisticsService().get_statistics(db_session)
    assert stats.total == 0
    assert stats.negotiation_success_rate == 0.0
    assert stats.pending_execution_count == 0
    assert stats.pending_execution_amount == Decimal("0.00")
    assert all(count == 0 for count in stats.by_status.values())


@pytest.mark.asyncio
async def test_statistics(lifecycle, negotiation, arbitration, orders, buyer, seller, admin, arbitrator, db_session):
    async def open_dispute(dispute_type):
        order_id = orders.add_order(buyer.actor_id, seller.actor_id)
        return await lifecycle.submit_dispute(buyer, order_id, dispute_type, "Problem with order", db_session)

    negotiated = await open_dispute("damaged")
    proposal = await negotiation.propose_resolution(seller, negotiated.id, "25", None, db_session)
    await negotiation.respond_to_proposal(buyer, proposal.id, True, None, db_session)

    arbitrated = await open_dispute("damaged")
    await lifecycle.escalate_to_arbitration(buyer, arbitrated.id, db_session)
    await arbitration.assign_arbitrator(admin, arbitrated.id, arbitrator.actor_id, db_session)
    await arbitration.submit_arbitration(arbitrator, arbitrated.id, "partial", "99.00", "Half the items", db_session)

    withdrawn = await open_dispute("not_received")
    await lifecycle.close_dispute(buyer, withdrawn.id, "Parcel turned up", db_session)

    await open_dispute("counterfeit")

    stats = await DisputeStatisticsService().get_statistics(db_session)
    assert stats.total == 4
    assert stats.by_status[DisputeStatus.RESOLVED] == 2
    assert stats.by_status[DisputeStatus.CLOSED] == 1
    assert stats.by_status[DisputeStatus.NEGOTIATING] == 1
    assert stats.by_type[DisputeType.DAMAGED] == 2
    assert stats.by_type[DisputeType.COUNTERFEIT] == 1
    assert stats.by_type[DisputeType.OTHER] == 0
    assert stats.arbitration_results[ArbitrationResult.PARTIAL] == 1
    assert stats.arbitration_results[ArbitrationResult.DISMISS] == 0
    assert stats.negotiation_success_rate == pytest.approx(1 / 3, abs=1e-4)
    assert stats.pending_execution_count == 1
    assert stats.pending_execution_amount == Decimal("99.00")
