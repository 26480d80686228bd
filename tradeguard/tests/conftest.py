import uuid
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tradeguard.common.actors import Actor
from tradeguard.common.enums import ActorRole
from tradeguard.core.arbitration.service import ArbitrationCoordinator
from tradeguard.core.disputes.lifecycle import DisputeLifecycleManager
from tradeguard.core.evidence.service import EvidenceRegistry
from tradeguard.core.negotiation.service import NegotiationCoordinator
from tradeguard.db.base import Base
from tradeguard.db.models import *  # noqa: F401,F403 - ensure all models loaded
from tradeguard.tests.helpers import T0, FakeOrderDirectory, FrozenClock

# Use in-memory SQLite for testing - remap JSONB to JSON
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# Make JSONB render as JSON for SQLite
@event.listens_for(Base.metadata, "before_create")
def _remap_jsonb(target, connection, **kw):
    if connection.dialect.name == "sqlite":
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, JSONB):
                    column.type = JSON()


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def orders():
    return FakeOrderDirectory()


def _actor(*roles: ActorRole) -> Actor:
    return Actor(actor_id=uuid.uuid4(), roles=frozenset(roles))


@pytest.fixture
def buyer():
    return _actor(ActorRole.BUYER)


@pytest.fixture
def seller():
    return _actor(ActorRole.SELLER)


@pytest.fixture
def admin():
    return _actor(ActorRole.ADMIN)


@pytest.fixture
def arbitrator():
    return _actor(ActorRole.ARBITRATOR)


@pytest.fixture
def outsider():
    return _actor(ActorRole.BUYER)


@pytest.fixture
def order_id(orders, buyer, seller):
    return orders.add_order(buyer.actor_id, seller.actor_id)


@pytest.fixture
def lifecycle(orders, clock):
    return DisputeLifecycleManager(
        orders=orders,
        negotiation_window=timedelta(hours=72),
        arbitration_window=timedelta(hours=168),
        clock=clock,
    )


@pytest.fixture
def negotiation(lifecycle, clock):
    return NegotiationCoordinator(lifecycle=lifecycle, clock=clock)


@pytest.fixture
def evidence_registry(clock):
    return EvidenceRegistry(clock=clock)


@pytest.fixture
def arbitration(lifecycle, clock):
    return ArbitrationCoordinator(lifecycle=lifecycle, clock=clock)


@pytest.fixture
async def dispute(lifecycle, buyer, order_id, db_session):
    """A freshly submitted dispute, opened by the buyer."""
    return await lifecycle.submit_dispute(buyer, order_id, "not_as_described", "Item arrived broken", db_session)


@pytest.fixture
async def arbitrating_dispute(lifecycle, arbitration, dispute, buyer, admin, arbitrator, db_session):
    await lifecycle.escalate_to_arbitration(buyer, dispute.id, db_session)
    return await arbitration.assign_arbitrator(admin, dispute.id, arbitrator.actor_id, db_session)
