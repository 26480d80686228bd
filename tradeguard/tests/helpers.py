import uuid
from datetime import datetime, timedelta, timezone

from tradeguard.common.exceptions import NotFoundError
from tradeguard.integrations.orders import OrderParticipants

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands datetimes back without tzinfo; everything is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeOrderDirectory:
    def __init__(self):
        self.orders: dict[uuid.UUID, OrderParticipants] = {}

    def add_order(self, buyer_id: uuid.UUID, seller_id: uuid.UUID) -> uuid.UUID:
        order_id = uuid.uuid4()
        self.orders[order_id] = OrderParticipants(order_id=order_id, buyer_id=buyer_id, seller_id=seller_id)
        return order_id

    async def get_order_participants(self, order_id: uuid.UUID) -> OrderParticipants:
        if order_id not in self.orders:
            raise NotFoundError("Order", str(order_id))
        return self.orders[order_id]
