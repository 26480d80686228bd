import uuid

import httpx
import pytest

from tradeguard.common.exceptions import ExternalServiceError, NotFoundError
from tradeguard.integrations.orders import OrderClient

BASE_URL = "http://orders.test/api/v1"


def _client(handler) -> OrderClient:
    return OrderClient(base_url=BASE_URL, timeout=2, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_order_participants():
    order_id, buyer_id, seller_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, json={"buyer_id": str(buyer_id), "seller_id": str(seller_id)})

    participants = await _client(handler).get_order_participants(order_id)

    assert seen == [f"/api/v1/orders/{order_id}/participants"]
    assert participants.order_id == order_id
    assert participants.buyer_id == buyer_id
    assert participants.seller_id == seller_id


@pytest.mark.asyncio
async def test_unknown_order_is_not_found():
    client = _client(lambda request: httpx.Response(404, json={"detail": "no such order"}))
    with pytest.raises(NotFoundError):
        await client.get_order_participants(uuid.uuid4())


@pytest.mark.asyncio
async def test_order_service_error():
    client = _client(lambda request: httpx.Response(500))
    with pytest.raises(ExternalServiceError) as exc:
        await client.get_order_participants(uuid.uuid4())
    assert "HTTP 500" in exc.value.detail


@pytest.mark.asyncio
async def test_order_service_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(ExternalServiceError) as exc:
        await client.get_order_participants(uuid.uuid4())
    assert "orders - connection refused" in exc.value.detail
    assert await client.health_check() is False


@pytest.mark.asyncio
async def test_health_check():
    client = _client(lambda request: httpx.Response(200 if request.url.path == "/api/v1/health" else 404))
    assert await client.health_check() is True
