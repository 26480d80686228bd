"""Order service client.

Disputes only need to know who bought and who sold; everything else about
the order stays in the order service.
"""

from __future__ import annotations

import uuid
from typing import Protocol

import httpx
from pydantic import BaseModel

from tradeguard.common.exceptions import ExternalServiceError, NotFoundError
from tradeguard.config import settings
from tradeguard.integrations.base import BaseIntegration


class OrderParticipants(BaseModel):
    order_id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID


class OrderDirectory(Protocol):
    async def get_order_participants(self, order_id: uuid.UUID) -> OrderParticipants: ...


class OrderClient(BaseIntegration):
    """HTTP client for the order service's participant lookup."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            "orders",
            timeout=timeout if timeout is not None else settings.ORDER_SERVICE_TIMEOUT_SECONDS,
            base_url=base_url or settings.ORDER_SERVICE_URL,
            transport=transport,
        )

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                resp = await client.get("/health")
                return resp.status_code == 200
        except httpx.HTTPError as e:
            self.logger.error("Order service health check failed: %s", e)
            return False

    async def get_order_participants(self, order_id: uuid.UUID) -> OrderParticipants:
        self.logger.debug("Looking up participants for order %s", order_id)
        try:
            async with self._client() as client:
                resp = await client.get(f"/orders/{order_id}/participants")
        except httpx.HTTPError as e:
            raise self._unavailable(e) from e

        if resp.status_code == 404:
            raise NotFoundError("Order", str(order_id))
        if resp.status_code >= 400:
            self.logger.error("Order service returned %d for order %s", resp.status_code, order_id)
            raise ExternalServiceError("orders", f"HTTP {resp.status_code}")

        data = resp.json()
        return OrderParticipants(
            order_id=order_id,
            buyer_id=data["buyer_id"],
            seller_id=data["seller_id"],
        )
