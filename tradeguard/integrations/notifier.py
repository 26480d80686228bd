"""Dispute notification delivery.

Posts dispute facts to the notification service webhook when one is
configured, otherwise only logs them for development. Receivers must treat
``dedupe_key`` as an idempotency key: the same fact can arrive more than once.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from tradeguard.config import settings
from tradeguard.integrations.base import BaseIntegration


class DisputeFact(BaseModel):
    event_id: uuid.UUID
    dispute_id: uuid.UUID
    event: str
    actor_id: uuid.UUID | None
    occurred_at: datetime
    dedupe_key: str
    payload: dict[str, Any] = {}


class Notifier(Protocol):
    async def notify(self, fact: DisputeFact) -> None: ...


def _is_mock(url: str) -> bool:
    return not url


class DisputeNotifier(BaseIntegration):
    """Webhook notifier with log-only fallback."""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__("notifier", timeout=settings.NOTIFIER_TIMEOUT_SECONDS, transport=transport)
        self.webhook_url = settings.NOTIFIER_WEBHOOK_URL if webhook_url is None else webhook_url

    async def health_check(self) -> bool:
        if _is_mock(self.webhook_url):
            self.logger.info("Notifier health check: OK (log only)")
            return True
        try:
            async with self._client() as client:
                resp = await client.get(self.webhook_url)
                return resp.status_code < 500
        except httpx.HTTPError as e:
            self.logger.error("Notifier health check failed: %s", e)
            return False

    async def notify(self, fact: DisputeFact) -> None:
        if _is_mock(self.webhook_url):
            self.logger.info(
                "[LOG ONLY] dispute=%s event=%s key=%s", fact.dispute_id, fact.event, fact.dedupe_key
            )
            return

        try:
            async with self._client() as client:
                resp = await client.post(
                    self.webhook_url,
                    json=fact.model_dump(mode="json"),
                    headers={"Idempotency-Key": fact.dedupe_key},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._unavailable(e) from e

        self.logger.info("Delivered %s for dispute %s", fact.event, fact.dispute_id)
