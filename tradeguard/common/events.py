"""Transactional outbox for dispute notification facts.

Facts are written in the same unit of work as the transition they describe,
so a rolled-back transition never produces a notification and a committed one
always does. Delivery happens later through ``NotificationDispatcher``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.enums import DisputeEventType
from tradeguard.common.logging import get_logger
from tradeguard.db.models.event import DisputeEvent

logger = get_logger("events")


def dedupe_key_for(dispute_id: uuid.UUID, event: DisputeEventType, discriminator: str | None = None) -> str:
    key = f"{dispute_id}:{event.value}"
    if discriminator:
        key += f":{discriminator}"
    return key


async def record_event(
    db: AsyncSession,
    dispute_id: uuid.UUID,
    event: DisputeEventType,
    actor_id: uuid.UUID | None,
    occurred_at: datetime,
    payload: dict[str, Any] | None = None,
    discriminator: str | None = None,
) -> DisputeEvent | None:
    """Append a fact to the outbox unless the same fact is already recorded."""
    key = dedupe_key_for(dispute_id, event, discriminator)

    existing = await db.execute(select(DisputeEvent.id).where(DisputeEvent.dedupe_key == key))
    if existing.scalar_one_or_none() is not None:
        logger.debug("Event %s already recorded, skipping", key)
        return None

    row = DisputeEvent(
        dispute_id=dispute_id,
        event=event.value,
        actor_id=actor_id,
        occurred_at=occurred_at,
        payload=payload or {},
        dedupe_key=key,
        created_at=occurred_at,
    )
    db.add(row)
    await db.flush()
    logger.info("Recorded dispute event %s for dispute %s", event.value, dispute_id)
    return row
