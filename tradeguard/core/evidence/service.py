import uuid
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeguard.common.actors import Actor
from tradeguard.common.enums import EvidenceValidity, PartyRole
from tradeguard.common.exceptions import (
    ConflictError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)
from tradeguard.common.logging import get_logger
from tradeguard.core.disputes.repository import get_dispute, get_evidence
from tradeguard.core.disputes.schemas import EvidenceRead, EvidenceSummary
from tradeguard.core.disputes.workflow import require_text, utcnow
from tradeguard.db.models.evidence import Evidence

logger = get_logger("evidence.service")


class EvidenceRegistry:
    """Evidence uploaded by the parties and the arbitrator's one-time verdict on it."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    async def upload_evidence(
        self,
        actor: Actor,
        dispute_id: uuid.UUID,
        media_type: str,
        url: str,
        description: str | None,
        db: AsyncSession,
    ) -> EvidenceRead:
        media_type = require_text(media_type, "media_type")
        url = require_text(url, "url")

        dispute = await get_dispute(db, dispute_id)
        role = dispute.party_role(actor.actor_id)
        if role is None:
            logger.warning("User %s is not a participant of dispute %s", actor.actor_id, dispute_id)
            raise PermissionDeniedError("Only dispute participants can upload evidence")

        evidence = Evidence(
            dispute_id=dispute_id,
            uploader_id=actor.actor_id,
            role=role.value,
            media_type=media_type,
            url=url,
            description=description,
            validity=EvidenceValidity.UNEVALUATED.value,
            created_at=self.clock(),
        )
        db.add(evidence)
        await db.flush()

        logger.info(
            "Evidence %s (%s) uploaded to dispute %s by %s",
            evidence.id,
            media_type,
            dispute_id,
            actor.actor_id,
        )
        return EvidenceRead.model_validate(evidence)

    async def evaluate_evidence(
        self,
        actor: Actor,
        evidence_id: uuid.UUID,
        validity: EvidenceValidity | str,
        reason: str | None,
        db: AsyncSession,
    ) -> EvidenceRead:
        try:
            verdict = EvidenceValidity(validity)
        except ValueError:
            raise ValidationError(f"Unknown evidence validity: {validity}")
        if verdict == EvidenceValidity.UNEVALUATED:
            raise ValidationError("Evidence must be evaluated as valid, invalid or partial")

        evidence = await get_evidence(db, evidence_id, for_update=True)
        dispute = await get_dispute(db, evidence.dispute_id)
        if dispute.arbitrator_id is None or dispute.arbitrator_id != actor.actor_id:
            raise PermissionDeniedError("Only the assigned arbitrator can evaluate evidence")

        if evidence.validity != EvidenceValidity.UNEVALUATED:
            logger.warning(
                "Evidence %s already evaluated as %s", evidence_id, EvidenceValidity(evidence.validity).value
            )
            raise ConflictError("Evidence has already been evaluated")

        evidence.validity = verdict.value
        evidence.evaluation_reason = reason
        evidence.evaluator_id = actor.actor_id
        evidence.evaluated_at = self.clock()
        await db.flush()

        logger.info("Evidence %s evaluated as %s by %s", evidence_id, verdict.value, actor.actor_id)
        return EvidenceRead.model_validate(evidence)

    async def delete_evidence(self, actor: Actor, evidence_id: uuid.UUID, db: AsyncSession) -> None:
        evidence = await get_evidence(db, evidence_id, for_update=True)
        if evidence.uploader_id != actor.actor_id:
            logger.warning(
                "User %s tried to delete evidence %s uploaded by %s",
                actor.actor_id,
                evidence_id,
                evidence.uploader_id,
            )
            raise PermissionDeniedError("You can only delete evidence you uploaded")
        if evidence.validity != EvidenceValidity.UNEVALUATED:
            raise InvalidStateError("Evaluated evidence cannot be deleted")

        evidence.is_deleted = True
        evidence.deleted_at = self.clock()
        await db.flush()
        logger.info("Evidence %s deleted by %s", evidence_id, actor.actor_id)

    async def list_evidence(
        self, dispute_id: uuid.UUID, db: AsyncSession, role: PartyRole | None = None
    ) -> list[EvidenceRead]:
        await get_dispute(db, dispute_id)
        query = select(Evidence).where(Evidence.dispute_id == dispute_id, Evidence.is_deleted.is_(False))
        if role:
            query = query.where(Evidence.role == PartyRole(role).value)
        result = await db.execute(query.order_by(Evidence.created_at.asc()))
        return [EvidenceRead.model_validate(e) for e in result.scalars().all()]

    async def get_evidence_summary(self, dispute_id: uuid.UUID, db: AsyncSession) -> EvidenceSummary:
        await get_dispute(db, dispute_id)
        result = await db.execute(
            select(Evidence.role, Evidence.validity).where(
                Evidence.dispute_id == dispute_id, Evidence.is_deleted.is_(False)
            )
        )
        return EvidenceSummary.from_rows(dispute_id, list(result.all()))

    async def get_unevaluated_evidence(
        self, actor: Actor, dispute_id: uuid.UUID, db: AsyncSession
    ) -> list[EvidenceRead]:
        """Worklist for the assigned arbitrator (or an admin looking over their shoulder)."""
        dispute = await get_dispute(db, dispute_id)
        if not (actor.is_admin or (dispute.arbitrator_id and dispute.arbitrator_id == actor.actor_id)):
            raise PermissionDeniedError("Only the assigned arbitrator can view the evaluation worklist")

        result = await db.execute(
            select(Evidence)
            .where(
                Evidence.dispute_id == dispute_id,
                Evidence.validity == EvidenceValidity.UNEVALUATED.value,
                Evidence.is_deleted.is_(False),
            )
            .order_by(Evidence.created_at.asc())
        )
        return [EvidenceRead.model_validate(e) for e in result.scalars().all()]
