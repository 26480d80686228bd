import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from tradeguard.common.enums import (
    ArbitrationResult,
    DisputeStatus,
    DisputeType,
    EvidenceValidity,
    MessageKind,
    OrderRole,
    PartyRole,
    ProposalStatus,
)


class DisputeRead(BaseModel):
    id: uuid.UUID
    dispute_code: str
    order_id: uuid.UUID
    initiator_id: uuid.UUID
    initiator_role: OrderRole
    counterparty_id: uuid.UUID
    dispute_type: DisputeType
    reason: str
    status: DisputeStatus
    arbitrator_id: uuid.UUID | None
    negotiation_deadline: datetime
    arbitration_deadline: datetime | None
    assigned_at: datetime | None
    resolved_at: datetime | None
    close_reason: str | None
    closed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class NegotiationMessageRead(BaseModel):
    id: uuid.UUID
    dispute_id: uuid.UUID
    sender_id: uuid.UUID
    sender_role: PartyRole
    kind: MessageKind
    text_content: str | None
    proposed_refund_amount: Decimal | None
    proposal_status: ProposalStatus | None
    responder_id: uuid.UUID | None
    response_note: str | None
    responded_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class EvidenceRead(BaseModel):
    id: uuid.UUID
    dispute_id: uuid.UUID
    uploader_id: uuid.UUID
    role: PartyRole
    media_type: str
    url: str
    description: str | None
    validity: EvidenceValidity
    evaluator_id: uuid.UUID | None
    evaluation_reason: str | None
    evaluated_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class EvidenceSummary(BaseModel):
    dispute_id: uuid.UUID
    total: int
    by_role: dict[PartyRole, int]
    by_validity: dict[EvidenceValidity, int]

    @property
    def unevaluated(self) -> int:
        return self.by_validity.get(EvidenceValidity.UNEVALUATED, 0)

    @classmethod
    def from_rows(cls, dispute_id: uuid.UUID, rows: list) -> "EvidenceSummary":
        by_role = {role: 0 for role in PartyRole}
        by_validity = {validity: 0 for validity in EvidenceValidity}
        for row in rows:
            by_role[PartyRole(row.role)] += 1
            by_validity[EvidenceValidity(row.validity)] += 1
        return cls(dispute_id=dispute_id, total=len(rows), by_role=by_role, by_validity=by_validity)


class ArbitrationRead(BaseModel):
    id: uuid.UUID
    dispute_id: uuid.UUID
    arbitrator_id: uuid.UUID
    result: ArbitrationResult
    compensation_amount: Decimal
    reason: str
    initiator_evidence_analysis: str | None = None
    counterparty_evidence_analysis: str | None = None
    executed: bool
    execution_note: str | None
    submitted_at: datetime
    executed_at: datetime | None

    model_config = {"from_attributes": True}


class DisputeDetail(BaseModel):
    dispute: DisputeRead
    evidence: list[EvidenceRead]
    evidence_summary: EvidenceSummary
    negotiation_history: list[NegotiationMessageRead]
    arbitration: ArbitrationRead | None


class DisputeFilter(BaseModel):
    participant_id: uuid.UUID | None = None
    arbitrator_id: uuid.UUID | None = None
    status: DisputeStatus | None = None
    order_id: uuid.UUID | None = None


class BatchAssignResult(BaseModel):
    assigned: list[uuid.UUID]
    failed: dict[uuid.UUID, str]


class DisputeStatistics(BaseModel):
    total: int
    by_status: dict[DisputeStatus, int]
    by_type: dict[DisputeType, int]
    arbitration_results: dict[ArbitrationResult, int]
    negotiation_success_rate: float
    pending_execution_count: int
    pending_execution_amount: Decimal
