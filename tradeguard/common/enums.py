import enum


class ActorRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    ARBITRATOR = "arbitrator"
    SYSTEM = "system"


class DisputeStatus(str, enum.Enum):
    NEGOTIATING = "negotiating"
    PENDING_ARBITRATION = "pending_arbitration"
    ARBITRATING = "arbitrating"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeType(str, enum.Enum):
    NOT_AS_DESCRIBED = "not_as_described"
    QUALITY_ISSUE = "quality_issue"
    NOT_RECEIVED = "not_received"
    DAMAGED = "damaged"
    COUNTERFEIT = "counterfeit"
    REFUND_REFUSED = "refund_refused"
    OTHER = "other"


class OrderRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"


class PartyRole(str, enum.Enum):
    INITIATOR = "initiator"
    COUNTERPARTY = "counterparty"


class MessageKind(str, enum.Enum):
    TEXT = "text"
    PROPOSAL = "proposal"


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class EvidenceValidity(str, enum.Enum):
    UNEVALUATED = "unevaluated"
    VALID = "valid"
    INVALID = "invalid"
    PARTIAL = "partial"


class ArbitrationResult(str, enum.Enum):
    SUPPORT_INITIATOR = "support_initiator"
    SUPPORT_COUNTERPARTY = "support_counterparty"
    PARTIAL = "partial"
    DISMISS = "dismiss"


class DisputeEventType(str, enum.Enum):
    SUBMITTED = "submitted"
    ESCALATED = "escalated"
    ARBITRATOR_ASSIGNED = "arbitrator_assigned"
    MESSAGE_SENT = "message_sent"
    PROPOSED = "proposed"
    PROPOSAL_REJECTED = "proposal_rejected"
    RESOLVED = "resolved"
    CLOSED = "closed"
