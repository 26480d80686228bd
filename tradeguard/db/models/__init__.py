from tradeguard.db.models.arbitration import Arbitration
from tradeguard.db.models.dispute import Dispute
from tradeguard.db.models.event import DisputeEvent
from tradeguard.db.models.evidence import Evidence
from tradeguard.db.models.negotiation import NegotiationMessage

__all__ = [
    "Arbitration",
    "Dispute",
    "DisputeEvent",
    "Evidence",
    "NegotiationMessage",
]
