from tradeguard.integrations.base import BaseIntegration
from tradeguard.integrations.notifier import DisputeNotifier
from tradeguard.integrations.orders import OrderClient, OrderDirectory, OrderParticipants

__all__ = [
    "BaseIntegration",
    "DisputeNotifier",
    "OrderClient",
    "OrderDirectory",
    "OrderParticipants",
]
