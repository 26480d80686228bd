import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from tradeguard.common.enums import DisputeStatus
from tradeguard.common.exceptions import InvalidStateError, ValidationError

# NEGOTIATING -> RESOLVED covers an accepted proposal
DISPUTE_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    DisputeStatus.NEGOTIATING: frozenset({
        DisputeStatus.PENDING_ARBITRATION,
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    }),
    DisputeStatus.PENDING_ARBITRATION: frozenset({
        DisputeStatus.ARBITRATING,
        DisputeStatus.CLOSED,
    }),
    DisputeStatus.ARBITRATING: frozenset({
        DisputeStatus.ARBITRATING,  # arbitrator reassignment
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    }),
    DisputeStatus.RESOLVED: frozenset(),
    DisputeStatus.CLOSED: frozenset(),
}

TERMINAL_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})
OPEN_STATUSES = frozenset(set(DisputeStatus) - TERMINAL_STATUSES)

ARBITRATION_TIMEOUT_REASON = "arbitration timeout"

MONEY_QUANTUM = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current_status: str, new_status: DisputeStatus) -> bool:
    return new_status in DISPUTE_TRANSITIONS[DisputeStatus(current_status)]


def assert_transition(current_status: str, new_status: DisputeStatus) -> None:
    if not can_transition(current_status, new_status):
        raise InvalidStateError(
            f"Invalid dispute transition: {DisputeStatus(current_status).value} -> {new_status.value}"
        )


def negotiation_deadline(created_at: datetime, window: timedelta) -> datetime:
    return created_at + window


def arbitration_deadline(started_at: datetime, window: timedelta) -> datetime:
    return started_at + window


def generate_dispute_code(now: datetime) -> str:
    """Format: DSP-YYYYMMDD-XXXXXX"""
    return f"DSP-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def normalize_amount(value: object, field: str = "amount") -> Decimal:
    """Parse a monetary amount: non-negative with at most two decimal places."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a decimal number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{field} must not be negative")
    if amount != amount.quantize(MONEY_QUANTUM):
        raise ValidationError(f"{field} must have at most two decimal places")
    return amount.quantize(MONEY_QUANTUM)


def require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()
