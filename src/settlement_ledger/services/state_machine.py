"""Payment state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from settlement_ledger.errors import AlreadyFinalized, InvalidStateTransition


class PaymentStatus(str, Enum):
    """Payment status values."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStateMachine:
    """State machine for payment status transitions.

    Allowed transitions:
    - PENDING → COMPLETED
    - PENDING → FAILED
    - PENDING → CANCELLED
    - COMPLETED → REFUNDED
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        PaymentStatus.PENDING: [
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        ],
        PaymentStatus.COMPLETED: [PaymentStatus.REFUNDED],
        PaymentStatus.FAILED: [],  # Terminal state
        PaymentStatus.CANCELLED: [],  # Terminal state
        PaymentStatus.REFUNDED: [],  # Terminal state
    }

    # Statuses where an outcome has been decided
    FINAL = {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }

    # Statuses where amounts and commission can no longer change
    AMOUNTS_IMMUTABLE = {
        PaymentStatus.COMPLETED,
        PaymentStatus.REFUNDED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidStateTransition if invalid.

        Leaving a final status by any other edge raises the more
        specific AlreadyFinalized.
        """
        if cls.can_transition(from_status, to_status):
            return
        if from_status in cls.FINAL:
            raise AlreadyFinalized(
                PaymentStatus(from_status).value,
                PaymentStatus(to_status).value,
                "payment already finalized",
            )
        raise InvalidStateTransition(
            PaymentStatus(from_status).value, PaymentStatus(to_status).value
        )

    @classmethod
    def is_final(cls, status: str) -> bool:
        """Check if an outcome has already been recorded."""
        return status in cls.FINAL

    @classmethod
    def are_amounts_immutable(cls, status: str) -> bool:
        """Check if gross, commission and net are frozen."""
        return status in cls.AMOUNTS_IMMUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
