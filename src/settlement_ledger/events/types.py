"""Domain event types for settlement operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for logging and export

Events are published after the state change they describe has been
committed, and never while an aggregate lock is held.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from settlement_ledger.models.common import Actor, serialize_value, utc_now


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYMENT = "payment"
    RECHARGE = "recharge"
    WALLET = "wallet"
    COMMISSION = "commission"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: str  # payment reference the event belongs to
    actor_id: str | None
    actor_type: str  # 'driver', 'rider', 'admin', 'system', 'gateway'
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: str,
        actor: Actor | None = None,
        source_service: str = "settlement-ledger",
        timestamp: datetime | None = None,
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=timestamp or utc_now(),
            correlation_id=correlation_id,
            actor_id=actor.actor_id if actor else None,
            actor_type=actor.role.value if actor else "system",
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return _serialize_dict(data)

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    return serialize_value(obj)


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class PaymentInitiated(DomainEvent):
    """A trip payment was created in PENDING."""

    payment_id: str
    reference: str
    payer_id: str
    beneficiary_id: str
    method: str
    gross_amount: Decimal
    commission_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentCompleted(DomainEvent):
    """A trip payment reached COMPLETED."""

    payment_id: str
    reference: str
    payer_id: str
    beneficiary_id: str
    method: str
    gross_amount: Decimal
    net_amount: Decimal
    commission_amount: Decimal
    bonus_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """A trip payment reached FAILED."""

    payment_id: str
    reference: str
    payer_id: str
    beneficiary_id: str
    method: str
    gross_amount: Decimal
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentRefunded(DomainEvent):
    """A completed trip payment was refunded."""

    payment_id: str
    reference: str
    payer_id: str
    beneficiary_id: str
    gross_amount: Decimal
    reason: str
    commission_reversed: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


# =============================================================================
# Recharge Events
# =============================================================================


@dataclass(frozen=True)
class RechargeInitiated(DomainEvent):
    """A wallet top-up was created in PENDING."""

    payment_id: str
    reference: str
    driver_id: str
    amount: Decimal
    fee: Decimal
    auto: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECHARGE


@dataclass(frozen=True)
class RechargeCompleted(DomainEvent):
    """A wallet top-up was credited."""

    payment_id: str
    reference: str
    driver_id: str
    amount: Decimal
    credited: Decimal
    bonus: Decimal
    balance_after: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECHARGE


@dataclass(frozen=True)
class RechargeFailed(DomainEvent):
    """A wallet top-up failed or expired."""

    payment_id: str
    reference: str
    driver_id: str
    amount: Decimal
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECHARGE


@dataclass(frozen=True)
class RechargeCancelled(DomainEvent):
    """A pending wallet top-up was cancelled by its owner or an admin."""

    payment_id: str
    reference: str
    driver_id: str
    amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.RECHARGE


# =============================================================================
# Wallet and Commission Events
# =============================================================================


@dataclass(frozen=True)
class CommissionDeducted(DomainEvent):
    """A commission was collected, from the wallet or by the gateway."""

    reference: str
    driver_id: str
    amount: Decimal
    source: str
    balance_after: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.COMMISSION


@dataclass(frozen=True)
class CommissionFailed(DomainEvent):
    """The wallet could not cover a cash commission."""

    reference: str
    driver_id: str
    amount: Decimal
    balance: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.COMMISSION


@dataclass(frozen=True)
class CommissionResolved(DomainEvent):
    """An admin closed a failed commission."""

    reference: str
    driver_id: str
    amount: Decimal
    resolution: str
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.COMMISSION


@dataclass(frozen=True)
class AutoRechargeTriggered(DomainEvent):
    """The wallet dropped below its auto-recharge threshold."""

    driver_id: str
    reference: str
    amount: Decimal
    balance: Decimal
    threshold: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.WALLET


@dataclass(frozen=True)
class WalletWithdrawn(DomainEvent):
    """Money left the wallet."""

    driver_id: str
    withdrawal_id: str
    amount: Decimal
    balance_after: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.WALLET
