"""Domain events and their emitter."""

from settlement_ledger.events.emitter import EventEmitter, EventHandler
from settlement_ledger.events.types import (
    AutoRechargeTriggered,
    CommissionDeducted,
    CommissionFailed,
    CommissionResolved,
    DomainEvent,
    EventCategory,
    EventMetadata,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefunded,
    RechargeCancelled,
    RechargeCompleted,
    RechargeFailed,
    RechargeInitiated,
    WalletWithdrawn,
)

__all__ = [
    "AutoRechargeTriggered",
    "CommissionDeducted",
    "CommissionFailed",
    "CommissionResolved",
    "DomainEvent",
    "EventCategory",
    "EventEmitter",
    "EventHandler",
    "EventMetadata",
    "PaymentCompleted",
    "PaymentFailed",
    "PaymentInitiated",
    "PaymentRefunded",
    "RechargeCancelled",
    "RechargeCompleted",
    "RechargeFailed",
    "RechargeInitiated",
    "WalletWithdrawn",
]
