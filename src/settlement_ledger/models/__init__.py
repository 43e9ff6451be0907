"""Domain aggregates and their ORM tables."""

from settlement_ledger.models.common import (
    Actor,
    ActorRole,
    CommissionSettlement,
    Customer,
    GatewayOutcome,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    Reservation,
)
from settlement_ledger.models.payment import BonusQuote, CommissionQuote, Payment
from settlement_ledger.models.wallet import (
    AutoRechargeSettings,
    CommissionSource,
    RechargeEntry,
    RechargeStatus,
    WalletAccount,
)

__all__ = [
    "Actor",
    "ActorRole",
    "AutoRechargeSettings",
    "BonusQuote",
    "CommissionQuote",
    "CommissionSettlement",
    "CommissionSource",
    "Customer",
    "GatewayOutcome",
    "Payment",
    "PaymentKind",
    "PaymentMethod",
    "PaymentStatus",
    "RechargeEntry",
    "RechargeStatus",
    "Reservation",
    "WalletAccount",
]
