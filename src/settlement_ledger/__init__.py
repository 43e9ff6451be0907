"""Settlement ledger for a ride-hailing platform.

This package contains:
- Trip payment settlement (cash and mobile money) with dynamic commission
- Driver wallets backed by append-only histories
- Wallet recharges with daily limits and auto-recharge
- Mobile-money gateway adapters and webhook verification
- Reconciliation of payments the gateway never confirmed
- Domain events and best-effort notifications
"""

from settlement_ledger.errors import (
    AlreadyFinalized,
    CancellationWindowExpired,
    ConcurrentModification,
    DailyLimitExceeded,
    DuplicatePayment,
    EligibilityDenied,
    GatewayError,
    GatewayRejected,
    GatewayUnavailable,
    InsufficientWalletBalance,
    InvalidSignature,
    InvalidStateTransition,
    LedgerError,
    PaymentNotFound,
    PermissionDenied,
    StatusMismatch,
    ValidationError,
    VelocityLimitExceeded,
    WalletNotFound,
)
from settlement_ledger.ledger import SettlementLedger
from settlement_ledger.models import (
    Actor,
    ActorRole,
    CommissionSettlement,
    Customer,
    GatewayOutcome,
    Payment,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    WalletAccount,
)
from settlement_ledger.rules import (
    CashRules,
    CommissionRules,
    LedgerRules,
    RechargeRules,
    RefundPolicy,
    TripRules,
    VelocityRules,
)
from settlement_ledger.services.context import OutcomeDisposition, OutcomeResult
from settlement_ledger.services.payment_ledger import CommissionAction
from settlement_ledger.trip_facts import InMemoryTripFacts, TripFacts, TripFactsProvider

__version__ = "0.1.0"

__all__ = [
    # Facade
    "SettlementLedger",
    # Models
    "Actor",
    "ActorRole",
    "CommissionSettlement",
    "Customer",
    "GatewayOutcome",
    "Payment",
    "PaymentKind",
    "PaymentMethod",
    "PaymentStatus",
    "Reservation",
    "WalletAccount",
    # Rules
    "CashRules",
    "CommissionRules",
    "LedgerRules",
    "RechargeRules",
    "RefundPolicy",
    "TripRules",
    "VelocityRules",
    # Trip facts
    "InMemoryTripFacts",
    "TripFacts",
    "TripFactsProvider",
    # Results
    "CommissionAction",
    "OutcomeDisposition",
    "OutcomeResult",
    # Errors
    "AlreadyFinalized",
    "CancellationWindowExpired",
    "ConcurrentModification",
    "DailyLimitExceeded",
    "DuplicatePayment",
    "EligibilityDenied",
    "GatewayError",
    "GatewayRejected",
    "GatewayUnavailable",
    "InsufficientWalletBalance",
    "InvalidSignature",
    "InvalidStateTransition",
    "LedgerError",
    "PaymentNotFound",
    "PermissionDenied",
    "StatusMismatch",
    "ValidationError",
    "VelocityLimitExceeded",
    "WalletNotFound",
]
