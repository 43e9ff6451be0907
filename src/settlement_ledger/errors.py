"""Exception hierarchy for settlement ledger operations.

Every error carries a stable ``code`` for API mapping and a ``details``
dict for audit logs. Callers should catch the narrowest type they can
act on and let the rest propagate.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from settlement_ledger.services.eligibility import EligibilityDecision


class LedgerError(Exception):
    """Base class for all settlement ledger errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(LedgerError):
    """Input out of bounds, unknown method, or a rule precondition failed."""

    code = "VALIDATION_ERROR"


class DuplicatePayment(ValidationError):
    """A completed trip payment already exists for the reservation."""

    code = "DUPLICATE_PAYMENT"


class DailyLimitExceeded(ValidationError):
    """Recharge would exceed the daily amount or count limit."""

    code = "DAILY_LIMIT_EXCEEDED"


class VelocityLimitExceeded(ValidationError):
    """Too many payment attempts by the same payer in the current window."""

    code = "VELOCITY_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after_seconds: int, **details: Any):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, retry_after_seconds=retry_after_seconds, **details)


class EligibilityDenied(LedgerError):
    """Cash requested while the driver's wallet does not allow it."""

    code = "ELIGIBILITY_DENIED"

    def __init__(self, decision: EligibilityDecision):
        self.decision = decision
        super().__init__(
            decision.reason,
            authorized_methods=[m.value for m in decision.authorized_methods],
            shortfall=str(decision.shortfall),
        )


class InvalidStateTransition(LedgerError):
    """Raised when an invalid payment status transition is attempted."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, from_status=str(from_status), to_status=str(to_status))


class AlreadyFinalized(InvalidStateTransition):
    """The payment already reached a terminal status."""

    code = "ALREADY_FINALIZED"


class CancellationWindowExpired(InvalidStateTransition):
    """The recharge is older than the cancellation window."""

    code = "CANCELLATION_WINDOW_EXPIRED"


class InsufficientWalletBalance(LedgerError):
    """Wallet balance does not cover the commission or withdrawal."""

    code = "INSUFFICIENT_WALLET_BALANCE"

    def __init__(self, balance: Decimal, required: Decimal):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Wallet balance {balance} does not cover {required}",
            balance=str(balance),
            required=str(required),
        )


class GatewayError(LedgerError):
    """Base class for gateway failures."""

    code = "GATEWAY_ERROR"


class GatewayUnavailable(GatewayError):
    """Gateway did not answer in time or answered with a server error.

    The outcome of the call is unknown.
    """

    code = "GATEWAY_UNAVAILABLE"


class GatewayRejected(GatewayError):
    """Gateway definitively refused the request."""

    code = "GATEWAY_REJECTED"


class StatusMismatch(LedgerError):
    """Manually claimed outcome disagrees with the gateway's record."""

    code = "STATUS_MISMATCH"

    def __init__(self, claimed: str, actual: str):
        self.claimed = claimed
        self.actual = actual
        super().__init__(
            f"Claimed outcome '{claimed}' does not match gateway status '{actual}'",
            claimed=claimed,
            actual=actual,
        )


class PermissionDenied(LedgerError):
    """Actor is not allowed to perform the operation."""

    code = "PERMISSION_DENIED"


class InvalidSignature(LedgerError):
    """Webhook signature verification failed."""

    code = "INVALID_SIGNATURE"


class PaymentNotFound(LedgerError):
    code = "PAYMENT_NOT_FOUND"


class WalletNotFound(LedgerError):
    code = "WALLET_NOT_FOUND"


class ConcurrentModification(LedgerError):
    """Stored aggregate version changed since it was loaded."""

    code = "CONCURRENT_MODIFICATION"
