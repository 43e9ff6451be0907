"""Eligibility validator - decides whether a driver may accept cash.

A driver can take cash only after their wallet has been activated by a
first successful recharge, and only while the balance stays at or above
the configured minimum. When a commission amount is known, the balance
must also cover it, since the platform collects a cash commission by
debiting the wallet.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from settlement_ledger.models.common import PaymentMethod, serialize_value
from settlement_ledger.models.wallet import WalletAccount

ZERO = Decimal("0")


@dataclass(frozen=True)
class EligibilityDecision:
    """Result of a cash eligibility check, with everything needed to explain it."""

    allowed: bool
    reason: str
    authorized_methods: tuple[PaymentMethod, ...]
    balance: Decimal
    minimum_required: Decimal
    recharge_active: bool

    @property
    def shortfall(self) -> Decimal:
        """How much the driver must add to become eligible."""
        return max(self.minimum_required - self.balance, ZERO)

    def snapshot(self) -> dict[str, Any]:
        """Frozen inputs and outcome, stored on the payment."""
        return serialize_value(
            {
                "allowed": self.allowed,
                "reason": self.reason,
                "authorized_methods": list(self.authorized_methods),
                "balance": self.balance,
                "minimum_required": self.minimum_required,
                "recharge_active": self.recharge_active,
            }
        )


class EligibilityValidator:
    """Gatekeeper for the cash payment method."""

    def can_accept_cash(
        self, wallet: WalletAccount, commission: Decimal | None = None
    ) -> EligibilityDecision:
        """Evaluate the wallet against the cash rules.

        The threshold is inclusive: a balance exactly equal to the
        minimum is allowed.
        """
        minimum = wallet.minimum_balance
        if commission is not None and commission > minimum:
            minimum = commission
        balance = wallet.balance

        if not wallet.recharge_active:
            reason = "Wallet has never been recharged"
            allowed = False
        elif balance < minimum:
            reason = f"Wallet balance {balance} is below the required {minimum}"
            allowed = False
        else:
            reason = "Cash accepted"
            allowed = True

        digital = PaymentMethod.digital()
        return EligibilityDecision(
            allowed=allowed,
            reason=reason,
            authorized_methods=(PaymentMethod.CASH, *digital) if allowed else digital,
            balance=balance,
            minimum_required=minimum,
            recharge_active=wallet.recharge_active,
        )

    def is_method_authorized(
        self, wallet: WalletAccount, method: PaymentMethod, commission: Decimal | None = None
    ) -> EligibilityDecision:
        """Digital methods are always authorized; cash goes through the wallet check."""
        decision = self.can_accept_cash(wallet, commission)
        if method.is_digital and not decision.allowed:
            return EligibilityDecision(
                allowed=True,
                reason="Digital methods are always authorized",
                authorized_methods=decision.authorized_methods,
                balance=decision.balance,
                minimum_required=decision.minimum_required,
                recharge_active=decision.recharge_active,
            )
        return decision
