"""Commission engine - dynamic commission, performance and recharge bonuses.

All functions are pure: they compute quotes and never touch a wallet.
Crediting a bonus happens only once the owning payment completes.
"""

from __future__ import annotations

from decimal import Decimal

from settlement_ledger.models.common import round_amount, to_decimal
from settlement_ledger.models.payment import BonusQuote, CommissionQuote
from settlement_ledger.rules import CommissionRules, RechargeRules

ZERO = Decimal("0")


class CommissionEngine:
    """Computes the platform's share of a trip and the bonuses drivers earn.

    Rate computation:
    - start from the base rate
    - trips strictly longer than ``long_distance_km`` get a discount
    - drivers rated at or above ``top_rating`` get a discount
    - discounts add, and the result is floored at ``minimum_rate``
    """

    def __init__(self, rules: CommissionRules | None = None):
        self.rules = rules or CommissionRules()

    def compute_dynamic_commission(
        self,
        gross_amount: Decimal,
        distance_km: float = 0.0,
        driver_rating: float = 0.0,
    ) -> CommissionQuote:
        """Compute the commission owed on a trip.

        Args:
            gross_amount: Trip price paid by the rider
            distance_km: Trip distance
            driver_rating: Driver's current average rating

        Returns:
            CommissionQuote with the effective rate and rounded amount
        """
        gross = to_decimal(gross_amount)
        if gross <= 0:
            raise ValueError("gross_amount must be positive")

        rules = self.rules
        reduction = ZERO
        reasons: list[str] = []

        if distance_km > rules.long_distance_km:
            reduction += rules.long_distance_discount
            reasons.append("LONG_DISTANCE")
        if driver_rating >= rules.top_rating:
            reduction += rules.top_rating_discount
            reasons.append("TOP_RATED")

        rate = rules.base_rate - reduction
        if rate < rules.minimum_rate:
            rate = rules.minimum_rate
            reasons.append("MINIMUM_RATE")

        return CommissionQuote(
            rate=rate,
            original_rate=rules.base_rate,
            reduction=rules.base_rate - rate,
            amount=round_amount(gross * rate),
            reason_code="+".join(reasons) if reasons else "STANDARD",
        )

    def apply_performance_bonus(self, driver_rating: float, trips_this_month: int) -> BonusQuote:
        """Fixed bonus for highly rated drivers with enough trips this month."""
        rules = self.rules
        if (
            driver_rating >= rules.performance_rating
            and trips_this_month >= rules.performance_trips
        ):
            return BonusQuote(
                performance=rules.performance_bonus,
                details=(
                    f"rating {driver_rating} >= {rules.performance_rating}",
                    f"{trips_this_month} trips >= {rules.performance_trips}",
                ),
            )
        return BonusQuote()

    def apply_recharge_bonus(self, amount: Decimal) -> BonusQuote:
        """Percentage bonus on large wallet top-ups."""
        amount = to_decimal(amount)
        rules = self.rules
        if amount >= rules.recharge_bonus_threshold:
            return BonusQuote(
                recharge=round_amount(amount * rules.recharge_bonus_rate),
                details=(f"top-up {amount} >= {rules.recharge_bonus_threshold}",),
            )
        return BonusQuote()


def recharge_fee(amount: Decimal, rules: RechargeRules) -> Decimal:
    """Processing fee for a top-up: a percentage with a fixed floor."""
    return max(round_amount(to_decimal(amount) * rules.fee_rate), rules.fee_minimum)
