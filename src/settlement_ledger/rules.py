"""Business rule configuration.

Every number that moves money lives here, in frozen dataclasses that
validate themselves on construction.

Pattern:
    ledger = SettlementLedger(
        store=store,
        gateway=gateway,
        rules=LedgerRules(
            commission=CommissionRules(base_rate=Decimal("0.10")),
            recharge=RechargeRules(daily_amount_limit=Decimal("500000")),
        ),
    )

Rules:
    1. No env vars. Rule sets are passed explicitly.
    2. Immutable after creation (frozen dataclasses).
    3. Amounts and rates are Decimals, never floats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from enum import Enum


class RefundPolicy(str, Enum):
    """What happens to a deducted cash commission when the trip is refunded."""

    KEEP_COMMISSION = "keep_commission"
    REVERSE_COMMISSION = "reverse_commission"


def _require_rate(name: str, value: Decimal) -> None:
    if value < 0 or value > 1:
        raise ValueError(f"{name} must be between 0 and 1")


@dataclass(frozen=True)
class CommissionRules:
    """
    Dynamic commission and performance bonus configuration.

    Attributes:
        base_rate: Commission rate before discounts. Default 10%.
        long_distance_km: Trips strictly longer than this earn a discount.
        long_distance_discount: Rate reduction for long trips. Default 1%.
        top_rating: Drivers rated at or above this earn a discount.
        top_rating_discount: Rate reduction for top-rated drivers. Default 1%.
        minimum_rate: Floor applied after all discounts. Default 5%.
        performance_rating: Minimum rating for the monthly performance bonus.
        performance_trips: Minimum trips this month for the performance bonus.
        performance_bonus: Fixed bonus credited on completion.
        recharge_bonus_rate: Bonus rate on large wallet top-ups. Default 2%.
        recharge_bonus_threshold: Smallest top-up that earns the bonus.
    """

    base_rate: Decimal = Decimal("0.10")
    long_distance_km: float = 20.0
    long_distance_discount: Decimal = Decimal("0.01")
    top_rating: float = 4.5
    top_rating_discount: Decimal = Decimal("0.01")
    minimum_rate: Decimal = Decimal("0.05")
    performance_rating: float = 4.5
    performance_trips: int = 20
    performance_bonus: Decimal = Decimal("5000")
    recharge_bonus_rate: Decimal = Decimal("0.02")
    recharge_bonus_threshold: Decimal = Decimal("10000")

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("base_rate", "long_distance_discount", "top_rating_discount",
                     "minimum_rate", "recharge_bonus_rate"):
            _require_rate(name, getattr(self, name))
        if self.minimum_rate > self.base_rate:
            raise ValueError("minimum_rate cannot exceed base_rate")
        if self.performance_bonus < 0 or self.recharge_bonus_threshold < 0:
            raise ValueError("bonus amounts must not be negative")


@dataclass(frozen=True)
class CashRules:
    """
    Cash acceptance configuration.

    Attributes:
        minimum_balance: Wallet balance a driver must hold to accept cash.
        complete_on_initiation: If True, cash payments complete immediately
            instead of waiting for confirmation by the driver or rider.
    """

    minimum_balance: Decimal = Decimal("1000")
    complete_on_initiation: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.minimum_balance < 0:
            raise ValueError("minimum_balance must not be negative")


@dataclass(frozen=True)
class TripRules:
    """Trip payment bounds and fee."""

    min_amount: Decimal = Decimal("100")
    max_amount: Decimal = Decimal("1000000")
    fee_rate: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.min_amount <= 0 or self.max_amount < self.min_amount:
            raise ValueError("trip bounds must satisfy 0 < min_amount <= max_amount")
        _require_rate("fee_rate", self.fee_rate)


@dataclass(frozen=True)
class RechargeRules:
    """
    Wallet recharge configuration.

    Attributes:
        min_amount / max_amount: Bounds for a single top-up.
        fee_rate: Processing fee rate. Default 2%.
        fee_minimum: Smallest fee charged. Default 50.
        daily_amount_limit: Sum of a driver's top-ups per calendar day (UTC).
        daily_count_limit: Number of top-ups per calendar day (UTC).
        cancellation_window: How long a pending top-up may be cancelled.
        pending_expiry: Age after which an unconfirmed top-up is expired.
        auto_recharge_minimum: Smallest configurable auto top-up.
    """

    min_amount: Decimal = Decimal("1000")
    max_amount: Decimal = Decimal("1000000")
    fee_rate: Decimal = Decimal("0.02")
    fee_minimum: Decimal = Decimal("50")
    daily_amount_limit: Decimal = Decimal("500000")
    daily_count_limit: int = 5
    cancellation_window: timedelta = timedelta(minutes=30)
    pending_expiry: timedelta = timedelta(hours=2)
    auto_recharge_minimum: Decimal = Decimal("1000")

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.min_amount <= 0 or self.max_amount < self.min_amount:
            raise ValueError("recharge bounds must satisfy 0 < min_amount <= max_amount")
        _require_rate("fee_rate", self.fee_rate)
        if self.fee_minimum < 0:
            raise ValueError("fee_minimum must not be negative")
        if self.fee_minimum >= self.min_amount:
            raise ValueError("fee_minimum must be smaller than min_amount")
        if self.daily_count_limit < 1:
            raise ValueError("daily_count_limit must be at least 1")
        if self.cancellation_window <= timedelta(0) or self.pending_expiry <= timedelta(0):
            raise ValueError("windows must be positive")


@dataclass(frozen=True)
class VelocityRules:
    """Maximum payment initiations per payer within a sliding window."""

    max_attempts: int = 5
    window: timedelta = timedelta(minutes=15)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.window <= timedelta(0):
            raise ValueError("window must be positive")


@dataclass(frozen=True)
class LedgerRules:
    """Complete rule set for a ledger instance."""

    commission: CommissionRules = field(default_factory=CommissionRules)
    cash: CashRules = field(default_factory=CashRules)
    trip: TripRules = field(default_factory=TripRules)
    recharge: RechargeRules = field(default_factory=RechargeRules)
    velocity: VelocityRules = field(default_factory=VelocityRules)
    refund_policy: RefundPolicy = RefundPolicy.KEEP_COMMISSION
    currency: str = "XOF"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if len(self.currency) != 3:
            raise ValueError("currency must be a 3-letter ISO code")


def default_rules(**overrides) -> LedgerRules:
    """Build the production rule set, optionally replacing whole sections."""
    return LedgerRules(**overrides)
