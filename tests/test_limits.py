"""Tests for daily recharge limits and the velocity guard."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from settlement_ledger.errors import DailyLimitExceeded, VelocityLimitExceeded
from settlement_ledger.models.common import PaymentMethod
from settlement_ledger.models.wallet import RechargeEntry, RechargeStatus, WalletAccount
from settlement_ledger.rules import RechargeRules, VelocityRules
from settlement_ledger.services.limits import DailyLimits, VelocityGuard, start_of_day

NOW = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)


def add_recharge(
    wallet: WalletAccount,
    amount: str,
    at: datetime,
    status: RechargeStatus = RechargeStatus.PENDING,
) -> None:
    entry = RechargeEntry(
        reference=f"RCH_{len(wallet.recharge_history)}",
        amount=Decimal(amount),
        fee=Decimal("50"),
        bonus=Decimal("0"),
        method=PaymentMethod.WAVE,
        initiated_at=at,
    )
    wallet.record_pending_recharge(entry)
    entry.status = status


@pytest.fixture
def limits() -> DailyLimits:
    return DailyLimits(RechargeRules())


class TestDailyLimits:
    """Per-day amount and count limits."""

    def test_usage_counts_pending_and_completed(self, limits):
        """Failed and cancelled recharges free their share."""
        wallet = WalletAccount("drv-1", NOW)
        add_recharge(wallet, "10000", NOW - timedelta(hours=1))
        add_recharge(wallet, "20000", NOW - timedelta(hours=2), RechargeStatus.COMPLETED)
        add_recharge(wallet, "30000", NOW - timedelta(hours=3), RechargeStatus.FAILED)
        add_recharge(wallet, "40000", NOW - timedelta(hours=4), RechargeStatus.CANCELLED)

        usage = limits.usage(wallet, NOW)

        assert usage.amount == Decimal("30000")
        assert usage.count == 2
        assert usage.remaining_amount == Decimal("470000")
        assert usage.remaining_count == 3

    def test_usage_resets_at_midnight(self, limits):
        """Yesterday's recharges don't count."""
        wallet = WalletAccount("drv-1", NOW)
        add_recharge(wallet, "400000", start_of_day(NOW) - timedelta(minutes=1))

        assert limits.usage(wallet, NOW).count == 0

    def test_amount_limit_inclusive(self, limits):
        """Reaching exactly 500,000 is allowed, one more unit is not."""
        wallet = WalletAccount("drv-1", NOW)
        add_recharge(wallet, "400000", NOW)

        limits.check(wallet, Decimal("100000"), NOW)
        with pytest.raises(DailyLimitExceeded) as exc_info:
            limits.check(wallet, Decimal("100001"), NOW)
        assert exc_info.value.details["remaining"] == "100000"

    def test_count_limit(self, limits):
        """A sixth recharge in a day is refused."""
        wallet = WalletAccount("drv-1", NOW)
        for _ in range(5):
            add_recharge(wallet, "1000", NOW)

        with pytest.raises(DailyLimitExceeded) as exc_info:
            limits.check(wallet, Decimal("1000"), NOW)
        assert exc_info.value.details["count_limit"] == 5


class TestVelocityGuard:
    """Sliding-window attempt cap."""

    def test_sixth_attempt_refused(self):
        """Five attempts pass, the sixth raises with a retry hint."""
        guard = VelocityGuard(VelocityRules())
        for i in range(5):
            guard.check_and_record("rider-1", NOW + timedelta(minutes=i))

        with pytest.raises(VelocityLimitExceeded) as exc_info:
            guard.check_and_record("rider-1", NOW + timedelta(minutes=5))

        # Oldest attempt at NOW leaves the window at NOW + 15 min
        assert exc_info.value.retry_after_seconds == 600
        assert exc_info.value.details["payer_id"] == "rider-1"

    def test_refused_attempt_not_recorded(self):
        """A refusal does not extend the lockout."""
        guard = VelocityGuard(VelocityRules(max_attempts=1))
        guard.check_and_record("rider-1", NOW)
        with pytest.raises(VelocityLimitExceeded):
            guard.check_and_record("rider-1", NOW + timedelta(minutes=1))

        guard.check_and_record("rider-1", NOW + timedelta(minutes=15, seconds=1))

    def test_payers_are_independent(self):
        """Each payer has their own window."""
        guard = VelocityGuard(VelocityRules(max_attempts=1))
        guard.check_and_record("rider-1", NOW)
        guard.check_and_record("rider-2", NOW)

    def test_window_slides(self):
        """Attempts older than the window are forgotten."""
        guard = VelocityGuard(VelocityRules(max_attempts=2, window=timedelta(minutes=10)))
        guard.check_and_record("rider-1", NOW)
        guard.check_and_record("rider-1", NOW + timedelta(minutes=5))

        guard.check_and_record("rider-1", NOW + timedelta(minutes=10, seconds=1))
