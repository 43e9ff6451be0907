"""Daily recharge limits and payment velocity guard.

Daily usage is derived from the wallet's recharge history on every
check. Nothing is cached, so a cancelled or failed recharge immediately
frees its share of the limit.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from settlement_ledger.errors import DailyLimitExceeded, VelocityLimitExceeded
from settlement_ledger.models.wallet import WalletAccount
from settlement_ledger.rules import RechargeRules, VelocityRules

logger = logging.getLogger(__name__)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class DailyUsage:
    """Recharge usage for one driver over the current day."""

    amount: Decimal
    count: int
    amount_limit: Decimal
    count_limit: int

    @property
    def remaining_amount(self) -> Decimal:
        return max(self.amount_limit - self.amount, Decimal("0"))

    @property
    def remaining_count(self) -> int:
        return max(self.count_limit - self.count, 0)


class DailyLimits:
    """Per-driver daily recharge amount and count limits."""

    def __init__(self, rules: RechargeRules):
        self.rules = rules

    def usage(self, wallet: WalletAccount, now: datetime) -> DailyUsage:
        """Sum pending and completed recharges initiated since midnight."""
        # Inclusive: an entry stamped at now was recorded before this check
        counted = [
            e
            for e in wallet.recharges_since(start_of_day(now))
            if e.initiated_at <= now and e.counts_toward_daily_limit
        ]
        return DailyUsage(
            amount=sum((e.amount for e in counted), Decimal("0")),
            count=len(counted),
            amount_limit=self.rules.daily_amount_limit,
            count_limit=self.rules.daily_count_limit,
        )

    def check(self, wallet: WalletAccount, amount: Decimal, now: datetime) -> DailyUsage:
        """Raise DailyLimitExceeded if another recharge of ``amount`` is not allowed."""
        usage = self.usage(wallet, now)
        if usage.count + 1 > usage.count_limit:
            raise DailyLimitExceeded(
                f"Daily recharge count limit of {usage.count_limit} reached",
                used_count=usage.count,
                count_limit=usage.count_limit,
            )
        if usage.amount + amount > usage.amount_limit:
            raise DailyLimitExceeded(
                f"Daily recharge amount limit of {usage.amount_limit} exceeded",
                used_amount=str(usage.amount),
                requested=str(amount),
                remaining=str(usage.remaining_amount),
            )
        return usage


class AttemptStore(Protocol):
    """Storage for attempt timestamps keyed by payer."""

    def record_attempt(self, key: str, at: datetime) -> None:
        ...

    def attempts_since(self, key: str, since: datetime) -> list[datetime]:
        """Attempts at or after ``since``, oldest first."""
        ...


class InMemoryAttemptStore:
    """Process-local attempt store."""

    def __init__(self) -> None:
        self._attempts: dict[str, deque[datetime]] = defaultdict(deque)
        self._mutex = threading.Lock()

    def record_attempt(self, key: str, at: datetime) -> None:
        with self._mutex:
            self._attempts[key].append(at)

    def attempts_since(self, key: str, since: datetime) -> list[datetime]:
        with self._mutex:
            attempts = self._attempts[key]
            while attempts and attempts[0] < since:
                attempts.popleft()
            return list(attempts)


class VelocityGuard:
    """Caps payment initiations per payer within a sliding window."""

    def __init__(self, rules: VelocityRules, store: AttemptStore | None = None):
        self.rules = rules
        self.store = store or InMemoryAttemptStore()
        self._mutex = threading.Lock()

    def check_and_record(self, payer_id: str, now: datetime) -> None:
        """Record an attempt, or raise VelocityLimitExceeded without recording it."""
        key = f"payment:{payer_id}"
        with self._mutex:
            recent = self.store.attempts_since(key, now - self.rules.window)
            if len(recent) >= self.rules.max_attempts:
                retry_at = recent[0] + self.rules.window
                retry_after = max(1, math.ceil((retry_at - now) / timedelta(seconds=1)))
                logger.warning(
                    "Velocity limit hit for payer %s: %d attempts in %s",
                    payer_id,
                    len(recent),
                    self.rules.window,
                )
                raise VelocityLimitExceeded(
                    "Too many payment attempts, try again later",
                    retry_after_seconds=retry_after,
                    payer_id=payer_id,
                )
            self.store.record_attempt(key, now)
