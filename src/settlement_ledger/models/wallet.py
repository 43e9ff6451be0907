"""Driver wallet: a single balance backed by append-only histories.

The histories are the source of truth. ``balance`` is a cached value that
must always equal ``replayed_balance()``:

    Σ completed recharge credits (net + bonus)
  + Σ bonus credits
  − Σ wallet-sourced commissions in status ``deducted``
  − Σ withdrawals

The balance is only changed by the methods below, each of which writes
the matching history entry in the same call.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from settlement_ledger.errors import InsufficientWalletBalance, ValidationError
from settlement_ledger.models.common import (
    CommissionSettlement,
    PaymentMethod,
    parse_datetime,
)

ZERO = Decimal("0")


class RechargeStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CommissionSource(str, Enum):
    """Where a commission was collected from."""

    WALLET = "wallet"  # debited from the driver's wallet (cash trips)
    GATEWAY = "gateway"  # withheld by the gateway (digital trips)


@dataclass
class RechargeEntry:
    reference: str
    amount: Decimal
    fee: Decimal
    bonus: Decimal
    method: PaymentMethod
    initiated_at: datetime
    status: RechargeStatus = RechargeStatus.PENDING
    auto: bool = False
    settled_at: datetime | None = None

    @property
    def credit(self) -> Decimal:
        """Amount added to the balance when the recharge completes."""
        return self.amount - self.fee + self.bonus

    @property
    def counts_toward_daily_limit(self) -> bool:
        return self.status in (RechargeStatus.PENDING, RechargeStatus.COMPLETED)


@dataclass
class CommissionEntry:
    reference: str
    amount: Decimal
    source: CommissionSource
    status: CommissionSettlement
    recorded_at: datetime
    settled_at: datetime | None = None
    note: str | None = None

    @property
    def debits_wallet(self) -> bool:
        return self.source is CommissionSource.WALLET and self.status is CommissionSettlement.DEDUCTED


@dataclass
class BonusEntry:
    reference: str
    amount: Decimal
    reason: str
    credited_at: datetime


@dataclass
class WithdrawalEntry:
    withdrawal_id: str
    amount: Decimal
    recorded_at: datetime
    note: str = ""


@dataclass(frozen=True)
class AutoRechargeSettings:
    enabled: bool = False
    threshold: Decimal = ZERO
    amount: Decimal = ZERO
    method: PaymentMethod | None = None
    phone_number: str | None = None


class WalletAccount:
    """Pre-funded balance from which cash-trip commissions are debited."""

    def __init__(
        self,
        driver_id: str,
        created_at: datetime,
        minimum_balance: Decimal = Decimal("1000"),
        currency: str = "XOF",
    ):
        self.driver_id = driver_id
        self.created_at = created_at
        self.updated_at = created_at
        self.minimum_balance = minimum_balance
        self.currency = currency
        self.recharge_active = False
        self.auto_recharge = AutoRechargeSettings()
        self.recharge_history: list[RechargeEntry] = []
        self.commission_history: list[CommissionEntry] = []
        self.bonus_history: list[BonusEntry] = []
        self.withdrawal_history: list[WithdrawalEntry] = []
        self.version = 0
        self._balance = ZERO

    def __repr__(self) -> str:
        return f"WalletAccount(driver_id={self.driver_id!r}, balance={self._balance})"

    @property
    def balance(self) -> Decimal:
        return self._balance

    def replayed_balance(self) -> Decimal:
        """Recompute the balance from the histories."""
        total = ZERO
        for recharge in self.recharge_history:
            if recharge.status is RechargeStatus.COMPLETED:
                total += recharge.credit
        for bonus in self.bonus_history:
            total += bonus.amount
        for commission in self.commission_history:
            if commission.debits_wallet:
                total -= commission.amount
        for withdrawal in self.withdrawal_history:
            total -= withdrawal.amount
        return total

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_recharge(self, reference: str) -> RechargeEntry:
        for entry in self.recharge_history:
            if entry.reference == reference:
                return entry
        raise ValidationError(
            f"No recharge {reference} in wallet {self.driver_id}", reference=reference
        )

    def find_commission(self, reference: str) -> CommissionEntry | None:
        """Most recent commission entry for a payment, if any."""
        for entry in reversed(self.commission_history):
            if entry.reference == reference:
                return entry
        return None

    def has_pending_auto_recharge(self) -> bool:
        return any(
            e.auto and e.status is RechargeStatus.PENDING for e in self.recharge_history
        )

    def recharges_since(self, start: datetime) -> list[RechargeEntry]:
        return [e for e in self.recharge_history if e.initiated_at >= start]

    # ------------------------------------------------------------------
    # Recharges
    # ------------------------------------------------------------------

    def record_pending_recharge(self, entry: RechargeEntry) -> None:
        if entry.status is not RechargeStatus.PENDING:
            raise ValueError("new recharge entries must be pending")
        self.recharge_history.append(entry)
        self.updated_at = entry.initiated_at

    def complete_recharge(self, reference: str, now: datetime) -> RechargeEntry:
        """Credit net amount plus bonus and activate cash acceptance."""
        entry = self._pending_recharge(reference)
        entry.status = RechargeStatus.COMPLETED
        entry.settled_at = now
        self._balance += entry.credit
        self.recharge_active = True
        self.updated_at = now
        return entry

    def fail_recharge(self, reference: str, now: datetime) -> RechargeEntry:
        return self._close_recharge(reference, RechargeStatus.FAILED, now)

    def cancel_recharge(self, reference: str, now: datetime) -> RechargeEntry:
        return self._close_recharge(reference, RechargeStatus.CANCELLED, now)

    def _close_recharge(
        self, reference: str, status: RechargeStatus, now: datetime
    ) -> RechargeEntry:
        entry = self._pending_recharge(reference)
        entry.status = status
        entry.settled_at = now
        self.updated_at = now
        return entry

    def _pending_recharge(self, reference: str) -> RechargeEntry:
        entry = self.find_recharge(reference)
        if entry.status is not RechargeStatus.PENDING:
            raise ValidationError(
                f"Recharge {reference} is already {entry.status.value}",
                reference=reference,
                status=entry.status.value,
            )
        return entry

    # ------------------------------------------------------------------
    # Commissions
    # ------------------------------------------------------------------

    def deduct_commission(self, reference: str, amount: Decimal, now: datetime) -> CommissionEntry:
        """Debit a cash-trip commission. Raises if the balance is short."""
        if amount > self._balance:
            raise InsufficientWalletBalance(self._balance, amount)
        existing = self.find_commission(reference)
        if existing is not None and existing.status is CommissionSettlement.FAILED:
            existing.status = CommissionSettlement.DEDUCTED
            existing.settled_at = now
            entry = existing
        else:
            entry = CommissionEntry(
                reference=reference,
                amount=amount,
                source=CommissionSource.WALLET,
                status=CommissionSettlement.DEDUCTED,
                recorded_at=now,
                settled_at=now,
            )
            self.commission_history.append(entry)
        self._balance -= amount
        self.updated_at = now
        return entry

    def record_failed_commission(self, reference: str, amount: Decimal, now: datetime) -> CommissionEntry:
        existing = self.find_commission(reference)
        if existing is not None and existing.status is CommissionSettlement.FAILED:
            existing.recorded_at = now
            return existing
        entry = CommissionEntry(
            reference=reference,
            amount=amount,
            source=CommissionSource.WALLET,
            status=CommissionSettlement.FAILED,
            recorded_at=now,
        )
        self.commission_history.append(entry)
        self.updated_at = now
        return entry

    def record_gateway_commission(self, reference: str, amount: Decimal, now: datetime) -> CommissionEntry:
        """Record a commission the gateway withheld. The balance is untouched."""
        entry = CommissionEntry(
            reference=reference,
            amount=amount,
            source=CommissionSource.GATEWAY,
            status=CommissionSettlement.DEDUCTED,
            recorded_at=now,
            settled_at=now,
        )
        self.commission_history.append(entry)
        self.updated_at = now
        return entry

    def resolve_failed_commission(
        self, reference: str, status: CommissionSettlement, now: datetime, note: str
    ) -> CommissionEntry:
        """Close a failed commission without moving money (waive or manual settle)."""
        if status not in (CommissionSettlement.WAIVED, CommissionSettlement.MANUALLY_SETTLED):
            raise ValueError(f"cannot resolve a commission as {status.value}")
        entry = self.find_commission(reference)
        if entry is None or entry.status is not CommissionSettlement.FAILED:
            raise ValidationError(
                f"No failed commission for {reference}", reference=reference
            )
        entry.status = status
        entry.settled_at = now
        entry.note = note
        self.updated_at = now
        return entry

    def reverse_commission(self, reference: str, now: datetime) -> CommissionEntry:
        """Give back a deducted wallet commission (refund with reversal)."""
        entry = self.find_commission(reference)
        if entry is None or not entry.debits_wallet:
            raise ValidationError(
                f"No deducted wallet commission for {reference}", reference=reference
            )
        entry.status = CommissionSettlement.REFUNDED
        entry.settled_at = now
        self._balance += entry.amount
        self.updated_at = now
        return entry

    # ------------------------------------------------------------------
    # Bonuses and withdrawals
    # ------------------------------------------------------------------

    def credit_bonus(self, reference: str, amount: Decimal, reason: str, now: datetime) -> BonusEntry:
        if amount <= 0:
            raise ValueError("bonus amount must be positive")
        entry = BonusEntry(reference=reference, amount=amount, reason=reason, credited_at=now)
        self.bonus_history.append(entry)
        self._balance += amount
        self.updated_at = now
        return entry

    def withdraw(self, amount: Decimal, now: datetime, note: str = "") -> WithdrawalEntry:
        if amount <= 0:
            raise ValidationError("Withdrawal amount must be positive", amount=str(amount))
        if amount > self._balance:
            raise InsufficientWalletBalance(self._balance, amount)
        entry = WithdrawalEntry(
            withdrawal_id=str(uuid.uuid4()), amount=amount, recorded_at=now, note=note
        )
        self.withdrawal_history.append(entry)
        self._balance -= amount
        self.updated_at = now
        return entry

    # ------------------------------------------------------------------
    # Auto-recharge
    # ------------------------------------------------------------------

    def configure_auto_recharge(self, settings: AutoRechargeSettings, now: datetime) -> None:
        self.auto_recharge = settings
        self.updated_at = now

    def needs_auto_recharge(self) -> bool:
        settings = self.auto_recharge
        return (
            settings.enabled
            and self._balance < settings.threshold
            and not self.has_pending_auto_recharge()
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "driver_id": self.driver_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "minimum_balance": str(self.minimum_balance),
            "currency": self.currency,
            "balance": str(self._balance),
            "recharge_active": self.recharge_active,
            "auto_recharge": {
                "enabled": self.auto_recharge.enabled,
                "threshold": str(self.auto_recharge.threshold),
                "amount": str(self.auto_recharge.amount),
                "method": self.auto_recharge.method.value if self.auto_recharge.method else None,
                "phone_number": self.auto_recharge.phone_number,
            },
            "recharge_history": [
                {
                    "reference": e.reference,
                    "amount": str(e.amount),
                    "fee": str(e.fee),
                    "bonus": str(e.bonus),
                    "method": e.method.value,
                    "initiated_at": e.initiated_at.isoformat(),
                    "status": e.status.value,
                    "auto": e.auto,
                    "settled_at": e.settled_at.isoformat() if e.settled_at else None,
                }
                for e in self.recharge_history
            ],
            "commission_history": [
                {
                    "reference": e.reference,
                    "amount": str(e.amount),
                    "source": e.source.value,
                    "status": e.status.value,
                    "recorded_at": e.recorded_at.isoformat(),
                    "settled_at": e.settled_at.isoformat() if e.settled_at else None,
                    "note": e.note,
                }
                for e in self.commission_history
            ],
            "bonus_history": [
                {
                    "reference": e.reference,
                    "amount": str(e.amount),
                    "reason": e.reason,
                    "credited_at": e.credited_at.isoformat(),
                }
                for e in self.bonus_history
            ],
            "withdrawal_history": [
                {
                    "withdrawal_id": e.withdrawal_id,
                    "amount": str(e.amount),
                    "recorded_at": e.recorded_at.isoformat(),
                    "note": e.note,
                }
                for e in self.withdrawal_history
            ],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int) -> WalletAccount:
        """Rebuild a wallet from ``to_document`` output."""
        wallet = cls(
            driver_id=doc["driver_id"],
            created_at=parse_datetime(doc["created_at"]),
            minimum_balance=Decimal(doc["minimum_balance"]),
            currency=doc.get("currency", "XOF"),
        )
        wallet.updated_at = parse_datetime(doc["updated_at"])
        wallet.recharge_active = doc["recharge_active"]
        auto = doc.get("auto_recharge") or {}
        wallet.auto_recharge = AutoRechargeSettings(
            enabled=auto.get("enabled", False),
            threshold=Decimal(auto.get("threshold", "0")),
            amount=Decimal(auto.get("amount", "0")),
            method=PaymentMethod(auto["method"]) if auto.get("method") else None,
            phone_number=auto.get("phone_number"),
        )
        wallet.recharge_history = [
            RechargeEntry(
                reference=e["reference"],
                amount=Decimal(e["amount"]),
                fee=Decimal(e["fee"]),
                bonus=Decimal(e["bonus"]),
                method=PaymentMethod(e["method"]),
                initiated_at=parse_datetime(e["initiated_at"]),
                status=RechargeStatus(e["status"]),
                auto=e.get("auto", False),
                settled_at=parse_datetime(e.get("settled_at")),
            )
            for e in doc.get("recharge_history", [])
        ]
        wallet.commission_history = [
            CommissionEntry(
                reference=e["reference"],
                amount=Decimal(e["amount"]),
                source=CommissionSource(e["source"]),
                status=CommissionSettlement(e["status"]),
                recorded_at=parse_datetime(e["recorded_at"]),
                settled_at=parse_datetime(e.get("settled_at")),
                note=e.get("note"),
            )
            for e in doc.get("commission_history", [])
        ]
        wallet.bonus_history = [
            BonusEntry(
                reference=e["reference"],
                amount=Decimal(e["amount"]),
                reason=e["reason"],
                credited_at=parse_datetime(e["credited_at"]),
            )
            for e in doc.get("bonus_history", [])
        ]
        wallet.withdrawal_history = [
            WithdrawalEntry(
                withdrawal_id=e["withdrawal_id"],
                amount=Decimal(e["amount"]),
                recorded_at=parse_datetime(e["recorded_at"]),
                note=e.get("note", ""),
            )
            for e in doc.get("withdrawal_history", [])
        ]
        wallet._balance = Decimal(doc["balance"])
        wallet.version = version
        return wallet
