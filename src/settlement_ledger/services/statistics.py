"""Commission reporting over completed trip payments."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from settlement_ledger.models.common import (
    CommissionSettlement,
    PaymentKind,
    PaymentStatus,
    serialize_value,
)
from settlement_ledger.store.base import LedgerStore

ZERO = Decimal("0")


@dataclass
class CommissionSummary:
    """Totals for trips completed in a period."""

    since: datetime | None
    until: datetime | None
    trips: int = 0
    gross_total: Decimal = ZERO
    commission_total: Decimal = ZERO
    net_total: Decimal = ZERO
    by_settlement: dict[str, Decimal] = field(default_factory=dict)
    by_method: dict[str, Decimal] = field(default_factory=dict)
    reason_codes: Counter = field(default_factory=Counter)

    @property
    def average_rate(self) -> Decimal:
        if self.gross_total == 0:
            return ZERO
        return (self.commission_total / self.gross_total).quantize(Decimal("0.0001"))

    @property
    def collected(self) -> Decimal:
        """Commission actually received, deducted or settled by hand."""
        return self.by_settlement.get(CommissionSettlement.DEDUCTED.value, ZERO) + self.by_settlement.get(
            CommissionSettlement.MANUALLY_SETTLED.value, ZERO
        )

    def to_dict(self) -> dict[str, Any]:
        return serialize_value(
            {
                "since": self.since,
                "until": self.until,
                "trips": self.trips,
                "gross_total": self.gross_total,
                "commission_total": self.commission_total,
                "net_total": self.net_total,
                "collected": self.collected,
                "average_rate": self.average_rate,
                "by_settlement": self.by_settlement,
                "by_method": self.by_method,
                "reason_codes": dict(self.reason_codes),
            }
        )


def commission_summary(
    store: LedgerStore,
    since: datetime | None = None,
    until: datetime | None = None,
) -> CommissionSummary:
    """Summarize commissions on trips completed in ``[since, until)``.

    Refunded trips are included: a refund does not undo a commission
    unless the refund policy reverses it, which shows up in
    ``by_settlement`` as ``refunded``.
    """
    summary = CommissionSummary(since=since, until=until)
    payments = store.list_payments(
        kind=PaymentKind.TRIP,
        statuses=[PaymentStatus.COMPLETED, PaymentStatus.REFUNDED],
    )
    for payment in payments:
        completed_at = payment.completed_at
        if completed_at is None:
            continue
        if since is not None and completed_at < since:
            continue
        if until is not None and completed_at >= until:
            continue

        amount = payment.commission.amount
        summary.trips += 1
        summary.gross_total += payment.gross_amount
        summary.commission_total += amount
        summary.net_total += payment.net_amount
        settlement = payment.commission_settlement.value
        summary.by_settlement[settlement] = summary.by_settlement.get(settlement, ZERO) + amount
        method = payment.method.value
        summary.by_method[method] = summary.by_method.get(method, ZERO) + amount
        summary.reason_codes[payment.commission.reason_code] += 1
    return summary
