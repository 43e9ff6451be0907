"""Ledger tables.

Each aggregate is stored as one row: a JSON document holding the full
aggregate plus a handful of columns copied out of it for querying. The
``version`` column backs optimistic compare-and-swap updates.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_ledger.models.base import Base


class PaymentRow(Base):
    """Trip charges and wallet recharges."""

    __tablename__ = "ledger_payment"

    payment_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    reservation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    beneficiary_id: Mapped[str] = mapped_column(String(64), nullable=False)
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED', 'REFUNDED')",
            name="ledger_payment_status_ck",
        ),
        CheckConstraint("kind IN ('trip', 'recharge')", name="ledger_payment_kind_ck"),
        CheckConstraint("gross_amount > 0", name="ledger_payment_gross_positive_ck"),
        Index("ledger_payment_by_reservation", "reservation_id"),
        Index("ledger_payment_by_beneficiary", "beneficiary_id", "status"),
        Index("ledger_payment_by_status", "status", "kind"),
    )


class WalletRow(Base):
    """One wallet per driver."""

    __tablename__ = "ledger_wallet"

    driver_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    recharge_active: Mapped[bool] = mapped_column(Boolean, nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ledger_wallet_balance_nonnegative_ck"),
    )
