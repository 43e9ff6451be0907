"""SQLAlchemy-backed ledger store.

Each ``commit`` runs in one transaction. Updates are compare-and-swap on
the ``version`` column, so two processes that loaded the same aggregate
cannot both write it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from settlement_ledger.errors import ConcurrentModification, PaymentNotFound, WalletNotFound
from settlement_ledger.models.common import PaymentKind, PaymentStatus
from settlement_ledger.models.payment import Payment
from settlement_ledger.models.tables import PaymentRow, WalletRow
from settlement_ledger.models.wallet import WalletAccount

logger = logging.getLogger(__name__)


class SqlLedgerStore:
    """Ledger store over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get_payment(self, payment_id: str) -> Payment:
        with self._session_factory() as session:
            row = session.get(PaymentRow, payment_id)
            if row is None:
                raise PaymentNotFound(f"Payment {payment_id} not found", payment_id=payment_id)
            return Payment.from_document(row.document, row.version)

    def get_payment_by_reference(self, reference: str) -> Payment:
        with self._session_factory() as session:
            row = session.execute(
                select(PaymentRow).where(PaymentRow.reference == reference)
            ).scalar_one_or_none()
            if row is None:
                raise PaymentNotFound(f"Payment {reference} not found", reference=reference)
            return Payment.from_document(row.document, row.version)

    def list_payments(
        self,
        *,
        reservation_id: str | None = None,
        beneficiary_id: str | None = None,
        kind: PaymentKind | None = None,
        statuses: Iterable[PaymentStatus] | None = None,
    ) -> list[Payment]:
        stmt = select(PaymentRow)
        if reservation_id is not None:
            stmt = stmt.where(PaymentRow.reservation_id == reservation_id)
        if beneficiary_id is not None:
            stmt = stmt.where(PaymentRow.beneficiary_id == beneficiary_id)
        if kind is not None:
            stmt = stmt.where(PaymentRow.kind == kind.value)
        if statuses is not None:
            stmt = stmt.where(PaymentRow.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(PaymentRow.created_at)

        with self._session_factory() as session:
            rows = session.execute(stmt).scalars().all()
            return [Payment.from_document(row.document, row.version) for row in rows]

    def get_wallet(self, driver_id: str) -> WalletAccount:
        with self._session_factory() as session:
            row = session.get(WalletRow, driver_id)
            if row is None:
                raise WalletNotFound(f"Wallet for driver {driver_id} not found", driver_id=driver_id)
            return WalletAccount.from_document(row.document, row.version)

    def list_wallets(self) -> list[WalletAccount]:
        with self._session_factory() as session:
            rows = session.execute(select(WalletRow).order_by(WalletRow.driver_id)).scalars().all()
            return [WalletAccount.from_document(row.document, row.version) for row in rows]

    def commit(
        self,
        *,
        payments: Sequence[Payment] = (),
        wallets: Sequence[WalletAccount] = (),
    ) -> None:
        try:
            with self._session_factory.begin() as session:
                for payment in payments:
                    self._write(
                        session,
                        PaymentRow,
                        PaymentRow.payment_id,
                        payment.payment_id,
                        payment.version,
                        self._payment_values(payment),
                    )
                for wallet in wallets:
                    self._write(
                        session,
                        WalletRow,
                        WalletRow.driver_id,
                        wallet.driver_id,
                        wallet.version,
                        self._wallet_values(wallet),
                    )
        except IntegrityError as exc:
            logger.warning("Ledger commit rejected by database constraints: %s", exc.orig)
            raise ConcurrentModification("Aggregate already exists or violates a constraint") from exc

        for payment in payments:
            payment.version += 1
        for wallet in wallets:
            wallet.version += 1

    @staticmethod
    def _write(session: Session, table, key_column, key: str, version: int, values: dict[str, Any]) -> None:
        if version == 0:
            session.add(table(version=1, **values))
            session.flush()
            return
        result = session.execute(
            update(table)
            .where(key_column == key, table.version == version)
            .values(version=version + 1, **values)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(
                f"{table.__tablename__} {key} changed concurrently (expected version {version})",
                key=key,
                expected=version,
            )

    @staticmethod
    def _payment_values(payment: Payment) -> dict[str, Any]:
        return {
            "payment_id": payment.payment_id,
            "reference": payment.reference,
            "kind": payment.kind.value,
            "reservation_id": payment.reservation_id,
            "payer_id": payment.payer_id,
            "beneficiary_id": payment.beneficiary_id,
            "method": payment.method.value,
            "status": payment.status.value,
            "gross_amount": payment.gross_amount,
            "commission_amount": payment.commission.amount,
            "document": payment.to_document(),
            "created_at": payment.created_at,
            "updated_at": payment.updated_at,
        }

    @staticmethod
    def _wallet_values(wallet: WalletAccount) -> dict[str, Any]:
        return {
            "driver_id": wallet.driver_id,
            "balance": wallet.balance,
            "recharge_active": wallet.recharge_active,
            "document": wallet.to_document(),
            "updated_at": wallet.updated_at,
        }
