"""Persistence protocol for ledger aggregates.

Stores hand out independent copies. Changes made to a loaded aggregate
are invisible to everyone else until ``commit`` succeeds. ``commit``
writes all given aggregates atomically and fails as a whole with
ConcurrentModification if any of them changed since it was loaded.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from settlement_ledger.models.common import PaymentKind, PaymentStatus
from settlement_ledger.models.payment import Payment
from settlement_ledger.models.wallet import WalletAccount


class LedgerStore(Protocol):
    """Protocol for payment and wallet persistence."""

    def get_payment(self, payment_id: str) -> Payment:
        """Load a payment by id. Raises PaymentNotFound."""
        ...

    def get_payment_by_reference(self, reference: str) -> Payment:
        """Load a payment by its external reference. Raises PaymentNotFound."""
        ...

    def list_payments(
        self,
        *,
        reservation_id: str | None = None,
        beneficiary_id: str | None = None,
        kind: PaymentKind | None = None,
        statuses: Iterable[PaymentStatus] | None = None,
    ) -> list[Payment]:
        """List payments matching every given filter, oldest first."""
        ...

    def get_wallet(self, driver_id: str) -> WalletAccount:
        """Load a wallet. Raises WalletNotFound."""
        ...

    def list_wallets(self) -> list[WalletAccount]:
        ...

    def commit(
        self,
        *,
        payments: Sequence[Payment] = (),
        wallets: Sequence[WalletAccount] = (),
    ) -> None:
        """Insert or update aggregates in one atomic step.

        Aggregates with ``version == 0`` are inserted. Others are updated
        only if the stored version still matches. On success each
        aggregate's ``version`` is incremented in place.
        """
        ...
